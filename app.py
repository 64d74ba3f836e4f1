import logging
import sys
from dataclasses import asdict
from typing import Any

from flask import Flask, abort, jsonify, render_template, request

from config import ALLOWED_EMBED_ORIGINS, EMBED_PROTECTION, LOG_LEVEL, PORT
from data_state import APPLIED, FAILED, SUPERSEDED, DashboardState
from embed import frame_ancestors_policy, is_embed_authorized
from jira_service import (
    ALL_ACCOUNT_MANAGERS,
    ALL_AGENTS,
    ALL_CUSTOMERS,
    fetch_dashboard_data,
    fetch_field_metadata,
)
from metrics import (
    SHIP_WINDOWS,
    active_customers,
    active_projects_overview,
    cash_flow_projections,
    commissions_by_agent,
    derive_summary,
    expected_cash_flow,
    expected_cash_flow_totals,
    filter_orders,
    needs_attention,
    on_hold_orders,
    orders_with_commission,
    outstanding_orders,
    top_customers,
)
from table_features import ASC, DESC, SortConfig, TableFeatures


logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

ORDER_SEARCH_KEYS = ("customer", "productName", "salesOrderNumber", "id", "currentStatus", "agent")
PROJECT_SEARCH_KEYS = ("epicName", "epicKey", "status")

DEFAULT_TABLE_SORT = {
    "expected-cash-flow": SortConfig("estShipDate", ASC),
}


def configure_logging(level_name: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level_name).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )


app = Flask(__name__)
configure_logging(LOG_LEVEL)
dashboard_state = DashboardState()


def with_cors(response):
    response.headers.update(CORS_HEADERS)
    return response


def selected_filters() -> tuple[str, str, str]:
    return (
        request.args.get("customer", "") or ALL_CUSTOMERS,
        request.args.get("agent", "") or ALL_AGENTS,
        request.args.get("accountManager", "") or ALL_ACCOUNT_MANAGERS,
    )


def ensure_loaded() -> None:
    # First visit loads once; after a failure only an explicit refresh retries.
    if not dashboard_state.has_data and dashboard_state.error is None:
        dashboard_state.refresh(fetch_dashboard_data)


def build_dashboard_view(
    data: dict[str, Any],
    customer: str,
    agent: str,
    account_manager: str,
) -> dict[str, Any]:
    orders = data.get("orders", [])
    web_projects = data.get("webProjects", [])
    filtered = filter_orders(orders, customer, agent, account_manager)
    summary = derive_summary(orders, web_projects, customer, agent, account_manager)

    return {
        "filters": {
            "customer": customer,
            "agent": agent,
            "accountManager": account_manager,
        },
        "options": {
            "customers": data.get("customers", [ALL_CUSTOMERS]),
            "agents": data.get("agents", [ALL_AGENTS]),
            "accountManagers": data.get("accountManagers", [ALL_ACCOUNT_MANAGERS]),
        },
        "summary": summary,
        "orderHealthBreakdown": summary["orderHealthBreakdown"],
        "cashFlow": cash_flow_projections(filtered),
        "needsAttention": needs_attention(filtered),
        "commissionsByAgent": commissions_by_agent(orders),
        "activeCustomers": active_customers(filtered),
        "topCustomers": top_customers(filtered),
        "webProjects": web_projects,
        "activeProjects": active_projects_overview(web_projects),
        "lastSynced": data.get("lastSynced"),
    }


def table_rows(table: str, data: dict[str, Any]) -> tuple[list[dict], tuple[str, ...]]:
    orders = data.get("orders", [])
    customer, agent, account_manager = selected_filters()
    filtered = filter_orders(orders, customer, agent, account_manager)

    if table == "orders":
        return filtered, ORDER_SEARCH_KEYS
    if table == "outstanding":
        return outstanding_orders(filtered)["orders"], ORDER_SEARCH_KEYS
    if table == "needs-attention":
        return needs_attention(filtered), ORDER_SEARCH_KEYS
    if table == "on-hold":
        return on_hold_orders(filtered)["orders"], ORDER_SEARCH_KEYS
    if table == "commissions":
        return orders_with_commission(orders), ORDER_SEARCH_KEYS
    if table == "web-projects":
        return data.get("webProjects", []), PROJECT_SEARCH_KEYS
    if table == "expected-cash-flow":
        window = request.args.get("window", "this-month")
        if window not in SHIP_WINDOWS:
            abort(400, description=f"Unknown window: {window}")
        rows = expected_cash_flow(
            orders,
            window=window,
            customer=request.args.get("customer", "") or ALL_CUSTOMERS,
        )["orders"]
        return rows, ("productName", "customer", "agent", "id", "salesOrderNumber")
    abort(404)


def table_features_from_request(
    rows: list[dict],
    searchable: tuple[str, ...],
    default_sort: SortConfig | None = None,
) -> TableFeatures:
    sort_key = request.args.get("sort", "").strip() or None
    direction = request.args.get("direction", ASC).strip().lower()
    if direction not in (ASC, DESC):
        abort(400, description=f"Unknown sort direction: {direction}")

    features = TableFeatures(
        rows,
        searchable_keys=searchable,
        initial_sort=SortConfig(sort_key, direction) if sort_key else default_sort,
        initial_search_query=request.args.get("q", ""),
    )
    for name, value in request.args.items():
        if name.startswith("filter."):
            features.add_filter(name[len("filter."):], value)
    return features


@app.get("/")
def home():
    return jsonify(
        {
            "service": "jira-executive-dashboard",
            "endpoints": {
                "jira_sync": "/jira-sync",
                "dashboard_page": "/dashboard",
                "dashboard_view": "/api/dashboard?customer=&agent=&accountManager=",
                "dashboard_refresh": "/api/dashboard/refresh",
                "dashboard_table": "/api/dashboard/tables/<table>?q=&sort=&direction=&filter.<key>=",
            },
        }
    )


@app.route("/jira-sync", methods=["POST", "OPTIONS"])
def jira_sync():
    if request.method == "OPTIONS":
        return with_cors(app.response_class(status=200))

    payload = request.get_json(force=True, silent=True)
    action = payload.get("action", "dashboard") if isinstance(payload, dict) else "dashboard"

    try:
        if action == "dashboard":
            data = fetch_dashboard_data()
            logger.info("Dashboard data compiled successfully")
            return with_cors(jsonify({"success": True, "data": data}))

        if action == "fields":
            return with_cors(jsonify({"success": True, "fields": fetch_field_metadata()}))

        return with_cors(jsonify({"error": "Invalid action"})), 400
    except Exception as exc:
        message = str(exc) or "Unknown error"
        logger.error("Error in jira-sync: %s", message)
        return with_cors(jsonify({"success": False, "error": message})), 500


@app.post("/api/dashboard/refresh")
def refresh_dashboard():
    outcome = dashboard_state.refresh(fetch_dashboard_data)
    snapshot = dashboard_state.snapshot()
    body = {
        "ok": outcome == APPLIED,
        "superseded": outcome == SUPERSEDED,
        "error": snapshot["error"],
        "lastSynced": snapshot["data"]["lastSynced"],
        "orders": len(snapshot["data"]["orders"]),
    }
    # Superseded: a newer refresh owns the state, so report 200.
    return jsonify(body), (502 if outcome == FAILED else 200)


@app.get("/api/dashboard")
def dashboard_view():
    ensure_loaded()
    snapshot = dashboard_state.snapshot()
    view = build_dashboard_view(snapshot["data"], *selected_filters())
    view["error"] = snapshot["error"]
    view["isLoading"] = snapshot["isLoading"]
    return jsonify(view)


@app.get("/api/dashboard/tables/<table>")
def dashboard_table(table: str):
    ensure_loaded()
    data = dashboard_state.snapshot()["data"]
    rows, searchable = table_rows(table, data)
    features = table_features_from_request(rows, searchable, DEFAULT_TABLE_SORT.get(table))
    result = features.filtered_data

    body: dict[str, Any] = {
        "table": table,
        "rows": result,
        "count": len(result),
        "search": features.search_query,
        "sort": asdict(features.sort_config),
        "filters": [asdict(f) for f in features.filters],
    }
    if table == "expected-cash-flow":
        body["totals"] = expected_cash_flow_totals(result)
    return jsonify(body)


@app.get("/dashboard")
def dashboard_page():
    if EMBED_PROTECTION and not is_embed_authorized(
        request.host_url,
        request.headers.get("Sec-Fetch-Dest", ""),
        request.referrer or "",
        ALLOWED_EMBED_ORIGINS,
    ):
        logger.warning("Refused dashboard render for referrer %r", request.referrer)
        return render_template("access_denied.html"), 403

    ensure_loaded()
    snapshot = dashboard_state.snapshot()
    view = build_dashboard_view(snapshot["data"], *selected_filters())
    return render_template("dashboard.html", view=view, error=snapshot["error"])


@app.after_request
def add_frame_policy(response):
    if request.path == "/dashboard":
        response.headers["Content-Security-Policy"] = frame_ancestors_policy(ALLOWED_EMBED_ORIGINS)
    return response


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=PORT, debug=True)
