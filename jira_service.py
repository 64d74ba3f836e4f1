import logging
import math
from datetime import datetime, timezone
from typing import Any

import requests
from dateutil import parser as dtparser

from config import (
    ORDERS_PROJECT_KEY,
    REQUEST_TIMEOUT,
    WEB_PROJECT_KEY,
    field_map,
    jira_credentials,
)


logger = logging.getLogger(__name__)

ORDERS_MAX_RESULTS = 100
WEB_PROJECTS_MAX_RESULTS = 50

SECONDS_PER_DAY = 60 * 60 * 24
AT_RISK_WINDOW_DAYS = 7

# Statuses that mean an order is no longer active.
CANCELLED_STATUSES = ("cancelled", "canceled", "done", "shipped", "complete", "completed", "closed")

ORDER_HEALTH_VALUES = (
    "on-track",
    "at-risk",
    "off-track",
    "complete",
    "pending-deposit",
    "on-hold",
    "white-label",
)

ALL_CUSTOMERS = "All Customers"
ALL_AGENTS = "All Agents"
ALL_ACCOUNT_MANAGERS = "All Account Managers"


class JiraApiError(RuntimeError):
    def __init__(self, status_code: int):
        super().__init__(f"JIRA API error: {status_code}")
        self.status_code = status_code


def orders_jql(project_key: str = ORDERS_PROJECT_KEY) -> str:
    return f'project = "{project_key}" ORDER BY created DESC'


def web_projects_jql(project_key: str = WEB_PROJECT_KEY) -> str:
    return f'project = "{project_key}" AND issuetype = Epic ORDER BY created DESC'


def jira_headers() -> dict[str, str]:
    return {
        "Accept": "application/json",
        "Content-Type": "application/json",
    }


def jira_auth(email: str, api_token: str) -> tuple[str, str]:
    return (email, api_token)


def _raise_for_jira_status(response: requests.Response, label: str) -> None:
    if response.ok:
        return
    logger.error("JIRA %s API error: %s %s", label, response.status_code, response.text[:500])
    raise JiraApiError(response.status_code)


def search_issues(
    domain: str,
    email: str,
    api_token: str,
    jql: str,
    max_results: int,
    label: str = "search",
) -> list[dict[str, Any]]:
    url = f"https://{domain}/rest/api/3/search/jql"
    response = requests.post(
        url,
        headers=jira_headers(),
        auth=jira_auth(email, api_token),
        json={
            "jql": jql,
            "maxResults": max_results,
            "fields": ["*all"],
        },
        timeout=REQUEST_TIMEOUT,
    )
    _raise_for_jira_status(response, label)
    return response.json().get("issues", []) or []


def fetch_fields(domain: str, email: str, api_token: str) -> list[dict[str, Any]]:
    url = f"https://{domain}/rest/api/3/field"
    response = requests.get(
        url,
        headers=jira_headers(),
        auth=jira_auth(email, api_token),
        timeout=REQUEST_TIMEOUT,
    )
    _raise_for_jira_status(response, "fields")
    fields = response.json()
    logger.info("Fetched %d JIRA fields", len(fields))
    return fields


def field_text(value: Any) -> str:
    """Flatten a JIRA field value (option, user, list or scalar) to text."""
    if value is None:
        return ""
    if isinstance(value, dict):
        for key in ("value", "displayName", "name"):
            inner = value.get(key)
            if inner not in (None, ""):
                return str(inner).strip()
        return ""
    if isinstance(value, list):
        return ", ".join(text for text in (field_text(item) for item in value) if text)
    return str(value).strip()


def field_number(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value
    try:
        return float(str(value).replace(",", "").strip())
    except ValueError:
        return 0


def parse_jira_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = dtparser.parse(str(value))
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _days_between(start: datetime, end: datetime) -> int:
    return math.ceil((end - start).total_seconds() / SECONDS_PER_DAY)


def _utc_now(now: datetime | None) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


def order_health(fields: dict[str, Any], health_field_id: str, now: datetime | None = None) -> str:
    override = field_text(fields.get(health_field_id)).lower() if health_field_id else ""
    if override:
        if "off" in override or "behind" in override:
            return "off-track"
        if "risk" in override or "warning" in override:
            return "at-risk"
        return "on-track"

    due = parse_jira_datetime(fields.get("duedate"))
    if due is None:
        return "on-track"

    days_until_due = _days_between(_utc_now(now), due)
    if days_until_due < 0:
        return "off-track"
    if days_until_due < AT_RISK_WINDOW_DAYS:
        return "at-risk"
    return "on-track"


def days_behind_schedule(due_value: Any, now: datetime | None = None) -> int:
    due = parse_jira_datetime(due_value)
    if due is None:
        return 0
    return max(0, _days_between(due, _utc_now(now)))


def days_in_production(start_value: Any, now: datetime | None = None) -> int:
    start = parse_jira_datetime(start_value)
    if start is None:
        return 0
    return _days_between(start, _utc_now(now))


def map_epic_status(status_name: Any) -> str:
    lower = str(status_name or "").lower()
    if "done" in lower or "complete" in lower or "closed" in lower:
        return "complete"
    if "hold" in lower or "blocked" in lower or "paused" in lower:
        return "on-hold"
    return "active"


def is_active_status(status: Any) -> bool:
    lower = str(status or "").lower()
    return not any(cancelled in lower for cancelled in CANCELLED_STATUSES)


def customer_name(fields: dict[str, Any], customer_field_id: str) -> str:
    mapped = field_text(fields.get(customer_field_id))
    if mapped:
        return mapped

    summary = str(fields.get("summary") or "")
    if " - " in summary:
        prefix = summary.split(" - ", 1)[0].strip()
        if prefix:
            return prefix
    return "Unknown"


def description_text(description: Any) -> str:
    if isinstance(description, str):
        return description.strip()
    if not isinstance(description, dict):
        return ""
    # Atlassian document format: doc -> paragraph -> text
    try:
        return str(description["content"][0]["content"][0].get("text", "")).strip()
    except (KeyError, IndexError, TypeError, AttributeError):
        return ""


def _date_only(value: Any) -> str | None:
    if not value:
        return None
    return str(value)[:10]


def normalize_order(
    issue: dict[str, Any],
    fields_map: dict[str, str],
    now: datetime | None = None,
) -> dict[str, Any]:
    fields = issue.get("fields") or {}
    key = str(issue.get("key", ""))

    def mapped(name: str) -> Any:
        field_id = fields_map.get(name)
        return fields.get(field_id) if field_id else None

    order_total = field_number(mapped("orderTotal"))
    deposit_amount = field_number(mapped("depositAmount"))
    commission_due = field_number(mapped("commissionDue"))

    commission_percent = field_number(mapped("commissionPercent"))
    if not commission_percent and order_total:
        commission_percent = round(commission_due / order_total * 100, 2)

    start_date = field_text(mapped("dateOrdered")) or _date_only(fields.get("created"))
    status_name = field_text(fields.get("status")) or "Unknown"

    mapped_days = field_number(mapped("daysInProduction"))
    production_days = int(mapped_days) if mapped_days > 0 else days_in_production(start_date, now)

    return {
        "id": key,
        "salesOrderNumber": field_text(mapped("salesOrderNumber")) or key,
        "customer": customer_name(fields, fields_map.get("customer", "")),
        "productName": field_text(mapped("productName")) or str(fields.get("summary") or "") or "Unknown Product",
        "quantityOrdered": field_number(mapped("quantityOrdered")),
        "orderTotal": order_total,
        "depositAmount": deposit_amount,
        "finalPayment": order_total - deposit_amount,
        "remainingDue": order_total - deposit_amount,
        "commissionDue": commission_due,
        "commissionPercent": commission_percent,
        "startDate": start_date,
        "dueDate": fields.get("duedate"),
        "estShipDate": fields.get("duedate"),
        "actualShipDate": field_text(mapped("actualShipDate")) or None,
        "currentStatus": status_name,
        "expectedStatus": status_name,
        "orderHealth": order_health(fields, fields_map.get("orderHealth", ""), now),
        "daysBehindSchedule": days_behind_schedule(fields.get("duedate"), now),
        "daysInProduction": production_days,
        "agent": field_text(mapped("agent")) or None,
        "accountManager": field_text(mapped("accountManager")) or None,
        "orderNotes": description_text(fields.get("description")),
    }


def _subtask_category(subtask: dict[str, Any]) -> str:
    status = ((subtask.get("fields") or {}).get("status") or {})
    return str((status.get("statusCategory") or {}).get("key", "")).lower()


def normalize_web_project(issue: dict[str, Any], now: datetime | None = None) -> dict[str, Any]:
    fields = issue.get("fields") or {}
    key = str(issue.get("key", ""))
    status = map_epic_status(field_text(fields.get("status")))

    subtasks = fields.get("subtasks") or []
    categories = [_subtask_category(subtask) for subtask in subtasks]
    total = len(subtasks)
    completed = categories.count("done")
    in_progress = categories.count("indeterminate")
    not_started = total - completed - in_progress

    due = parse_jira_datetime(fields.get("duedate"))
    is_off_track = bool(due and due < _utc_now(now) and status != "complete")

    return {
        "id": key,
        "epicName": str(fields.get("summary") or "") or "Unknown Epic",
        "epicKey": key,
        "status": status,
        "totalTasks": total,
        "notStarted": not_started,
        "inProgress": in_progress,
        "completed": completed,
        "percentComplete": round(completed / total * 100) if total else 0,
        "startDate": _date_only(fields.get("created")),
        "dueDate": fields.get("duedate"),
        "isOffTrack": is_off_track,
    }


def health_key(health: str) -> str:
    head, *rest = health.split("-")
    return head + "".join(part.capitalize() for part in rest)


def empty_health_breakdown() -> dict[str, int]:
    return {health_key(health): 0 for health in ORDER_HEALTH_VALUES}


def build_summary(orders: list[dict[str, Any]], web_projects: list[dict[str, Any]]) -> dict[str, Any]:
    active_orders = [order for order in orders if is_active_status(order.get("currentStatus"))]

    breakdown = empty_health_breakdown()
    for order in active_orders:
        health = order.get("orderHealth")
        if health in ORDER_HEALTH_VALUES:
            breakdown[health_key(health)] += 1

    return {
        "totalActiveCustomers": len(
            {o["customer"] for o in active_orders if o.get("customer") and o["customer"] != "Unknown"}
        ),
        "totalActiveOrders": len(active_orders),
        "totalMonthlyRevenue": sum(o.get("orderTotal") or 0 for o in orders),
        "totalOutstandingPayments": sum(o.get("remainingDue") or 0 for o in orders),
        "totalCommissionsDue": sum(o.get("commissionDue") or 0 for o in orders),
        "totalActiveProjects": sum(1 for p in web_projects if p.get("status") == "active"),
        "orderHealthBreakdown": breakdown,
    }


def _distinct(values: list[Any]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        if value and value not in seen:
            seen[value] = None
    return list(seen)


def filter_options(orders: list[dict[str, Any]]) -> dict[str, list[str]]:
    return {
        "customers": [ALL_CUSTOMERS]
        + _distinct([o.get("customer") for o in orders if o.get("customer") != "Unknown"]),
        "agents": [ALL_AGENTS] + _distinct([o.get("agent") for o in orders]),
        "accountManagers": [ALL_ACCOUNT_MANAGERS] + _distinct([o.get("accountManager") for o in orders]),
    }


def fetch_dashboard_data(now: datetime | None = None) -> dict[str, Any]:
    domain, email, api_token = jira_credentials()
    fields_map = field_map()
    logger.info("Connecting to JIRA at %s...", domain)

    order_issues = search_issues(
        domain, email, api_token, orders_jql(), ORDERS_MAX_RESULTS, label=ORDERS_PROJECT_KEY
    )
    logger.info("Fetched %d %s issues", len(order_issues), ORDERS_PROJECT_KEY)

    web_issues = search_issues(
        domain, email, api_token, web_projects_jql(), WEB_PROJECTS_MAX_RESULTS, label=WEB_PROJECT_KEY
    )
    logger.info("Fetched %d %s epics", len(web_issues), WEB_PROJECT_KEY)

    current = _utc_now(now)
    orders = [normalize_order(issue, fields_map, current) for issue in order_issues]
    web_projects = [normalize_web_project(issue, current) for issue in web_issues]

    summary = build_summary(orders, web_projects)
    logger.info(
        "Total orders: %d, Active orders: %d, Commission Due: $%s",
        len(orders),
        summary["totalActiveOrders"],
        summary["totalCommissionsDue"],
    )

    options = filter_options(orders)
    logger.info(
        "Unique customers: %d, Agents: %d, Account Managers: %d",
        len(options["customers"]) - 1,
        len(options["agents"]) - 1,
        len(options["accountManagers"]) - 1,
    )

    return {
        "summary": summary,
        "orders": orders,
        "webProjects": web_projects,
        "customers": options["customers"],
        "agents": options["agents"],
        "accountManagers": options["accountManagers"],
        "lastSynced": current.isoformat(),
    }


def fetch_field_metadata() -> list[dict[str, Any]]:
    domain, email, api_token = jira_credentials()
    return fetch_fields(domain, email, api_token)
