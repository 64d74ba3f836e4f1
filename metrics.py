"""Derived dashboard metrics computed from normalized orders and web projects.

Everything here is a pure function over in-memory lists. Results are
recomputed whenever the fetched data or the filter selection changes.
"""

import re
from calendar import monthrange
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Any

from jira_service import (
    ALL_ACCOUNT_MANAGERS,
    ALL_AGENTS,
    ALL_CUSTOMERS,
    ORDER_HEALTH_VALUES,
    empty_health_breakdown,
    health_key,
    is_active_status,
    parse_jira_datetime,
)


CASH_FLOW_ROW_LIMIT = 12
TOP_CUSTOMERS_LIMIT = 5

SHIP_WINDOWS = ("all", "this-month", "next-month", "month-after", "future")
FINAL_PAYMENT_STATUS = 12
LAST_PRODUCTION_STATUS = 11

ATTENTION_STATUS_WORDS = ("pending", "waiting", "blocked")
SENTINELS = {ALL_CUSTOMERS, ALL_AGENTS, ALL_ACCOUNT_MANAGERS}


def _is_all(selection: str | None) -> bool:
    return not selection or selection in SENTINELS


def filter_orders(
    orders: list[dict[str, Any]],
    customer: str | None = ALL_CUSTOMERS,
    agent: str | None = ALL_AGENTS,
    account_manager: str | None = ALL_ACCOUNT_MANAGERS,
) -> list[dict[str, Any]]:
    return [
        order
        for order in orders
        if (_is_all(customer) or order.get("customer") == customer)
        and (_is_all(agent) or order.get("agent") == agent)
        and (_is_all(account_manager) or order.get("accountManager") == account_manager)
    ]


def order_health_breakdown(orders: list[dict[str, Any]]) -> dict[str, int]:
    breakdown = empty_health_breakdown()
    for order in orders:
        health = order.get("orderHealth")
        if health in ORDER_HEALTH_VALUES:
            breakdown[health_key(health)] += 1
    return breakdown


def _sum(orders: list[dict[str, Any]], key: str) -> float:
    return sum(order.get(key) or 0 for order in orders)


def derive_summary(
    orders: list[dict[str, Any]],
    web_projects: list[dict[str, Any]],
    customer: str | None = ALL_CUSTOMERS,
    agent: str | None = ALL_AGENTS,
    account_manager: str | None = ALL_ACCOUNT_MANAGERS,
) -> dict[str, Any]:
    """Headline numbers for the metric cards.

    Customer count, order count, outstanding payments and the health
    histogram follow the filter selection. Revenue and commissions are
    organisation-wide and ignore it. Active projects only look at the web
    projects.
    """
    filtered = filter_orders(orders, customer, agent, account_manager)
    customers = {
        order["customer"]
        for order in filtered
        if order.get("customer") and order["customer"] != "Unknown"
    }

    return {
        "totalActiveCustomers": len(customers),
        "totalActiveOrders": len(filtered),
        "totalMonthlyRevenue": _sum(orders, "orderTotal"),
        "totalOutstandingPayments": _sum(filtered, "remainingDue"),
        "allTimeOutstandingPayments": _sum(orders, "remainingDue"),
        "totalCommissionsDue": _sum(orders, "commissionDue"),
        "totalActiveProjects": sum(1 for p in web_projects if p.get("status") == "active"),
        "orderHealthBreakdown": order_health_breakdown(filtered),
    }


def ship_date(order: dict[str, Any]) -> str | None:
    return order.get("estShipDate") or order.get("dueDate") or None


def cash_flow_projections(
    orders: list[dict[str, Any]],
    limit: int = CASH_FLOW_ROW_LIMIT,
) -> list[dict[str, Any]]:
    buckets: dict[str, dict[str, Any]] = {}
    for order in orders:
        remaining = order.get("remainingDue") or 0
        shipped_on = ship_date(order)
        if remaining <= 0 or not shipped_on:
            continue

        day = str(shipped_on)[:10]
        bucket = buckets.setdefault(
            day,
            {"amount": 0, "customers": {}, "orders": []},
        )
        bucket["amount"] += remaining
        bucket["customers"][order.get("customer") or "Unknown"] = None
        bucket["orders"].append(
            {
                "id": order.get("id"),
                "customer": order.get("customer"),
                "productName": order.get("productName"),
                "remainingDue": remaining,
                "status": order.get("currentStatus"),
            }
        )

    rows: list[dict[str, Any]] = []
    for day in sorted(buckets)[:limit]:
        bucket = buckets[day]
        names = list(bucket["customers"])
        rows.append(
            {
                "date": day,
                "expectedAmount": bucket["amount"],
                "customer": names[0] if len(names) == 1 else f"{len(names)} customers",
                "orderCount": len(bucket["orders"]),
                "orders": bucket["orders"],
            }
        )
    return rows


def commissions_by_agent(orders: list[dict[str, Any]]) -> list[dict[str, Any]]:
    grouped: dict[str, dict[str, Any]] = {}
    for order in orders:
        agent = order.get("agent") or "Unassigned"
        row = grouped.setdefault(
            agent,
            {"agent": agent, "orderCount": 0, "totalValue": 0, "commissionDue": 0},
        )
        row["orderCount"] += 1
        row["totalValue"] += order.get("orderTotal") or 0
        row["commissionDue"] += order.get("commissionDue") or 0

    return sorted(grouped.values(), key=lambda row: row["commissionDue"], reverse=True)


def orders_with_commission(orders: list[dict[str, Any]]) -> list[dict[str, Any]]:
    with_commission = [o for o in orders if (o.get("commissionDue") or 0) > 0]
    return sorted(with_commission, key=lambda o: o.get("commissionDue") or 0, reverse=True)


def active_customers(orders: list[dict[str, Any]]) -> list[dict[str, Any]]:
    counts: dict[str, int] = defaultdict(int)
    active: dict[str, bool] = defaultdict(bool)
    for order in orders:
        name = order.get("customer")
        if not name or name == "Unknown":
            continue
        counts[name] += 1
        if is_active_status(order.get("currentStatus")):
            active[name] = True

    return [
        {
            "id": f"customer-{index}",
            "name": name,
            "orderCount": counts[name],
            "status": "Active" if active[name] else "Inactive",
        }
        for index, name in enumerate(sorted(counts, key=str.lower), start=1)
    ]


def top_customers(orders: list[dict[str, Any]], limit: int = TOP_CUSTOMERS_LIMIT) -> list[dict[str, Any]]:
    totals: dict[str, dict[str, Any]] = {}
    for order in orders:
        name = order.get("customer")
        if not name or name == "Unknown":
            continue
        row = totals.setdefault(name, {"name": name, "totalOrders": 0, "totalRevenue": 0})
        row["totalOrders"] += 1
        row["totalRevenue"] += order.get("orderTotal") or 0

    ranked = sorted(
        totals.values(),
        key=lambda row: (row["totalOrders"], row["totalRevenue"]),
        reverse=True,
    )
    return ranked[:limit]


def _attention_rank(order: dict[str, Any]) -> int:
    health = order.get("orderHealth")
    if health == "off-track":
        return 0
    if health == "at-risk":
        return 1
    return 2


def needs_attention(orders: list[dict[str, Any]]) -> list[dict[str, Any]]:
    flagged = []
    for order in orders:
        status = str(order.get("currentStatus") or "").lower()
        pending = any(word in status for word in ATTENTION_STATUS_WORDS)
        if order.get("orderHealth") in ("at-risk", "off-track") or pending:
            flagged.append(order)

    return sorted(
        flagged,
        key=lambda o: (_attention_rank(o), -(o.get("daysBehindSchedule") or 0)),
    )


def outstanding_orders(orders: list[dict[str, Any]]) -> dict[str, Any]:
    outstanding = [o for o in orders if (o.get("remainingDue") or 0) > 0]
    return {
        "orders": outstanding,
        "totalOutstanding": _sum(outstanding, "remainingDue"),
        "totalEffectiveRemainingDue": sum(effective_remaining_due(o) for o in orders),
    }


def on_hold_orders(orders: list[dict[str, Any]]) -> dict[str, Any]:
    held = [
        o
        for o in orders
        if o.get("orderHealth") == "on-hold" or "hold" in str(o.get("currentStatus") or "").lower()
    ]
    return {"orders": held, "totalOutstanding": _sum(held, "remainingDue")}


def active_projects_overview(projects: list[dict[str, Any]]) -> dict[str, Any]:
    active = [p for p in projects if p.get("status") == "active"]
    total_tasks = sum(p.get("totalTasks") or 0 for p in active)
    completed_tasks = sum(p.get("completed") or 0 for p in active)
    return {
        "activeProjects": len(active),
        "offTrackProjects": sum(1 for p in projects if p.get("isOffTrack")),
        "totalTasks": total_tasks,
        "completedTasks": completed_tasks,
        "percentComplete": round(completed_tasks / total_tasks * 100) if total_tasks else 0,
    }


def status_number(order: dict[str, Any]) -> int:
    digits = re.sub(r"\D", "", str(order.get("currentStatus") or ""))
    return int(digits) if digits else 0


def effective_remaining_due(order: dict[str, Any]) -> float:
    if status_number(order) == FINAL_PAYMENT_STATUS:
        return order.get("finalPayment") or 0
    return order.get("remainingDue") or 0


def _add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    return date(day.year + month_index // 12, month_index % 12 + 1, 1)


def _month_bounds(day: date) -> tuple[date, date]:
    first = day.replace(day=1)
    return first, first.replace(day=monthrange(first.year, first.month)[1])


def orders_in_ship_window(
    orders: list[dict[str, Any]],
    window: str = "all",
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    if window not in SHIP_WINDOWS:
        raise ValueError(f"Unknown ship window: {window}")

    today = (now or datetime.now(timezone.utc)).date()
    this_month = _month_bounds(today)
    next_month = _month_bounds(_add_months(today, 1))
    month_after = _month_bounds(_add_months(today, 2))

    selected = []
    for order in orders:
        shipped = parse_jira_datetime(ship_date(order))
        if shipped is None:
            continue
        day = shipped.date()
        if window == "all":
            keep = True
        elif window == "this-month":
            keep = this_month[0] <= day <= this_month[1]
        elif window == "next-month":
            keep = next_month[0] <= day <= next_month[1]
        elif window == "month-after":
            keep = month_after[0] <= day <= month_after[1]
        else:
            keep = day > month_after[1]
        if keep:
            selected.append(order)
    return selected


def has_cash_value(order: dict[str, Any]) -> bool:
    return (order.get("remainingDue") or 0) > 0 or (order.get("orderTotal") or 0) > 0


def expected_cash_flow(
    orders: list[dict[str, Any]],
    window: str = "this-month",
    customer: str | None = ALL_CUSTOMERS,
    now: datetime | None = None,
) -> dict[str, Any]:
    valued = [order for order in orders if has_cash_value(order)]
    in_window = orders_in_ship_window(valued, window, now)
    selected = filter_orders(in_window, customer=customer)
    return {"orders": selected, "totals": expected_cash_flow_totals(selected)}


def expected_cash_flow_totals(orders: list[dict[str, Any]]) -> dict[str, float]:
    # Final payment is only due at finished-goods testing; remaining due
    # only while the order is still in production.
    return {
        "totalOrderTotal": _sum(orders, "orderTotal"),
        "totalDeposits": _sum(orders, "depositAmount"),
        "totalFinalPayment": sum(
            o.get("finalPayment") or 0
            for o in orders
            if status_number(o) == FINAL_PAYMENT_STATUS
        ),
        "totalRemainingDue": sum(
            o.get("remainingDue") or 0
            for o in orders
            if 1 <= status_number(o) <= LAST_PRODUCTION_STATUS
        ),
    }
