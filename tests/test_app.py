"""Route tests for the Flask app, with the JIRA fetch stubbed out."""

from __future__ import annotations

import unittest
from unittest import mock

import app as app_module
from config import ConfigurationError
from data_state import DashboardState
from jira_service import JiraApiError


def _order(order_id: str, **overrides) -> dict:
    order = {
        "id": order_id,
        "salesOrderNumber": f"SO-{order_id}",
        "customer": "Acme",
        "productName": "Gummies",
        "orderTotal": 1000,
        "depositAmount": 400,
        "finalPayment": 600,
        "remainingDue": 600,
        "commissionDue": 50,
        "estShipDate": "2026-04-01",
        "dueDate": "2026-04-01",
        "currentStatus": "5. In Production",
        "orderHealth": "on-track",
        "daysBehindSchedule": 0,
        "agent": "Sam",
        "accountManager": "Dana",
    }
    order.update(overrides)
    return order


PAYLOAD = {
    "summary": {},
    "orders": [
        _order("CM-1"),
        _order("CM-2", customer="Globex", agent="Kim", orderTotal=3000, remainingDue=2000,
               orderHealth="off-track", daysBehindSchedule=4),
        _order("CM-3", customer="Initech", orderTotal=200, remainingDue=0, commissionDue=0,
               currentStatus="Pending Deposit"),
    ],
    "webProjects": [
        {"id": "WEB-1", "epicName": "Storefront", "epicKey": "WEB-1", "status": "active",
         "totalTasks": 4, "completed": 2, "isOffTrack": False},
        {"id": "WEB-2", "epicName": "Blog", "epicKey": "WEB-2", "status": "on-hold",
         "totalTasks": 2, "completed": 0, "isOffTrack": True},
    ],
    "customers": ["All Customers", "Acme", "Globex", "Initech"],
    "agents": ["All Agents", "Sam", "Kim"],
    "accountManagers": ["All Account Managers", "Dana"],
    "lastSynced": "2026-03-10T15:00:00+00:00",
}


class AppTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.client = app_module.app.test_client()
        state_patch = mock.patch.object(app_module, "dashboard_state", DashboardState())
        state_patch.start()
        self.addCleanup(state_patch.stop)


class TestJiraSync(AppTestCase):
    def test_options_preflight(self) -> None:
        response = self.client.options("/jira-sync")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, b"")
        self.assertEqual(response.headers["Access-Control-Allow-Origin"], "*")
        self.assertIn("x-client-info", response.headers["Access-Control-Allow-Headers"])

    @mock.patch("app.fetch_dashboard_data", return_value=PAYLOAD)
    def test_dashboard_action(self, fetch: mock.Mock) -> None:
        response = self.client.post("/jira-sync", json={"action": "dashboard"})
        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertTrue(body["success"])
        self.assertEqual(len(body["data"]["orders"]), 3)
        self.assertEqual(response.headers["Access-Control-Allow-Origin"], "*")
        fetch.assert_called_once_with()

    @mock.patch("app.fetch_dashboard_data", return_value=PAYLOAD)
    def test_missing_or_unparseable_body_defaults_to_dashboard(self, fetch: mock.Mock) -> None:
        self.assertTrue(self.client.post("/jira-sync").get_json()["success"])
        self.assertTrue(
            self.client.post("/jira-sync", data="{oops", content_type="application/json").get_json()["success"]
        )
        self.assertEqual(fetch.call_count, 2)

    @mock.patch("app.fetch_field_metadata", return_value=[{"id": "customfield_10038", "name": "Customer"}])
    def test_fields_action(self, _fields: mock.Mock) -> None:
        body = self.client.post("/jira-sync", json={"action": "fields"}).get_json()
        self.assertEqual(body, {"success": True, "fields": [{"id": "customfield_10038", "name": "Customer"}]})

    def test_invalid_action(self) -> None:
        response = self.client.post("/jira-sync", json={"action": "delete-everything"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json(), {"error": "Invalid action"})

    @mock.patch("app.fetch_dashboard_data", side_effect=ConfigurationError("JIRA credentials not configured"))
    def test_configuration_error_envelope(self, _fetch: mock.Mock) -> None:
        response = self.client.post("/jira-sync", json={})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json(), {"success": False, "error": "JIRA credentials not configured"})
        self.assertEqual(response.headers["Access-Control-Allow-Origin"], "*")

    @mock.patch("app.fetch_dashboard_data", side_effect=JiraApiError(502))
    def test_upstream_error_envelope(self, _fetch: mock.Mock) -> None:
        response = self.client.post("/jira-sync", json={"action": "dashboard"})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json()["error"], "JIRA API error: 502")


class TestDashboardApi(AppTestCase):
    @mock.patch("app.fetch_dashboard_data", return_value=PAYLOAD)
    def test_view_model_respects_asymmetric_filters(self, fetch: mock.Mock) -> None:
        everything = self.client.get("/api/dashboard").get_json()
        acme = self.client.get("/api/dashboard?customer=Acme").get_json()

        fetch.assert_called_once_with()
        self.assertEqual(everything["summary"]["totalActiveCustomers"], 3)
        self.assertEqual(acme["summary"]["totalActiveCustomers"], 1)
        self.assertEqual(acme["summary"]["totalMonthlyRevenue"], everything["summary"]["totalMonthlyRevenue"])
        self.assertEqual(acme["summary"]["totalCommissionsDue"], 100)
        self.assertEqual(acme["summary"]["totalOutstandingPayments"], 600)
        self.assertEqual(acme["summary"]["totalActiveProjects"], 1)
        self.assertEqual(acme["filters"]["agent"], "All Agents")

        self.assertEqual(everything["cashFlow"][0]["expectedAmount"], 2600)
        self.assertEqual(everything["cashFlow"][0]["customer"], "2 customers")
        self.assertEqual([o["id"] for o in everything["needsAttention"]], ["CM-2", "CM-3"])
        self.assertEqual(everything["commissionsByAgent"][0]["agent"], "Sam")
        self.assertEqual(everything["activeProjects"]["activeProjects"], 1)
        self.assertIsNone(everything["error"])

    @mock.patch("app.fetch_dashboard_data", side_effect=JiraApiError(500))
    def test_failed_first_load_reports_error_without_retrying(self, fetch: mock.Mock) -> None:
        first = self.client.get("/api/dashboard").get_json()
        second = self.client.get("/api/dashboard").get_json()
        self.assertEqual(first["error"], "JIRA API error: 500")
        self.assertEqual(second["summary"]["totalActiveOrders"], 0)
        self.assertEqual(fetch.call_count, 1)

    def test_refresh_keeps_old_data_on_failure(self) -> None:
        with mock.patch("app.fetch_dashboard_data", return_value=PAYLOAD):
            ok = self.client.post("/api/dashboard/refresh")
        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.get_json()["orders"], 3)

        with mock.patch("app.fetch_dashboard_data", side_effect=JiraApiError(429)):
            failed = self.client.post("/api/dashboard/refresh")
        self.assertEqual(failed.status_code, 502)
        self.assertEqual(failed.get_json()["orders"], 3)
        self.assertIn("rate limit", failed.get_json()["error"])
        self.assertFalse(failed.get_json()["superseded"])

    def test_superseded_refresh_is_not_a_failure(self) -> None:
        def overtaken() -> dict:
            app_module.dashboard_state.begin_request()
            return PAYLOAD

        with mock.patch("app.fetch_dashboard_data", side_effect=overtaken):
            response = self.client.post("/api/dashboard/refresh")
        body = response.get_json()
        self.assertEqual(response.status_code, 200)
        self.assertFalse(body["ok"])
        self.assertTrue(body["superseded"])
        self.assertIsNone(body["error"])
        self.assertEqual(body["orders"], 0)

    def test_expected_cash_flow_defaults_to_ship_date_order(self) -> None:
        payload = dict(PAYLOAD, orders=[
            _order("CM-7", estShipDate="2026-05-01"),
            _order("CM-8", estShipDate="2026-03-20"),
            _order("CM-9", estShipDate="2026-04-01", orderTotal=0, depositAmount=0,
                   finalPayment=0, remainingDue=0),
        ])
        with mock.patch("app.fetch_dashboard_data", return_value=payload):
            body = self.client.get("/api/dashboard/tables/expected-cash-flow?window=all").get_json()
        self.assertEqual([row["id"] for row in body["rows"]], ["CM-8", "CM-7"])
        self.assertEqual(body["sort"], {"key": "estShipDate", "direction": "asc"})

        with mock.patch("app.fetch_dashboard_data", return_value=payload):
            body = self.client.get(
                "/api/dashboard/tables/expected-cash-flow?window=all&sort=estShipDate&direction=desc"
            ).get_json()
        self.assertEqual([row["id"] for row in body["rows"]], ["CM-7", "CM-8"])


class TestDashboardTables(AppTestCase):
    def setUp(self) -> None:
        super().setUp()
        fetch_patch = mock.patch("app.fetch_dashboard_data", return_value=PAYLOAD)
        fetch_patch.start()
        self.addCleanup(fetch_patch.stop)

    def test_search_and_sort(self) -> None:
        body = self.client.get("/api/dashboard/tables/orders?sort=orderTotal&direction=desc").get_json()
        self.assertEqual([row["id"] for row in body["rows"]], ["CM-2", "CM-1", "CM-3"])
        self.assertEqual(body["sort"], {"key": "orderTotal", "direction": "desc"})

        body = self.client.get("/api/dashboard/tables/orders?q=GLOB").get_json()
        self.assertEqual([row["id"] for row in body["rows"]], ["CM-2"])

    def test_filters_and_order_filters(self) -> None:
        body = self.client.get("/api/dashboard/tables/orders?filter.currentStatus=pending").get_json()
        self.assertEqual([row["id"] for row in body["rows"]], ["CM-3"])
        self.assertEqual(body["filters"], [{"key": "currentStatus", "value": "pending"}])

        body = self.client.get("/api/dashboard/tables/outstanding?agent=Sam").get_json()
        self.assertEqual([row["id"] for row in body["rows"]], ["CM-1"])

    def test_expected_cash_flow_totals_follow_table_rows(self) -> None:
        body = self.client.get(
            "/api/dashboard/tables/expected-cash-flow?window=all&filter.customer=globex"
        ).get_json()
        self.assertEqual([row["id"] for row in body["rows"]], ["CM-2"])
        self.assertEqual(body["totals"]["totalOrderTotal"], 3000)
        self.assertEqual(body["totals"]["totalRemainingDue"], 2000)

    def test_bad_requests(self) -> None:
        self.assertEqual(self.client.get("/api/dashboard/tables/nope").status_code, 404)
        self.assertEqual(
            self.client.get("/api/dashboard/tables/orders?sort=id&direction=sideways").status_code, 400
        )
        self.assertEqual(
            self.client.get("/api/dashboard/tables/expected-cash-flow?window=someday").status_code, 400
        )


class TestDashboardPage(AppTestCase):
    @mock.patch("app.fetch_dashboard_data", return_value=PAYLOAD)
    def test_standalone_page_is_denied(self, fetch: mock.Mock) -> None:
        response = self.client.get("/dashboard", base_url="https://dash.example.com")
        self.assertEqual(response.status_code, 403)
        self.assertIn(b"Access Denied", response.data)
        fetch.assert_not_called()

    @mock.patch("app.fetch_dashboard_data", return_value=PAYLOAD)
    def test_embedded_page_from_allowed_origin(self, _fetch: mock.Mock) -> None:
        response = self.client.get(
            "/dashboard",
            base_url="https://dash.example.com",
            headers={
                "Sec-Fetch-Dest": "iframe",
                "Referer": "https://dashboard.nextdaynutra.com/executive",
            },
        )
        self.assertEqual(response.status_code, 200)
        self.assertIn(b"Executive Dashboard", response.data)
        self.assertIn("frame-ancestors", response.headers["Content-Security-Policy"])


if __name__ == "__main__":
    unittest.main()
