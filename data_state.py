import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable

from jira_service import ALL_ACCOUNT_MANAGERS, ALL_AGENTS, ALL_CUSTOMERS


logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "JIRA rate limit reached. Showing last loaded data. Try again in a few minutes."

APPLIED = "applied"
FAILED = "failed"
SUPERSEDED = "superseded"


def initial_data() -> dict[str, Any]:
    return {
        "summary": None,
        "orders": [],
        "webProjects": [],
        "customers": [ALL_CUSTOMERS],
        "agents": [ALL_AGENTS],
        "accountManagers": [ALL_ACCOUNT_MANAGERS],
        "lastSynced": None,
    }


def is_rate_limited(message: str) -> bool:
    lowered = message.lower()
    return "429" in message or "rate limit" in lowered


def friendly_error(exc: Exception) -> str:
    message = str(exc) or exc.__class__.__name__
    return RATE_LIMIT_MESSAGE if is_rate_limited(message) else message


class DashboardState:
    """Holds the most recently fetched dashboard payload.

    Every refresh takes a new request token. A result (or error) is applied
    only if its token is still the newest one issued, so a slow response can
    never overwrite the result of a later request.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._latest_token = 0
        self._pending: set[int] = set()
        self.data = initial_data()
        self.error: str | None = None
        self.updated_at: str | None = None

    @property
    def is_loading(self) -> bool:
        with self._lock:
            return bool(self._pending)

    @property
    def has_data(self) -> bool:
        return self.data.get("lastSynced") is not None

    def begin_request(self) -> int:
        with self._lock:
            self._latest_token += 1
            token = self._latest_token
            self._pending.add(token)
            self.error = None
            return token

    def apply_result(self, token: int, payload: dict[str, Any]) -> bool:
        with self._lock:
            self._pending.discard(token)
            if token != self._latest_token:
                logger.info("Discarding stale dashboard response (token %d < %d)", token, self._latest_token)
                return False
            fresh = initial_data()
            fresh.update(payload)
            self.data = fresh
            self.error = None
            self.updated_at = datetime.now(timezone.utc).isoformat()
            return True

    def apply_error(self, token: int, exc: Exception) -> bool:
        with self._lock:
            self._pending.discard(token)
            if token != self._latest_token:
                logger.info("Discarding stale dashboard error (token %d < %d)", token, self._latest_token)
                return False
            self.error = friendly_error(exc)
            return True

    def refresh(self, loader: Callable[[], dict[str, Any]]) -> str:
        """Run loader and apply its outcome.

        Returns APPLIED, FAILED, or SUPERSEDED when a newer request was issued
        while this one was in flight and its outcome was dropped.
        """
        token = self.begin_request()
        try:
            payload = loader()
        except Exception as exc:
            logger.error("Error fetching JIRA data: %s", exc)
            return FAILED if self.apply_error(token, exc) else SUPERSEDED

        if not self.apply_result(token, payload):
            return SUPERSEDED
        logger.info("Data synced: %d orders from JIRA", len(self.data.get("orders", [])))
        return APPLIED

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "data": copy.deepcopy(self.data),
                "error": self.error,
                "isLoading": bool(self._pending),
                "updatedAt": self.updated_at,
            }
