import json
import os
from pathlib import Path


class ConfigurationError(RuntimeError):
    pass


def load_dotenv(path: Path) -> None:
    if not path.exists():
        return

    for raw in path.read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def required_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ConfigurationError(f"Missing required environment variable: {name}")
    return value


def parse_field_map(raw: str) -> dict[str, str]:
    if not raw.strip():
        return {}

    try:
        loaded = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError("JIRA_FIELD_MAP_JSON must be valid JSON") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError("JIRA_FIELD_MAP_JSON must be a JSON object")

    field_map: dict[str, str] = {}
    for label, field_id in loaded.items():
        label_clean = str(label).strip()
        field_clean = str(field_id).strip()
        if label_clean and field_clean:
            field_map[label_clean] = field_clean

    return field_map


def parse_origins(raw: str) -> list[str]:
    return [part.strip().rstrip("/") for part in raw.split(",") if part.strip()]


def parse_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def normalize_domain(raw: str) -> str:
    domain = raw.strip()
    for prefix in ("https://", "http://"):
        if domain.startswith(prefix):
            domain = domain[len(prefix):]
    return domain.rstrip("/")


def jira_credentials() -> tuple[str, str, str]:
    """Read the JIRA secrets at call time.

    Returns (domain, email, api_token). Any missing value raises
    ConfigurationError so the caller can report it per request.
    """
    missing = [
        name
        for name in ("JIRA_DOMAIN", "JIRA_EMAIL", "JIRA_API_TOKEN")
        if not os.getenv(name, "").strip()
    ]
    if missing:
        raise ConfigurationError("JIRA credentials not configured")

    return (
        normalize_domain(required_env("JIRA_DOMAIN")),
        required_env("JIRA_EMAIL"),
        required_env("JIRA_API_TOKEN"),
    )


# Semantic name -> JIRA custom field id. Ids are instance specific; override
# any of them with JIRA_FIELD_MAP_JSON once confirmed against the live site.
DEFAULT_FIELD_MAP: dict[str, str] = {
    "customer": "customfield_10038",
    "agent": "customfield_11573",
    "accountManager": "customfield_11393",
    "orderTotal": "customfield_11567",
    "depositAmount": "customfield_10074",
    "commissionDue": "customfield_11577",
    "commissionPercent": "customfield_11576",
    "quantityOrdered": "customfield_10073",
    "salesOrderNumber": "customfield_10113",
    "productName": "customfield_10115",
    "dateOrdered": "customfield_10040",
    "actualShipDate": "customfield_11161",
    "daysInProduction": "customfield_10930",
    "orderHealth": "customfield_10083",
}


def field_map() -> dict[str, str]:
    merged = dict(DEFAULT_FIELD_MAP)
    merged.update(parse_field_map(os.getenv("JIRA_FIELD_MAP_JSON", "{}")))
    return merged


load_dotenv(Path(__file__).with_name(".env"))

ORDERS_PROJECT_KEY = os.getenv("ORDERS_PROJECT_KEY", "CM")
WEB_PROJECT_KEY = os.getenv("WEB_PROJECT_KEY", "WEB")
REQUEST_TIMEOUT = float(os.getenv("JIRA_REQUEST_TIMEOUT", "25"))

ALLOWED_EMBED_ORIGINS = parse_origins(
    os.getenv(
        "ALLOWED_EMBED_ORIGINS",
        "https://dashboard.nextdaynutra.com,http://localhost:5173,http://localhost:3000",
    )
)
EMBED_PROTECTION = parse_bool_env("EMBED_PROTECTION", True)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", "8080"))
