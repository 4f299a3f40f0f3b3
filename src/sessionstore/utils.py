import secrets
from datetime import UTC, datetime


def now() -> datetime:
    return datetime.now(UTC)


def generate_secret() -> str:
    return secrets.token_urlsafe(32)


def is_valid_service_name(value: str) -> bool:
    """Service names become MongoDB field path segments under `tokens`."""
    return bool(value) and "." not in value and not value.startswith("$") and "\x00" not in value
