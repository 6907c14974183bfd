# core/notifications.py
"""
Security notification sink.

The auth core reports security-relevant events (lockouts, 2FA changes,
backup-code use, password and role changes) to a sink. Delivery (web push,
email) lives outside this service; the default sink only logs.
"""
from typing import Any, Protocol

from core.logging import get_logger

logger = get_logger(__name__)


class SecurityEvent:
    ACCOUNT_LOCKED = "account_locked"
    TWO_FACTOR_ENABLED = "two_factor_enabled"
    TWO_FACTOR_DISABLED = "two_factor_disabled"
    TWO_FACTOR_RESET = "two_factor_reset"
    BACKUP_CODE_USED = "backup_code_used"
    BACKUP_CODES_REGENERATED = "backup_codes_regenerated"
    PASSWORD_CHANGED = "password_changed"
    ROLE_CHANGED = "role_changed"
    ACCOUNT_DEACTIVATED = "account_deactivated"


class NotificationSink(Protocol):
    async def security_alert(self, user_id: int, event: str, **context: Any) -> None: ...


class LoggingNotificationSink:
    """Default sink: records the alert as a structured log event."""

    async def security_alert(self, user_id: int, event: str, **context: Any) -> None:
        logger.info("security_alert", user_id=user_id, alert=event, **context)


class RecordingNotificationSink:
    """Keeps alerts in memory. Handy for tests and local debugging."""

    def __init__(self) -> None:
        self.alerts: list[tuple[int, str, dict[str, Any]]] = []

    async def security_alert(self, user_id: int, event: str, **context: Any) -> None:
        self.alerts.append((user_id, event, context))

    def events_for(self, user_id: int) -> list[str]:
        return [event for uid, event, _ in self.alerts if uid == user_id]
