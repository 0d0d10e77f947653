"""Best-effort dispatch to the notification ports; failures are logged, never raised."""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional

from application.ports.notifications import Alerter
from core.logging_config import get_logger


logger = get_logger(__name__)


async def safe_alert(alerter: Optional[Alerter], name: str, **context: Any) -> None:
    if alerter is None:
        return
    try:
        await alerter.alert(name, **context)
    except Exception:
        logger.exception("alert_dispatch_failed", alert=name)


async def safe_notify(
    send: Callable[[], Awaitable[None]],
    *,
    name: str,
    alerter: Optional[Alerter] = None,
    **context: Any,
) -> None:
    """Run a notification callback after commit; a failure is logged and alerted."""
    try:
        await send()
    except Exception as exc:
        logger.warning("notification_failed", notification=name, error=str(exc), **context)
        await safe_alert(alerter, "notification_failed", notification=name, error=str(exc), **context)
