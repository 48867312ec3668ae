from __future__ import annotations

import structlog
from sqlmodel import Session

from app.adapters.base import DispatchResult, NotificationDispatcher, NotificationMessage
from app.adapters.notification_dispatchers import build_default_dispatcher
from app.domain.errors import DependencyError
from app.domain.models import NotificationLog, NotificationStatus
from app.infra.db import get_engine

logger = structlog.get_logger(__name__)


class NotificationService:
    """Best-effort delivery: every attempt is logged, failures never propagate."""

    def __init__(self, dispatcher: NotificationDispatcher | None = None) -> None:
        self._dispatcher = dispatcher or build_default_dispatcher()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _dispatch(self, message: NotificationMessage) -> DispatchResult:
        try:
            result = self._dispatcher.send(message)
        except Exception as exc:
            error = DependencyError(f"notification dispatcher failed: {exc}")
            logger.warning("notification_dispatch_failed", recipient=message.recipient, error=str(error), exc_info=exc)
            return DispatchResult(ok=False, detail=str(error))
        if not result.ok:
            logger.warning("notification_rejected", recipient=message.recipient, detail=result.detail)
        return result

    def notify(
        self,
        tenant_id: str,
        message: NotificationMessage,
        *,
        related_type: str | None = None,
        related_id: str | None = None,
    ) -> DispatchResult:
        result = self._dispatch(message)
        log = NotificationLog(
            tenant_id=tenant_id,
            recipient=message.recipient,
            subject=message.subject,
            text_content=message.text_body,
            status=NotificationStatus.SENT if result.ok else NotificationStatus.FAILED,
            error_message=None if result.ok else result.detail,
            provider_response=result.provider_response,
            related_type=related_type,
            related_id=related_id,
        )
        try:
            with self._session() as session:
                session.add(log)
                session.commit()
        except Exception:
            logger.exception("notification_log_write_failed", recipient=message.recipient)
        logger.info(
            "notification_attempted",
            recipient=message.recipient,
            related_type=related_type,
            related_id=related_id,
            ok=result.ok,
        )
        return result
