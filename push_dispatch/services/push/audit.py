"""
Delivery audit sink.

Persists one record per attempted endpoint after a dispatch completes.
The sink is optional and best-effort: a failed write is logged and never
changes the dispatch response.
"""

import asyncio
import logging
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from push_dispatch.core.database import (
    create_audit_engine,
    create_session_factory,
    init_audit_schema,
    session_scope,
)
from push_dispatch.core.logging_config import get_request_id, mask_token
from push_dispatch.models.delivery_log import DeliveryLog
from push_dispatch.services.push.models import DeliveryResult, DeviceEndpoint

logger = logging.getLogger(__name__)


class DeliveryAuditSink:
    """
    Writes DeliveryLog rows through SQLAlchemy.

    Usage:
        sink = DeliveryAuditSink.from_url("sqlite:///./data/audit.db")
        await sink.record(sender_id, [(endpoint, result), ...])
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str) -> "DeliveryAuditSink":
        """Build a sink for the given database URL, creating tables if needed."""
        engine = create_audit_engine(database_url)
        init_audit_schema(engine)
        return cls(create_session_factory(engine))

    def _build_rows(
        self,
        sender_id: str,
        outcomes: Sequence[Tuple[DeviceEndpoint, DeliveryResult]],
        request_id: Optional[str],
    ) -> List[DeliveryLog]:
        return [
            DeliveryLog(
                request_id=request_id,
                sender_id=sender_id,
                provider=result.provider.value,
                platform=endpoint.platform_tag[:20] or None,
                token_prefix=mask_token(endpoint.token),
                status=result.status.value,
                status_code=result.status_code,
                reason=(result.error_reason or "")[:255] or None,
                created_at=result.timestamp,
            )
            for endpoint, result in outcomes
        ]

    def _write(self, rows: List[DeliveryLog]) -> None:
        with session_scope(self._session_factory) as db:
            db.add_all(rows)
            db.commit()

    async def record(
        self,
        sender_id: str,
        outcomes: Sequence[Tuple[DeviceEndpoint, DeliveryResult]],
    ) -> int:
        """
        Persist outcomes for one dispatch.

        Args:
            sender_id: Caller identity
            outcomes: (endpoint, result) pairs for attempted endpoints

        Returns:
            Number of rows written (0 if the write failed)
        """
        if not outcomes:
            return 0

        rows = self._build_rows(sender_id, outcomes, get_request_id())
        try:
            await asyncio.to_thread(self._write, rows)
        except SQLAlchemyError as e:
            logger.error(f"Failed to write delivery audit records: {e}", exc_info=True)
            return 0

        logger.debug("Delivery audit records written", extra={"count": len(rows)})
        return len(rows)
