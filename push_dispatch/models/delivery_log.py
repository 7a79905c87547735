"""DeliveryLog SQLAlchemy ORM model for push delivery audit records"""
from sqlalchemy import Column, String, Integer, DateTime, Index
from push_dispatch.core.database import Base
import uuid
from datetime import datetime, timezone


class DeliveryLog(Base):
    """
    One row per attempted endpoint of a dispatch request.

    Attributes:
        id: UUID primary key
        request_id: Request correlation ID (X-Request-ID)
        sender_id: Caller identity that requested the push
        provider: Provider the endpoint was routed to ('apns', 'fcm')
        platform: Raw platform tag from the device registry
        token_prefix: Truncated device token (never the full token)
        status: DeliveryStatus value
        status_code: Provider HTTP status code, if a response was received
        reason: Provider rejection reason or local error code
        created_at: When the outcome was recorded (UTC)
    """

    __tablename__ = "push_delivery_log"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    request_id = Column(String(36), nullable=True)
    sender_id = Column(String(255), nullable=False)
    provider = Column(String(10), nullable=False)
    platform = Column(String(20), nullable=True)
    token_prefix = Column(String(32), nullable=False)
    status = Column(String(32), nullable=False)
    status_code = Column(Integer, nullable=True)
    reason = Column(String(255), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index('idx_push_delivery_log_sender', 'sender_id'),
        Index('idx_push_delivery_log_created', 'created_at'),
    )

    def __repr__(self):
        return f"<DeliveryLog(id={self.id}, provider={self.provider}, status={self.status})>"
