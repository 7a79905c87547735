"""SQLAlchemy ORM models"""
from push_dispatch.models.delivery_log import DeliveryLog

__all__ = [
    "DeliveryLog",
]
