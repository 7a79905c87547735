"""Pydantic schemas for request/response validation"""
from push_dispatch.schemas.push import (
    ErrorResponse,
    PushSendBody,
    PushSendResponse,
)

__all__ = [
    "ErrorResponse",
    "PushSendBody",
    "PushSendResponse",
]
