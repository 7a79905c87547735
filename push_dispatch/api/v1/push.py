"""
Push Dispatch API endpoints

- POST /api/v1/push/send - Send a notification to every device of the given users
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from push_dispatch.core.config import Settings, get_settings
from push_dispatch.core.metrics import record_dispatch_request
from push_dispatch.schemas.push import ErrorResponse, PushSendBody, PushSendResponse
from push_dispatch.services.push.device_registry import (
    DeviceRegistry,
    RegistryUnavailableError,
    get_device_registry,
)
from push_dispatch.services.push.dispatch_service import (
    PushDispatchService,
    get_push_dispatch_service,
)
from push_dispatch.services.push.models import NotificationRequest
from push_dispatch.utils.jwt import get_caller_id

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/push",
    tags=["push-notifications"]
)


async def provide_device_registry(
    settings: Settings = Depends(get_settings),
) -> Optional[DeviceRegistry]:
    """Device registry dependency; None when the connection is not configured."""
    if not settings.registry_ready:
        return None
    return get_device_registry()


async def provide_dispatch_service(
    settings: Settings = Depends(get_settings),
) -> PushDispatchService:
    """Dispatch service dependency."""
    return get_push_dispatch_service(settings)


def _error(code: str, status_code: int) -> JSONResponse:
    record_dispatch_request(code)
    return JSONResponse(status_code=status_code, content={"error": code})


@router.post(
    "/send",
    response_model=PushSendResponse,
    summary="Send a push notification",
    description=(
        "Resolve every registered device of the given users and deliver the "
        "notification through APNS or FCM. Per-device failures are reported "
        "in the failed count, never as an error response."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "no_recipients or invalid_json"},
        401: {"model": ErrorResponse, "description": "Missing or undecodable bearer token"},
        405: {"model": ErrorResponse, "description": "Method not allowed"},
        500: {"model": ErrorResponse, "description": "missing_supabase_env or registry_unavailable"},
    },
)
async def send_push(
    request: Request,
    settings: Settings = Depends(get_settings),
    registry: Optional[DeviceRegistry] = Depends(provide_device_registry),
    dispatch_service: PushDispatchService = Depends(provide_dispatch_service),
):
    """
    Dispatch one notification.

    Checks run in a fixed order and each one returns before any later work:
    registry configuration, caller identity, JSON body, recipients. No
    registry lookup or provider call happens for a rejected request.

    Body:
        user_ids: Recipient user IDs (required, non-empty)
        title: Notification title (default from PUSH_DEFAULT_TITLE)
        body: Notification body (default "")
        data: Opaque data object passed through to the providers

    Returns:
        {"sent": int, "failed": int, "recipients": int}
    """
    if registry is None:
        logger.error("Dispatch rejected: device registry connection not configured")
        return _error("missing_supabase_env", status.HTTP_500_INTERNAL_SERVER_ERROR)

    sender_id = get_caller_id(request.headers.get("Authorization"))
    if not sender_id:
        return _error("unauthorized", status.HTTP_401_UNAUTHORIZED)

    try:
        raw_body = await request.json()
    except (ValueError, UnicodeDecodeError):
        return _error("invalid_json", status.HTTP_400_BAD_REQUEST)
    if not isinstance(raw_body, dict):
        # Arrays and scalars parse but carry no user_ids
        raw_body = {}

    body = PushSendBody(raw_body, default_title=settings.PUSH_DEFAULT_TITLE)
    user_ids = body.user_ids
    if not user_ids:
        return _error("no_recipients", status.HTTP_400_BAD_REQUEST)

    notification_request = NotificationRequest(
        sender_id=sender_id,
        recipient_user_ids=user_ids,
        title=body.title,
        body=body.body,
        data=body.data,
    )

    try:
        endpoints = await registry.resolve(notification_request.recipient_user_ids)
    except RegistryUnavailableError as e:
        logger.error(f"Device registry unavailable: {e}")
        return _error("registry_unavailable", status.HTTP_500_INTERNAL_SERVER_ERROR)

    result = await dispatch_service.dispatch(
        notification=notification_request.normalize(),
        endpoints=endpoints,
        recipient_count=len(notification_request.recipient_user_ids),
        sender_id=sender_id,
    )

    record_dispatch_request("ok")
    logger.info(
        "Push dispatch request complete",
        extra={
            "sender_id": sender_id,
            "recipients": result.recipient_count,
            "sent": result.sent_count,
            "failed": result.failed_count,
        }
    )
    return PushSendResponse(**result.to_response())
