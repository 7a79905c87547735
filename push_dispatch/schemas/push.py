"""Push dispatch Pydantic schemas for request/response validation"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List


class PushSendResponse(BaseModel):
    """Aggregate counts for one dispatch request."""
    sent: int = Field(..., ge=0, description="Endpoints the providers accepted")
    failed: int = Field(..., ge=0, description="Endpoints that were rejected, misconfigured or timed out")
    recipients: int = Field(..., ge=0, description="Number of requested recipient user IDs")

    model_config = {
        "json_schema_extra": {
            "example": {"sent": 2, "failed": 0, "recipients": 1}
        }
    }


class ErrorResponse(BaseModel):
    """Error body returned by the dispatch endpoint."""
    error: str = Field(..., description="Machine-readable error code")


class PushSendBody:
    """
    Lenient view over the raw JSON request body.

    Fields of the wrong type fall back to defaults instead of failing the
    request: non-string user IDs are dropped, a non-string title or body is
    replaced, and a non-object data value becomes an empty object.
    """

    def __init__(self, raw: Dict[str, Any], default_title: str):
        self.raw = raw
        self.default_title = default_title

    @property
    def user_ids(self) -> List[str]:
        value = self.raw.get("user_ids")
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, str)]

    @property
    def title(self) -> str:
        value = self.raw.get("title")
        return value if isinstance(value, str) else self.default_title

    @property
    def body(self) -> str:
        value = self.raw.get("body")
        return value if isinstance(value, str) else ""

    @property
    def data(self) -> Dict[str, Any]:
        value = self.raw.get("data")
        return value if isinstance(value, dict) else {}
