"""Base schemas and common types for the scheduling API."""

from typing import Any

from pydantic import BaseModel, ConfigDict


class SchedulingBaseModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        populate_by_name=True,
        use_enum_values=True,
    )


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorResponse(SchedulingBaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: dict[str, Any] = {}
    request_id: str | None = None


class OkResponse(SchedulingBaseModel):
    ok: bool = True

