"""Base schemas and common types for the Grapple API."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict


# =============================================================================
# BASE SCHEMAS
# =============================================================================


class GrappleBaseModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        populate_by_name=True,
    )


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorDetail(GrappleBaseModel):
    """Detailed error information."""

    field: str | None = None
    message: str
    code: str


class ErrorResponse(GrappleBaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: list[ErrorDetail] = []


# =============================================================================
# COMMON REFERENCE SCHEMAS
# =============================================================================


class ProfileRef(GrappleBaseModel):
    """Minimal user profile for embedding in responses."""

    id: UUID
    display_name: str
    avatar_url: str | None = None


class GroupRef(GrappleBaseModel):
    """Minimal group reference."""

    id: UUID
    name: str
