"""
Pydantic models for request/response validation.

These models define the JSON contract of the avatar host service.
"""

from pydantic import BaseModel, Field


class UploadResponse(BaseModel):
    """Response returned after a successful avatar upload."""
    status: str = Field(default="success", description="Always 'success' on 200")
    path: str = Field(..., description="Public retrieval path: /avatars/<user_id>")


class StatsResponse(BaseModel):
    """Aggregate image counts for the storage root."""
    total_images: int = Field(..., description="Image files directly under the storage root")
    today_new_images: int = Field(..., description="Of those, how many were created today")
    current_date: str = Field(..., description="Local date used for the count, YYYY-MM-DD")


class ErrorResponse(BaseModel):
    """Standard error response."""
    detail: str = Field(..., description="Error message")
