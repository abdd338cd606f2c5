"""
Pydantic schemas for booking reviews.

Either party of a completed booking may leave one review.  Reviews can
be moderated by administrators before being published.
"""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator


class ReviewCreate(BaseModel):
    """Schema for creating a new review."""

    booking_id: int = Field(..., description="Identifier of the completed booking")
    rating: int = Field(..., ge=1, le=5, description="Rating from 1 to 5")
    review_text: Optional[str] = Field(None, description="Optional textual review")
    category_ratings: Optional[Dict[str, int]] = Field(
        None, examples=[{"communication": 5, "quality": 4}]
    )
    is_public: bool = True

    @field_validator("review_text")
    @classmethod
    def sanitize_text(cls, v: Optional[str]) -> Optional[str]:
        """Trim whitespace and enforce a maximum length."""
        if v is None:
            return None
        v = v.strip()
        if len(v) > 2000:
            raise ValueError("Review text must be 2000 characters or fewer")
        return v or None

    @field_validator("category_ratings")
    @classmethod
    def check_categories(cls, v: Optional[Dict[str, int]]) -> Optional[Dict[str, int]]:
        if v is None:
            return None
        for name, score in v.items():
            if not 1 <= score <= 5:
                raise ValueError(f"Category rating '{name}' must be between 1 and 5")
        return v


class ReviewModerate(BaseModel):
    approved: bool = Field(..., description="Whether to approve the review")


class ReviewRead(BaseModel):
    id: int
    booking_id: int
    listing_id: int
    reviewer_id: int
    reviewee_id: int
    reviewer_name: Optional[str] = None
    rating: int
    review_text: Optional[str]
    category_ratings: Optional[Dict[str, int]] = None
    is_public: bool
    approved: bool
    moderated_by: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True,
    }


class RatingSummary(BaseModel):
    average: float
    count: int
    distribution: Dict[int, int]
