"""
Models for the collaborators the engine reads from: the borrower roster and
the per-tenant library policy.
"""

from pydantic import BaseModel, ConfigDict, Field


class Borrower(BaseModel):
    """The roster's view of a borrower. The engine only reads ``is_active``."""

    id: str
    is_active: bool
    role: str = "student"

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class LibraryPolicy(BaseModel):
    """Per-tenant circulation settings, defaults already applied."""

    loan_duration_days: int = Field(default=14, ge=1)
    fine_per_day: float = Field(default=0.50, ge=0.0)
    max_books_per_student: int = Field(default=3, ge=1)
