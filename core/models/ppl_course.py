# =============================================================================
# core/models/ppl_course.py - PPL Course Tranche Schemas
# =============================================================================
# A PPL course is paid in tranches; each tranche unlocks part of the
# course's flight hours. Tranche numbers are parsed from the Romanian
# invoice line text ("Tranșa 2/4", "tranșa 1 din 3", "ultima tranșa").
# =============================================================================

from enum import Enum

from pydantic import BaseModel, Field


class TrancheStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"


class TrancheInfo(BaseModel):
    """Tranche position parsed from an invoice line."""
    tranche_number: int = Field(..., ge=1)
    # None when the line doesn't say how many tranches there are
    total_tranches: int | None = Field(default=None, ge=1)
    is_final: bool = False
    amount: float | None = None


class PPLCourseTranche(BaseModel):
    """Row of the ppl_course_tranches table."""
    id: str | None = None
    invoice_id: str
    user_id: str | None = None
    company_id: str | None = None
    tranche_number: int
    total_tranches: int
    hours_allocated: float
    total_course_hours: float
    amount: float = 0
    currency: str = "RON"
    description: str = ""
    purchase_date: str | None = None
    status: TrancheStatus = TrancheStatus.ACTIVE
    used_hours: float = 0
    remaining_hours: float = 0


class PPLCourseSummary(BaseModel):
    """Progress over all of a user's tranches."""
    total_tranches: int = 0
    completed_tranches: int = 0
    total_hours_allocated: float = 0
    total_hours_used: float = 0
    total_hours_remaining: float = 0
    progress: float = Field(default=0, description="Percent of allocated hours flown")
    is_completed: bool = False
