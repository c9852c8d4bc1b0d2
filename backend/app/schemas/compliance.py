"""Compliance schemas - access decisions, CCPs, checks and safety scores."""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


# ============== Access Schemas ==============

class ModeSwitchRequest(BaseModel):
    """Explicit operating-mode switch."""
    mode: str = Field(..., min_length=1, max_length=20)


# ============== CCP Schemas ==============

class CorrectiveAction(BaseModel):
    action: str = Field(..., min_length=1, max_length=500)
    responsible_person: Optional[str] = None
    time_limit: Optional[str] = None


class CCPCreate(BaseModel):
    """Schema for creating a Critical Control Point."""
    name: str = Field(..., min_length=1, max_length=200)
    critical_limit: str = Field(..., min_length=1, max_length=50, description="e.g. 75°C")
    limit_direction: Literal["min", "max"] = "min"
    monitoring_parameter: Optional[str] = Field(default=None, max_length=200)
    check_frequency: Optional[str] = Field(default=None, max_length=100)
    unit: str = Field(default="C", max_length=20)
    linked_menu_items: List[str] = Field(default_factory=list)
    corrective_actions: List[CorrectiveAction] = Field(default_factory=list)


class CCPCheckCreate(BaseModel):
    """Schema for recording a CCP check."""
    ccp_id: int
    recorded_value: str = Field(..., min_length=1, max_length=50)
    notes: Optional[str] = Field(default=None, max_length=2000)


# ============== Safety Score Schemas ==============

class SafetyScoreCounts(BaseModel):
    """Counts that are not derived from stored records."""
    missed_checks: int = Field(default=0, ge=0)
    scheduled_checks: int = Field(default=0, ge=0)
    critical_incidents: int = Field(default=0, ge=0)
    major_incidents: int = Field(default=0, ge=0)
    minor_incidents: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def validate_missed_within_scheduled(self) -> "SafetyScoreCounts":
        if self.missed_checks > self.scheduled_checks:
            raise ValueError("missed_checks cannot exceed scheduled_checks")
        return self


class SafetyScorePreview(SafetyScoreCounts):
    """Every input of a safety score, for a dry-run derivation."""
    training_courses_completed: int = Field(default=0, ge=0)
    training_courses_required: int = Field(default=0, ge=0)
    ccp_checks_passed: int = Field(default=0, ge=0)
    ccp_checks_performed: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def validate_parts_within_wholes(self) -> "SafetyScorePreview":
        if self.training_courses_completed > self.training_courses_required:
            raise ValueError("training_courses_completed cannot exceed training_courses_required")
        if self.ccp_checks_passed > self.ccp_checks_performed:
            raise ValueError("ccp_checks_passed cannot exceed ccp_checks_performed")
        return self
