from __future__ import annotations

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class GradeIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    student_name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    class_name: str = Field(..., alias="class", min_length=1)
    grade: int


class Grade(GradeIn):
    id: int


class MessageResponse(BaseModel):
    message: str


class AverageResponse(BaseModel):
    average: float


class HealthCheck(BaseModel):
    status: str
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    component: Dict[str, str]
    checks: Dict[str, HealthCheck]
    failures: Dict[str, str] = Field(default_factory=dict)
    log_shipper: Optional[Dict[str, int]] = None
