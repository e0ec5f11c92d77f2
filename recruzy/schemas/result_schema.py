# recruzy/schemas/result_schema.py

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ViolationCountersSchema(BaseModel):
    """Счетчики нарушений прокторинга, присылаемые с фронтенда."""

    tabSwitches: int = Field(0, ge=0)
    noFace: int = Field(0, ge=0)
    multipleFaces: int = Field(0, ge=0)
    faceChanged: int = Field(0, ge=0)


class SubmitResultRequest(BaseModel):
    """Тело POST /api/submissions."""

    test_id: int = Field(..., gt=0, alias="testId")
    # Значения не проверяются: некорректный ответ просто считается неверным
    answers: Dict[str, Any]
    time_taken: int = Field(0, ge=0, alias="timeTaken")
    started_at: Optional[datetime] = Field(None, alias="startedAt")
    violations: ViolationCountersSchema = Field(default_factory=ViolationCountersSchema)
    client_errors: Optional[List[Any]] = Field(None, alias="clientErrors", max_length=200)
    submission_id: Optional[str] = Field(
        None,
        alias="submissionId",
        min_length=1,
        max_length=128,
        pattern=r"^[a-zA-Z0-9_-]+$",
    )

    model_config = ConfigDict(populate_by_name=True)
