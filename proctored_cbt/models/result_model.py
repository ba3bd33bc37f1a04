"""
models/result_model.py

채점 결과 및 저장소로 전송되는 제출 기록 모델.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field


class ResultStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"


class ExamResult(BaseModel):
    """채점 결과. 한 번 생성되면 변경 불가."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    score: int = Field(..., ge=0, description="맞힌 문제 수")
    total_marks: int = Field(..., ge=0, alias="totalMarks", description="전체 문제 수")
    result_status: ResultStatus = Field(..., alias="resultStatus")
    terminated: bool = Field(
        default=False,
        description="부정행위 감지로 강제 종료되었는지 여부"
    )

    @property
    def passed(self) -> bool:
        return self.result_status is ResultStatus.PASS


class Submission(BaseModel):
    """
    저장소 submit 요청 본문.
    점수는 포함하지 않는다 — 공식 채점은 저장소가 한다.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    exam_id: str = Field(..., alias="examId")
    student_name: str = Field(..., alias="studentName")
    student_class: str = Field(..., alias="studentClass")
    responses: Dict[str, int] = Field(default_factory=dict)
    terminated: bool = False
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        description="제출 시각 (ISO-8601, UTC)"
    )
