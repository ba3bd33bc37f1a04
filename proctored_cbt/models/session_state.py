"""
models/session_state.py

시험 진행 상태를 담는 OMR 카드 모델.
Pydantic BaseModel 기반 — 직렬화/역직렬화 및 타입 안전성 확보.
UI 코드 없음. 변경은 SessionController의 전이 연산을 통해서만 이루어진다.
"""

import time
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionStatus(str, Enum):
    """응시 세션 상태. SUBMITTED / TERMINATED 는 종료 상태."""

    IDLE = "IDLE"
    REGISTERED = "REGISTERED"
    IN_PROGRESS = "IN_PROGRESS"
    REVIEWING = "REVIEWING"
    SUBMITTED = "SUBMITTED"
    TERMINATED = "TERMINATED"

    @property
    def is_active(self) -> bool:
        return self in (SessionStatus.IN_PROGRESS, SessionStatus.REVIEWING)

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.SUBMITTED, SessionStatus.TERMINATED)


class SessionState(BaseModel):
    """
    한 응시자의 시험 세션 전체 상태를 표현하는 모델.

    Attributes:
        student_name:           응시자 이름 (자기 신고, 인증 없음).
        student_class:          학급/학년.
        responses:              답안지. {question.id: 선택한 보기 인덱스}
        current_index:          현재 보고 있는 문제 인덱스 (0-based).
        status:                 세션 상태.
        time_remaining_seconds: 남은 시간 (초).
        started_at:             시험 시작 시각 (Unix timestamp). 시작 전에는 None.
    """

    model_config = ConfigDict(populate_by_name=True)

    student_name: str = Field(default="", alias="studentName")
    student_class: str = Field(default="", alias="studentClass")
    responses: Dict[str, int] = Field(
        default_factory=dict,
        description="사용자 답안지. key: question.id, value: 선택한 보기 인덱스"
    )
    current_index: int = Field(
        default=0,
        ge=0,
        alias="currentIndex",
        description="현재 풀고 있는 문제 인덱스 (0-based)"
    )
    status: SessionStatus = Field(default=SessionStatus.IDLE)
    time_remaining_seconds: int = Field(
        default=0,
        ge=0,
        alias="timeRemainingSeconds",
    )
    started_at: Optional[float] = Field(default=None, alias="startedAt")

    def mark_started(self) -> None:
        self.started_at = time.time()
