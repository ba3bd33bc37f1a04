from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from proctored_cbt.services.errors import InvalidExamError

# 문제 ID → 현재 보기 순서 기준 정답 인덱스 (0-based)
SolutionKey = Dict[str, int]


class Question(BaseModel):
    """
    객관식 단일 정답 문제 모델
    Pydantic v2 적용
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(
        ...,
        min_length=1,
        description="문제 ID (시험 내 고유 식별자)"
    )
    text: str = Field(
        ...,
        min_length=1,
        description="발문/문제 내용"
    )
    options: List[str] = Field(
        ...,
        description="보기 리스트 (현재 표시 순서)"
    )

    @field_validator('options')
    @classmethod
    def validate_options_length(cls, v: List[str]) -> List[str]:
        """
        검증 로직: 보기는 최소 2개 이상이어야 한다.
        """
        if len(v) < 2:
            raise ValueError("보기(options)는 최소 2개 이상의 항목이 필요합니다.")
        return v


class Exam(BaseModel):
    """
    시험 정의. 생성 이후 변경 불가(frozen).
    정답표는 시험 정의와 분리되어 저장소에만 전달된다.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1, description="시험 ID (고유)")
    title: str = Field(..., min_length=1, description="시험 제목")
    questions: List[Question] = Field(..., description="문제 리스트 (표시 순서)")
    duration_minutes: int = Field(
        ...,
        gt=0,
        alias="durationMinutes",
        description="제한 시간 (분)"
    )

    @model_validator(mode='after')
    def validate_unique_ids(self) -> 'Exam':
        """검증 로직: 시험 안에서 문제 ID는 중복될 수 없다."""
        seen = set()
        for q in self.questions:
            if q.id in seen:
                raise ValueError(f"문제 ID('{q.id}')가 중복되었습니다.")
            seen.add(q.id)
        return self

    def question(self, question_id: str) -> Question:
        for q in self.questions:
            if q.id == question_id:
                return q
        raise KeyError(question_id)

    def public_dict(self) -> dict:
        """정답 정보 없이 응시자에게 내려줄 수 있는 형태."""
        return self.model_dump(by_alias=True)


def validate_solution_key(questions: List[Question], key: SolutionKey) -> None:
    """
    정답표 불변식 검사.

    - 모든 문제 ID가 정답표에 정확히 한 번 존재
    - 정답표의 모든 키가 문제 ID에 대응
    - 정답 인덱스가 해당 문제의 보기 범위 안

    Raises:
        InvalidExamError: 불변식 위반 시.
    """
    question_ids = [q.id for q in questions]
    if len(set(question_ids)) != len(question_ids):
        raise InvalidExamError("문제 ID가 중복되었습니다.")

    missing = set(question_ids) - set(key)
    extra = set(key) - set(question_ids)
    if missing:
        raise InvalidExamError(f"정답표에 없는 문제가 있습니다: {sorted(missing)}")
    if extra:
        raise InvalidExamError(f"정답표에 존재하지 않는 문제 ID가 있습니다: {sorted(extra)}")

    for q in questions:
        idx = key[q.id]
        if isinstance(idx, bool) or not isinstance(idx, int) or not (0 <= idx < len(q.options)):
            raise InvalidExamError(
                f"문제 '{q.id}'의 정답 인덱스({idx})가 보기 범위(0~{len(q.options) - 1})를 벗어났습니다."
            )
