"""
services/exam_authoring.py

출제자 흐름: 추출 결과 확정 → 보기 섞기 + 시험 ID 발급 → 저장소 저장.
보기 순서는 시험 단위로 한 번만 섞인다 (모든 응시자가 같은 순서를 본다).
"""

import logging
import random
import string
from typing import List, Optional, Tuple

from pydantic import ValidationError

from proctored_cbt.models.question_model import Exam, Question, SolutionKey
from proctored_cbt.services import shuffle_engine
from proctored_cbt.services.errors import InvalidExamError
from proctored_cbt.services.exam_store import ExamStore

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_exam_id(rng: Optional[random.Random] = None) -> str:
    rng = rng or random.SystemRandom()
    return "exam-" + "".join(rng.choice(_ID_ALPHABET) for _ in range(9))


def finalize_exam(
    questions: List[Question],
    key: SolutionKey,
    title: str,
    duration_minutes: int,
    rng: Optional[random.Random] = None,
) -> Tuple[Exam, SolutionKey]:
    """추출된 문제를 섞어 변경 불가능한 Exam과 그 순서 기준 정답표를 만든다."""
    if not questions:
        raise InvalidExamError("문제가 없습니다.")

    shuffled, shuffled_key = shuffle_engine.shuffle(questions, key, rng)
    try:
        exam = Exam(
            id=new_exam_id(rng),
            title=(title or "").strip(),
            questions=shuffled,
            duration_minutes=duration_minutes,
        )
    except ValidationError as e:
        raise InvalidExamError(f"시험 정보가 올바르지 않습니다: {e.error_count()}개 필드 검증 실패") from e
    return exam, shuffled_key


async def publish_exam(
    store: ExamStore,
    questions: List[Question],
    key: SolutionKey,
    title: str,
    duration_minutes: int,
    examiner_email: str,
    rng: Optional[random.Random] = None,
) -> Tuple[Exam, SolutionKey]:
    """
    시험 확정 + 저장. 저장 실패 시 PersistenceError가 그대로 전파되며
    호출자는 같은 입력으로 다시 시도할 수 있다.
    """
    if not (examiner_email or "").strip():
        raise InvalidExamError("출제자 이메일을 입력해야 합니다.")

    exam, shuffled_key = finalize_exam(questions, key, title, duration_minutes, rng)
    await store.create_exam(exam, shuffled_key, examiner_email.strip())
    logger.info(f"시험 발행: {exam.id} '{exam.title}' ({len(exam.questions)}문항, {exam.duration_minutes}분)")
    return exam, shuffled_key
