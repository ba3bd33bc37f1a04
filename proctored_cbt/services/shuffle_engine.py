"""
services/shuffle_engine.py

보기 순서 무작위화 + 정답표 재매핑.
순수 함수 — 입력을 변경하지 않으며 난수원은 호출자가 주입한다.

정답은 위치가 아니라 보기 텍스트(값)로 추적한다.
동일한 텍스트의 보기가 여러 개인 경우, 섞인 순서에서 가장 앞에 있는
일치 항목을 정답 위치로 삼는다 (first-match).
"""

import random
from typing import List, Optional, Tuple

from proctored_cbt.models.question_model import Question, SolutionKey, validate_solution_key


def shuffle(
    questions: List[Question],
    key: SolutionKey,
    rng: Optional[random.Random] = None,
) -> Tuple[List[Question], SolutionKey]:
    """
    문제별로 보기를 독립적으로 섞고 정답표를 새 순서에 맞게 다시 계산한다.

    Args:
        questions: 원본 문제 리스트.
        key:       원본 보기 순서 기준 정답표.
        rng:       난수 생성기. 재현 가능한 테스트를 위해 시드 고정 인스턴스 주입.

    Returns:
        (섞인 문제 리스트, 새 정답표)

    Raises:
        InvalidExamError: 문제/정답표 불변식 위반.
    """
    validate_solution_key(questions, key)
    rng = rng or random.Random()

    shuffled_questions: List[Question] = []
    shuffled_key: SolutionKey = {}

    for q in questions:
        correct_text = q.options[key[q.id]]

        options = list(q.options)
        rng.shuffle(options)

        shuffled_questions.append(q.model_copy(update={"options": options}))
        shuffled_key[q.id] = options.index(correct_text)

    return shuffled_questions, shuffled_key
