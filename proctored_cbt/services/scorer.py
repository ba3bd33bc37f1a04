"""
services/scorer.py

시험 채점 비즈니스 로직.
순수 Python 함수로 구성 — UI 코드, 전역 상태 변경, I/O 없음.
"""

from typing import Dict, List

from config import PASS_THRESHOLD
from proctored_cbt.models.question_model import Exam, SolutionKey
from proctored_cbt.models.result_model import ExamResult, ResultStatus


def count_correct(
    exam: Exam,
    key: SolutionKey,
    responses: Dict[str, int],
) -> int:
    """
    정답 개수를 센다.

    정답 판정 기준: responses.get(question.id) == key.get(question.id)
    응답하지 않은 문제(키 없음)는 오답으로 처리. 부분 점수/감점 없음.
    """
    return sum(
        1
        for q in exam.questions
        if q.id in responses and q.id in key and responses[q.id] == key[q.id]
    )


def is_passed(
    score: int,
    total_marks: int,
    pass_threshold: float = PASS_THRESHOLD,
) -> bool:
    """
    합격 여부를 반환한다.

    Args:
        score:          맞힌 문제 수.
        total_marks:    전체 문제 수.
        pass_threshold: 합격 기준 정답률 (0.0 ~ 1.0, 기본값 config.PASS_THRESHOLD).

    Returns:
        score / total_marks >= pass_threshold 이면 True.
        문제가 하나도 없으면 False.
    """
    if total_marks <= 0:
        return False
    return score / total_marks >= pass_threshold


def score(
    exam: Exam,
    key: SolutionKey,
    responses: Dict[str, int],
    terminated: bool = False,
    pass_threshold: float = PASS_THRESHOLD,
) -> ExamResult:
    """
    사용자 답안을 채점하여 ExamResult를 반환한다.

    Args:
        exam:           채점 대상 시험.
        key:            현재 보기 순서 기준 정답표.
        responses:      사용자 답안지. {question.id: 선택한 보기 인덱스}
        terminated:     부정행위로 강제 종료된 응시인지 여부 (호출자가 지정).
        pass_threshold: 합격 기준 정답률.

    Returns:
        ExamResult (score, totalMarks, resultStatus, terminated).
    """
    total_marks = len(exam.questions)
    correct = count_correct(exam, key, responses)
    status = ResultStatus.PASS if is_passed(correct, total_marks, pass_threshold) else ResultStatus.FAIL

    return ExamResult(
        score=correct,
        total_marks=total_marks,
        result_status=status,
        terminated=terminated,
    )


def incorrect_question_ids(
    exam: Exam,
    key: SolutionKey,
    responses: Dict[str, int],
) -> List[str]:
    """
    오답 문제 ID 리스트를 반환한다 (결과 화면 오답 노트용).
    미응답 문제도 오답에 포함. 원본 순서 유지.
    """
    return [
        q.id
        for q in exam.questions
        if responses.get(q.id) != key.get(q.id)
    ]
