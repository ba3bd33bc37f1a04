"""
services/exam_store.py

시험 정의 / 응시 결과 저장소.

Public API (모두 코루틴):
  - create_exam(exam, key, examiner_email) -> None
  - get_exam(exam_id) -> (Exam, SolutionKey)   : 응시 엔진용. 정답표 포함
  - submit_result(submission) -> ExamResult    : 저장소가 직접 채점한 공식 결과

구현:
  - InMemoryExamStore : 프로세스 내 저장소. 채점은 저장소 쪽 정답표로 수행.
  - HttpExamStore     : 원격 저장소 (httpx). 네트워크/응답 오류는 PersistenceError.

클라이언트가 계산한 점수는 공식 결과로 신뢰하지 않는다.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from config import EXAM_STORE_URL, PASS_THRESHOLD, STORE_TIMEOUT
from proctored_cbt.models.question_model import Exam, SolutionKey, validate_solution_key
from proctored_cbt.models.result_model import ExamResult, Submission
from proctored_cbt.services import scorer
from proctored_cbt.services.errors import ExamNotFoundError, PersistenceError

logger = logging.getLogger(__name__)


class ExamStore(ABC):

    @abstractmethod
    async def create_exam(self, exam: Exam, key: SolutionKey, examiner_email: str) -> None:
        ...

    @abstractmethod
    async def get_exam(self, exam_id: str) -> Tuple[Exam, SolutionKey]:
        ...

    @abstractmethod
    async def submit_result(self, submission: Submission) -> ExamResult:
        ...

    async def aclose(self) -> None:
        return None


# ══════════════════════════════════════════════════════════════════════════════
# 인메모리 저장소
# ══════════════════════════════════════════════════════════════════════════════

class InMemoryExamStore(ExamStore):

    def __init__(self, pass_threshold: float = PASS_THRESHOLD):
        self._pass_threshold = pass_threshold
        self._exams: Dict[str, Tuple[Exam, SolutionKey, str]] = {}
        self.submissions: List[Tuple[Submission, ExamResult]] = []
        self._lock = asyncio.Lock()

    async def create_exam(self, exam: Exam, key: SolutionKey, examiner_email: str) -> None:
        validate_solution_key(exam.questions, key)
        async with self._lock:
            if exam.id in self._exams:
                raise PersistenceError(f"이미 존재하는 시험 ID입니다: {exam.id}")
            self._exams[exam.id] = (exam, dict(key), examiner_email)
        logger.info(f"시험 저장: {exam.id} ({len(exam.questions)}문항, 출제자 {examiner_email})")

    async def get_exam(self, exam_id: str) -> Tuple[Exam, SolutionKey]:
        try:
            exam, key, _ = self._exams[exam_id]
            return exam, dict(key)
        except KeyError:
            raise ExamNotFoundError(f"시험을 찾을 수 없습니다: {exam_id}") from None

    async def submit_result(self, submission: Submission) -> ExamResult:
        entry = self._exams.get(submission.exam_id)
        if entry is None:
            raise ExamNotFoundError(f"시험을 찾을 수 없습니다: {submission.exam_id}")

        exam, key, _ = entry
        result = scorer.score(
            exam, key, submission.responses,
            terminated=submission.terminated,
            pass_threshold=self._pass_threshold,
        )
        async with self._lock:
            self.submissions.append((submission, result))
        logger.info(
            f"결과 기록: {submission.exam_id} / {submission.student_name} "
            f"→ {result.score}/{result.total_marks} {result.result_status.value}"
            f"{' (강제 종료)' if result.terminated else ''}"
        )
        return result


# ══════════════════════════════════════════════════════════════════════════════
# HTTP 저장소
# ══════════════════════════════════════════════════════════════════════════════

class HttpExamStore(ExamStore):
    """
    원격 저장소 클라이언트.
    POST /api/exams, GET /api/exams/{id}, POST /api/submit
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = STORE_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def create_exam(self, exam: Exam, key: SolutionKey, examiner_email: str) -> None:
        payload = exam.model_dump(by_alias=True)
        payload.update({"solutionKey": key, "examinerEmail": examiner_email})
        await self._request("POST", "/api/exams", json=payload)
        logger.info(f"원격 저장소에 시험 저장: {exam.id}")

    async def get_exam(self, exam_id: str) -> Tuple[Exam, SolutionKey]:
        response = await self._request("GET", f"/api/exams/{exam_id}")
        try:
            data = response.json()
            exam = Exam.model_validate(data)
            key = {str(k): int(v) for k, v in data["solutionKey"].items()}
            validate_solution_key(exam.questions, key)
        except (ValidationError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise PersistenceError(f"저장소 응답 형식 오류: {e}") from e
        return exam, key

    async def submit_result(self, submission: Submission) -> ExamResult:
        response = await self._request("POST", "/api/submit", json=submission.model_dump(by_alias=True))
        try:
            data = response.json()
            return ExamResult.model_validate({**data, "terminated": submission.terminated})
        except (ValidationError, ValueError, TypeError) as e:
            raise PersistenceError(f"저장소 응답 형식 오류: {e}") from e

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"저장소 연결 실패: {method} {url} — {e}")
            raise PersistenceError(f"저장소에 연결할 수 없습니다: {e}") from e

        if response.status_code == 404:
            raise ExamNotFoundError(f"저장소에서 찾을 수 없습니다: {url}")
        if response.is_error:
            logger.error(f"저장소 요청 거부: {method} {url} — HTTP {response.status_code}")
            raise PersistenceError(f"저장소가 요청을 거부했습니다 (HTTP {response.status_code}).")
        return response


def make_exam_store(base_url: str = EXAM_STORE_URL) -> ExamStore:
    """설정된 URL이 있으면 원격 저장소, 없으면 인메모리 저장소."""
    if base_url:
        logger.info(f"원격 시험 저장소 사용: {base_url}")
        return HttpExamStore(base_url)
    logger.info("인메모리 시험 저장소 사용")
    return InMemoryExamStore()
