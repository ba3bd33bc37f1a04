"""
services/session_controller.py

응시 세션 상태 머신.

  IDLE → REGISTERED → IN_PROGRESS ⇄ REVIEWING → SUBMITTED
                      (IN_PROGRESS | REVIEWING) → TERMINATED

설계 원칙:
- 렌더링 계층과 무관한 명시적 FSM 객체. 전역 세션 없음 — 세션마다 독립 인스턴스.
- 타이머 만료 / 부정행위 감지 / 사용자 조작은 모두 하나의 이벤트 큐로 직렬화된다.
- 큐가 한 번 비워질 때(같은 틱) 함께 들어온 종료 이벤트는
  위반 > 시간 만료 > 제출 순으로 우선 처리한다. 종료 이외의 이벤트는 도착 순서를 유지하고 먼저 처리.
- 종료 전이는 세션당 단 한 번만 실행 (submit lock). 이후 종료 요청은 모두 무시.
- 종료 상태로 먼저 전이한 뒤 저장소 전송을 시작한다. 화면 상태는 네트워크 지연과 무관.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple

from config import PASS_THRESHOLD, REPORT_BACKOFF_BASE, REPORT_MAX_ATTEMPTS
from proctored_cbt.models.question_model import Exam, SolutionKey, validate_solution_key
from proctored_cbt.models.result_model import ExamResult, Submission
from proctored_cbt.models.session_state import SessionState, SessionStatus
from proctored_cbt.services import scorer
from proctored_cbt.services.environment import BrowserEnvironment, EnvironmentSignals, Signal
from proctored_cbt.services.errors import (
    ExamNotFoundError,
    InvalidResponseError,
    PersistenceError,
    SessionSetupError,
)
from proctored_cbt.services.exam_store import ExamStore
from proctored_cbt.services.integrity_monitor import IntegrityMonitor
from proctored_cbt.services.timer import Timer

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    ANSWER = "answer"
    NAVIGATE = "navigate"
    GO_TO = "go_to"
    ENTER_REVIEW = "enter_review"
    EXIT_REVIEW = "exit_review"
    KEY_PRESS = "key_press"
    SUBMIT = "submit"
    TIMER_EXPIRED = "timer_expired"
    VIOLATION = "violation"


# 같은 틱에 도착한 종료 이벤트 간 우선순위 (작을수록 먼저)
_TERMINAL_PRIORITY = {
    EventKind.VIOLATION: 0,
    EventKind.TIMER_EXPIRED: 1,
    EventKind.SUBMIT: 2,
}


@dataclass(frozen=True)
class SessionEvent:
    kind: EventKind
    question_id: Optional[str] = None
    option_index: Optional[int] = None
    delta: int = 0
    index: int = 0
    key: str = ""
    signal: Optional[Signal] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind in _TERMINAL_PRIORITY


def _batch_order(event: SessionEvent) -> Tuple[int, int]:
    if event.is_terminal:
        return 1, _TERMINAL_PRIORITY[event.kind]
    return 0, 0


class SessionController:
    """
    한 응시자의 한 번의 응시를 소유한다.

    Args:
        exam, key:      시험 정의와 정답표. 나중에 load_exam()으로 넣어도 된다.
        environment:    응시 환경 capability. 기본은 BrowserEnvironment.
        timer:          카운트다운 타이머. 기본은 1초 틱 asyncio 타이머.
        store:          결과를 보고할 저장소. None이면 보고하지 않는다.
        pass_threshold: 로컬 채점 합격 기준.
        report_attempts / report_backoff / sleep: 결과 전송 재시도 정책.
    """

    def __init__(
        self,
        exam: Optional[Exam] = None,
        key: Optional[SolutionKey] = None,
        *,
        environment: Optional[EnvironmentSignals] = None,
        timer: Optional[Timer] = None,
        store: Optional[ExamStore] = None,
        pass_threshold: float = PASS_THRESHOLD,
        report_attempts: int = REPORT_MAX_ATTEMPTS,
        report_backoff: float = REPORT_BACKOFF_BASE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.state = SessionState()
        self.exam: Optional[Exam] = None
        self._key: Optional[SolutionKey] = None

        self.environment = environment or BrowserEnvironment()
        self._timer = timer or Timer()
        self._monitor = IntegrityMonitor(self.environment)
        self._store = store
        self._pass_threshold = pass_threshold
        self._report_attempts = max(1, report_attempts)
        self._report_backoff = report_backoff
        self._sleep = sleep

        self.result: Optional[ExamResult] = None
        self.authoritative_result: Optional[ExamResult] = None
        self.report_error: Optional[str] = None
        self.violation: Optional[Signal] = None

        self._submit_locked = False
        self._report_task: Optional[asyncio.Task] = None
        self._report_pending = False
        self._pending: Deque[Tuple[SessionEvent, Optional[asyncio.Future]]] = deque()
        self._drain_scheduled = False

        if exam is not None:
            self.load_exam(exam, key or {})

    # ── 조회 ─────────────────────────────────────────────────────────────────

    @property
    def status(self) -> SessionStatus:
        return self.state.status

    @property
    def timer(self) -> Timer:
        return self._timer

    @property
    def monitor(self) -> IntegrityMonitor:
        return self._monitor

    @property
    def current_question(self):
        if self.exam is None or not self.exam.questions:
            return None
        return self.exam.questions[self.state.current_index]

    # ── 준비 단계 전이 ───────────────────────────────────────────────────────

    def load_exam(self, exam: Exam, key: SolutionKey) -> None:
        if self.state.status is not SessionStatus.IDLE:
            raise SessionSetupError("응시자 등록 이후에는 시험을 바꿀 수 없습니다.")
        validate_solution_key(exam.questions, key)
        if not exam.questions:
            raise SessionSetupError("문제가 없는 시험입니다.")
        self.exam = exam
        self._key = dict(key)
        logger.info(f"시험 로드: {exam.id} ({len(exam.questions)}문항, {exam.duration_minutes}분)")

    def register(self, name: str, student_class: str) -> None:
        if self.state.status is not SessionStatus.IDLE:
            raise SessionSetupError("이미 등록된 세션입니다.")
        if self.exam is None:
            raise SessionSetupError("등록된 시험이 없습니다.")
        name, student_class = (name or "").strip(), (student_class or "").strip()
        if not name or not student_class:
            raise SessionSetupError("이름과 학급을 모두 입력해야 합니다.")

        self.state.student_name = name
        self.state.student_class = student_class
        self.state.status = SessionStatus.REGISTERED
        logger.info(f"응시자 등록: {name} ({student_class}) — 시험 {self.exam.id}")

    def start(self) -> None:
        if self.state.status is not SessionStatus.REGISTERED:
            raise SessionSetupError(f"시험을 시작할 수 없는 상태입니다: {self.state.status.value}")

        seconds = self.exam.duration_minutes * 60
        self.state.time_remaining_seconds = seconds
        self.state.current_index = 0
        self.state.status = SessionStatus.IN_PROGRESS
        self.state.mark_started()

        self._monitor.arm(self._on_violation)
        self.environment.request_fullscreen()
        try:
            self._timer.start(seconds, self._on_tick, self._on_expire)
        except RuntimeError:
            self._release()
            self.state.status = SessionStatus.REGISTERED
            raise
        logger.info(f"시험 시작: {self.state.student_name} / {self.exam.id} ({seconds}초)")

    # ── 진행 중 전이 ─────────────────────────────────────────────────────────

    def answer(self, question_id: str, option_index: int) -> bool:
        if not self.state.status.is_active:
            logger.warning(f"진행 중이 아닌 세션의 답안 무시: {question_id}")
            return False

        try:
            question = self.exam.question(question_id)
        except KeyError:
            raise InvalidResponseError(f"존재하지 않는 문제 ID입니다: {question_id}") from None
        if (
            isinstance(option_index, bool)
            or not isinstance(option_index, int)
            or not (0 <= option_index < len(question.options))
        ):
            raise InvalidResponseError(
                f"문제 '{question_id}'의 보기 인덱스({option_index})가 범위를 벗어났습니다."
            )

        self.state.responses[question_id] = option_index
        return True

    def navigate(self, delta: int) -> bool:
        if not self.state.status.is_active:
            return False
        self.state.current_index = self._clamp(self.state.current_index + delta)
        return True

    def go_to(self, index: int) -> bool:
        """문제 번호 네비게이터: 해당 문제로 이동하며 검토 화면을 닫는다."""
        if not self.state.status.is_active:
            return False
        self.state.current_index = self._clamp(index)
        self.state.status = SessionStatus.IN_PROGRESS
        return True

    def enter_review(self) -> bool:
        if self.state.status is not SessionStatus.IN_PROGRESS:
            return False
        self.state.status = SessionStatus.REVIEWING
        return True

    def exit_review(self) -> bool:
        if self.state.status is not SessionStatus.REVIEWING:
            return False
        self.state.status = SessionStatus.IN_PROGRESS
        return True

    def press_key(self, key: str) -> bool:
        """
        키보드 단축키. 검토 화면이 닫힌 IN_PROGRESS 상태에서만 동작.
          ArrowRight / ArrowLeft : 다음 / 이전 문제
          1 ~ 9                  : 현재 문제의 해당 번호 보기 선택 (보기 수를 넘으면 무시)
        """
        if self.state.status is not SessionStatus.IN_PROGRESS:
            return False

        if key == "ArrowRight":
            return self.navigate(1)
        if key == "ArrowLeft":
            return self.navigate(-1)
        if len(key) == 1 and key in "123456789":
            question = self.current_question
            option_index = int(key) - 1
            if option_index < len(question.options):
                return self.answer(question.id, option_index)
        return False

    # ── 종료 전이 ────────────────────────────────────────────────────────────

    def submit(self) -> Optional[ExamResult]:
        return self._finish(terminated=False, reason="제출")

    def teardown(self) -> None:
        """
        비정상 종료 경로 (창 강제 종료, 세션 만료 등).
        진행 중이었다면 시험 창 이탈로 보고 강제 종료하며, 어떤 경우든 자원을 해제한다.
        """
        if self.state.status.is_active:
            self.violation = self.violation or Signal.NAVIGATION_ATTEMPT
            self._finish(terminated=True, reason="창 종료")
        self._release()

    def _finish(self, terminated: bool, reason: str) -> Optional[ExamResult]:
        if self._submit_locked:
            logger.warning(f"이미 종료된 세션 — {reason} 요청 무시")
            return self.result
        if not self.state.status.is_active:
            logger.warning(f"진행 중이 아닌 세션 — {reason} 요청 무시 ({self.state.status.value})")
            return None

        self._submit_locked = True
        self._release()

        self.result = scorer.score(
            self.exam, self._key, self.state.responses,
            terminated=terminated,
            pass_threshold=self._pass_threshold,
        )
        self.state.status = SessionStatus.TERMINATED if terminated else SessionStatus.SUBMITTED
        logger.info(
            f"시험 종료({reason}): {self.state.student_name} / {self.exam.id} "
            f"→ {self.result.score}/{self.result.total_marks} {self.result.result_status.value}"
            f"{' [강제 종료]' if terminated else ''}"
        )
        self._start_report()
        return self.result

    def _release(self) -> None:
        self._timer.cancel()
        self._monitor.disarm()
        self.environment.release_fullscreen()

    # ── 타이머 / 감시 콜백 ───────────────────────────────────────────────────

    def _on_tick(self, remaining: int) -> None:
        if self.state.status.is_active:
            self.state.time_remaining_seconds = remaining

    def _on_expire(self) -> None:
        self.post(SessionEvent(EventKind.TIMER_EXPIRED))

    def _on_violation(self, signal: Signal) -> None:
        self.post(SessionEvent(EventKind.VIOLATION, signal=signal))

    # ── 이벤트 큐 ────────────────────────────────────────────────────────────

    def post(self, event: SessionEvent, future: Optional[asyncio.Future] = None) -> None:
        """
        이벤트를 큐에 넣는다. 실행 중인 이벤트 루프가 있으면 다음 루프 순회에서 drain()이 호출되고,
        없으면 호출자가 drain()을 직접 불러야 한다.
        """
        self._pending.append((event, future))
        if self._drain_scheduled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._drain_scheduled = True
        loop.call_soon(self.drain)

    async def dispatch(self, event: SessionEvent) -> Any:
        """이벤트를 큐에 넣고 처리 결과를 기다린다. 검증 오류는 그대로 전파된다."""
        future = asyncio.get_running_loop().create_future()
        self.post(event, future)
        return await future

    def drain(self) -> int:
        """
        지금까지 쌓인 이벤트를 한 틱으로 처리한다. 처리한 이벤트 수를 반환.

        한 이벤트가 실패해도 같은 틱의 나머지 이벤트(특히 위반/만료)는 모두 처리된다.
        future 없이 들어온 이벤트의 첫 예외는 틱이 끝난 뒤 다시 발생시킨다.
        """
        self._drain_scheduled = False
        batch = list(self._pending)
        self._pending.clear()

        first_error: Optional[Exception] = None
        for event, future in sorted(batch, key=lambda item: _batch_order(item[0])):
            try:
                outcome = self._apply(event)
            except Exception as e:
                if future is None:
                    logger.warning(f"이벤트 처리 실패 ({event.kind.value}): {e}")
                    first_error = first_error or e
                elif not future.done():
                    future.set_exception(e)
            else:
                if future is not None and not future.done():
                    future.set_result(outcome)

        if first_error is not None:
            raise first_error
        return len(batch)

    def _apply(self, event: SessionEvent) -> Any:
        kind = event.kind
        if kind is EventKind.ANSWER:
            return self.answer(event.question_id, event.option_index)
        if kind is EventKind.NAVIGATE:
            return self.navigate(event.delta)
        if kind is EventKind.GO_TO:
            return self.go_to(event.index)
        if kind is EventKind.ENTER_REVIEW:
            return self.enter_review()
        if kind is EventKind.EXIT_REVIEW:
            return self.exit_review()
        if kind is EventKind.KEY_PRESS:
            return self.press_key(event.key)
        if kind is EventKind.SUBMIT:
            return self.submit()
        if kind is EventKind.TIMER_EXPIRED:
            return self._finish(terminated=False, reason="시간 만료")
        if kind is EventKind.VIOLATION:
            if not self._submit_locked and self.state.status.is_active:
                self.violation = event.signal
            return self._finish(terminated=True, reason=f"부정행위 감지({event.signal.value})")
        raise ValueError(f"알 수 없는 이벤트: {kind}")

    # ── 결과 전송 ────────────────────────────────────────────────────────────

    def _start_report(self) -> None:
        if self._store is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("이벤트 루프 없음 — 결과 전송 보류 (flush_report() 필요)")
            self._report_pending = True
            return
        self._report_task = loop.create_task(self._report())

    async def flush_report(self) -> Optional[ExamResult]:
        """보류 중이거나 진행 중인 결과 전송이 끝날 때까지 기다린다."""
        if self._report_pending:
            self._report_pending = False
            self._report_task = asyncio.get_running_loop().create_task(self._report())
        if self._report_task is not None:
            await self._report_task
        return self.authoritative_result

    async def _report(self) -> None:
        submission = Submission(
            exam_id=self.exam.id,
            student_name=self.state.student_name,
            student_class=self.state.student_class,
            responses=dict(self.state.responses),
            terminated=self.result.terminated,
        )

        for attempt in range(1, self._report_attempts + 1):
            try:
                self.authoritative_result = await self._store.submit_result(submission)
                self.report_error = None
                logger.info(f"결과 전송 완료: {submission.exam_id} / {submission.student_name}")
                return
            except ExamNotFoundError as e:
                self.report_error = str(e)
                logger.error(f"결과 전송 실패 (재시도 안 함): {e}")
                return
            except PersistenceError as e:
                self.report_error = str(e)
                if attempt < self._report_attempts:
                    wait = self._report_backoff * (2 ** (attempt - 1))
                    logger.warning(f"결과 전송 실패, {wait:.1f}초 후 재시도 ({attempt}/{self._report_attempts})")
                    await self._sleep(wait)
                else:
                    logger.error(f"결과 전송 최종 실패: {e}")

    # ── 직렬화 ───────────────────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        total = len(self.exam.questions) if self.exam else 0
        return {
            "status": self.state.status.value,
            "finished": self.state.status.is_terminal,
            "startedAt": self.state.started_at,
            "studentName": self.state.student_name,
            "studentClass": self.state.student_class,
            "currentIndex": self.state.current_index,
            "responses": dict(self.state.responses),
            "timeRemainingSeconds": self.state.time_remaining_seconds,
            "total": total,
            "answeredCount": len(self.state.responses),
            "unansweredIds": [
                q.id for q in self.exam.questions if q.id not in self.state.responses
            ] if self.exam else [],
            "violation": self.violation.value if self.violation else None,
            "result": self.result.model_dump(by_alias=True, mode="json") if self.result else None,
            "authoritativeResult": (
                self.authoritative_result.model_dump(by_alias=True, mode="json")
                if self.authoritative_result else None
            ),
            "reportError": self.report_error,
        }

    def incorrect_question_ids(self) -> List[str]:
        """종료 후 오답 노트용. 종료 전에는 빈 리스트 (정답 정보 비공개)."""
        if self.result is None:
            return []
        return scorer.incorrect_question_ids(self.exam, self._key, self.state.responses)

    def _clamp(self, index: int) -> int:
        return max(0, min(index, len(self.exam.questions) - 1))
