"""
services/environment.py

응시 환경(브라우저 창) 신호 구독 + 환경 기능 요청을 추상화한 capability 인터페이스.

변형:
  - BrowserEnvironment : static/proctor.js 가 HTTP로 보내는 신호를 전달받고,
                         전체화면/이탈 방지 요청은 브라우저가 가져갈 명령 큐에 쌓는다.
  - FakeEnvironment    : 테스트 더블. emit()으로 신호를 직접 발생시키고 호출 기록을 남긴다.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class Signal(str, Enum):
    VISIBILITY_HIDDEN = "visibility_hidden"     # 탭 전환 / 창 최소화
    FOCUS_LOST = "focus_lost"                   # 시험 창 포커스 상실
    FULLSCREEN_EXIT = "fullscreen_exit"         # 전체화면 해제
    NAVIGATION_ATTEMPT = "navigation_attempt"   # 페이지 이탈/닫기 시도


# 부정행위로 간주하는 신호. 이탈 시도는 확인 창만 띄우고 위반으로 보지 않는다.
VIOLATION_SIGNALS = frozenset({
    Signal.VISIBILITY_HIDDEN,
    Signal.FOCUS_LOST,
    Signal.FULLSCREEN_EXIT,
})

SignalHandler = Callable[[Signal], None]


class EnvironmentSignals(ABC):
    """신호 구독은 한 번에 하나의 핸들러만 유지한다."""

    def __init__(self):
        self._handler: Optional[SignalHandler] = None

    @property
    def subscribed(self) -> bool:
        return self._handler is not None

    def subscribe(self, handler: SignalHandler) -> None:
        self._handler = handler

    def unsubscribe(self) -> None:
        self._handler = None

    def deliver(self, signal: Signal) -> bool:
        """신호를 현재 구독자에게 전달. 구독자가 없으면 False."""
        handler = self._handler
        if handler is None:
            logger.debug(f"구독자 없음, 신호 무시: {signal.value}")
            return False
        handler(signal)
        return True

    @abstractmethod
    def request_fullscreen(self) -> None:
        ...

    @abstractmethod
    def release_fullscreen(self) -> None:
        ...

    @abstractmethod
    def set_leave_guard(self, enabled: bool) -> None:
        """이탈/닫기 시도 시 확인 창 표시 여부."""
        ...


class BrowserEnvironment(EnvironmentSignals):
    """
    브라우저 기반 환경.
    신호는 POST /api/exam/signal 로 들어오고, 요청한 기능은
    GET /api/exam/state 응답의 commands 필드로 브라우저에 전달된다.
    """

    def __init__(self):
        super().__init__()
        self.leave_guard = False
        self.fullscreen = False
        self._commands: List[str] = []

    def request_fullscreen(self) -> None:
        self.fullscreen = True
        self._commands.append("request_fullscreen")

    def release_fullscreen(self) -> None:
        if self.fullscreen:
            self.fullscreen = False
            self._commands.append("exit_fullscreen")

    def set_leave_guard(self, enabled: bool) -> None:
        self.leave_guard = enabled

    def drain_commands(self) -> List[str]:
        commands, self._commands = self._commands, []
        return commands


class FakeEnvironment(EnvironmentSignals):
    """테스트용 환경. 실제 디스플레이 없이 신호를 발생시킨다."""

    def __init__(self):
        super().__init__()
        self.calls: List[str] = []
        self.fullscreen = False
        self.leave_guard = False

    def emit(self, signal: Signal) -> bool:
        return self.deliver(signal)

    def request_fullscreen(self) -> None:
        self.calls.append("request_fullscreen")
        self.fullscreen = True

    def release_fullscreen(self) -> None:
        self.calls.append("release_fullscreen")
        self.fullscreen = False

    def set_leave_guard(self, enabled: bool) -> None:
        self.calls.append(f"leave_guard:{enabled}")
        self.leave_guard = enabled
