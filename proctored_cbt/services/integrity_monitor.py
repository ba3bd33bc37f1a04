"""
services/integrity_monitor.py

시험 창 이탈 감시.
무장(arm) 상태에서 탭 전환 / 포커스 상실 / 전체화면 해제 중 하나라도 발생하면
위반 콜백을 한 번만 호출하고 스스로 해제한다 (first-wins).
이탈/닫기 시도는 위반이 아니며, 무장 중에는 환경에 확인 창을 띄우도록 요청해 둔다.
"""

import logging
from typing import Callable, Optional

from proctored_cbt.services.environment import EnvironmentSignals, Signal, VIOLATION_SIGNALS

logger = logging.getLogger(__name__)

ViolationCallback = Callable[[Signal], None]


class IntegrityMonitor:

    def __init__(self, environment: EnvironmentSignals):
        self._env = environment
        self._on_violation: Optional[ViolationCallback] = None
        self._armed = False

    @property
    def armed(self) -> bool:
        return self._armed

    def arm(self, on_violation: ViolationCallback) -> None:
        self.disarm()
        self._on_violation = on_violation
        self._armed = True
        self._env.subscribe(self._handle_signal)
        self._env.set_leave_guard(True)
        logger.info("부정행위 감시 시작")

    def disarm(self) -> None:
        if not self._armed:
            return
        self._armed = False
        self._on_violation = None
        self._env.unsubscribe()
        self._env.set_leave_guard(False)
        logger.info("부정행위 감시 해제")

    def _handle_signal(self, signal: Signal) -> None:
        if not self._armed:
            return

        if signal not in VIOLATION_SIGNALS:
            # 이탈 시도: 브라우저 확인 창은 leave guard가 띄운다. 강제로 막을 수는 없음.
            logger.warning(f"시험 중 이탈 시도 감지: {signal.value}")
            return

        callback = self._on_violation
        self.disarm()
        logger.warning(f"부정행위 감지: {signal.value}")
        if callback is not None:
            callback(signal)
