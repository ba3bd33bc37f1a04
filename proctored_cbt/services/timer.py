"""
services/timer.py

시험 카운트다운 타이머.
1초 단위 단일 틱 소스로 남은 시간을 감소시키고, 0이 되면 만료 콜백을 정확히 한 번 호출한다.

- asyncio 이벤트 루프 위에서 동작 (스레드 없음)
- 다음 틱 시각을 loop.time() 기준으로 누적 계산하여 드리프트가 쌓이지 않음
- start()를 다시 호출하면 기존 틱 소스를 먼저 취소 (활성 틱 소스는 항상 하나)
- cancel()은 멱등이며, 반환 이후에는 어떤 콜백도 호출되지 않음
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from config import TICK_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

TickCallback = Callable[[int], None]
ExpireCallback = Callable[[], None]


class Timer:
    """
    Args:
        interval: 틱 간격 (초). 기본 1초.
        sleep:    대기 코루틴. 테스트에서 가짜 sleep 주입용.
        autorun:  False이면 start()가 백그라운드 틱 태스크를 만들지 않는다.
                  이 경우 tick()을 직접 호출해 시간을 진행시킨다 (시뮬레이션/테스트용).
    """

    def __init__(
        self,
        interval: float = TICK_INTERVAL_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        autorun: bool = True,
    ):
        self._interval = interval
        self._sleep = sleep
        self._autorun = autorun

        self._remaining = 0
        self._active = False
        self._on_tick: Optional[TickCallback] = None
        self._on_expire: Optional[ExpireCallback] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def running(self) -> bool:
        return self._active

    def start(self, seconds: int, on_tick: TickCallback, on_expire: ExpireCallback) -> None:
        if seconds <= 0:
            raise ValueError(f"타이머 시간은 0보다 커야 합니다 (입력값: {seconds}).")

        self.cancel()
        self._remaining = seconds
        self._on_tick = on_tick
        self._on_expire = on_expire
        self._active = True

        if self._autorun:
            self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"타이머 시작: {seconds}초")

    def tick(self) -> None:
        """1초 진행. 비활성 상태에서는 아무 일도 하지 않는다."""
        if not self._active:
            return

        self._remaining = max(0, self._remaining - 1)
        if self._on_tick is not None:
            self._on_tick(self._remaining)

        # on_tick 안에서 cancel()이 호출되었을 수 있음
        if not self._active:
            return

        if self._remaining == 0:
            on_expire = self._on_expire
            self._stop()
            logger.info("타이머 만료")
            if on_expire is not None:
                on_expire()

    def cancel(self) -> None:
        if self._active:
            logger.info(f"타이머 취소 (남은 시간 {self._remaining}초)")
        self._stop()

    # ── 내부 ─────────────────────────────────────────────────────────────────

    def _stop(self) -> None:
        self._active = False
        self._on_tick = None
        self._on_expire = None

        task, self._task = self._task, None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        me = asyncio.current_task()
        next_at = loop.time()
        while self._active and self._task is me:
            next_at += self._interval
            await self._sleep(max(0.0, next_at - loop.time()))
            self.tick()


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
