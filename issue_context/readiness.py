"""인덱스 프로비저닝 상태(Creating → Ready) 폴링.

일정 간격으로 상태를 조회하다가 Ready가 되거나 제한 시간을 넘기면 멈춘다.
시계를 주입할 수 있어 테스트에서 실제로 대기하지 않는다.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_WAIT = 280.0


@dataclass(frozen=True)
class IndexStatus:
    exists: bool
    ready: bool
    state: str  # "Ready", "Creating", "Absent", "Failed" ...


@dataclass(frozen=True)
class ReadyOutcome:
    ready: bool
    state: str
    elapsed: float
    attempts: int
    cancelled: bool = False
    absent: bool = False  # stop_if_absent로 대기 없이 끝난 경우

    @property
    def timed_out(self) -> bool:
        return not self.ready and not self.cancelled and not self.absent


class Clock(Protocol):
    def monotonic(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


def wait_until_ready(
    describe: Callable[[], IndexStatus],
    *,
    name: str = "",
    interval: float = DEFAULT_POLL_INTERVAL,
    timeout: float = DEFAULT_MAX_WAIT,
    backoff: float = 1.0,
    max_interval: float | None = None,
    clock: Clock | None = None,
    cancel: threading.Event | None = None,
    stop_if_absent: bool = False,
) -> ReadyOutcome:
    """describe가 ready를 돌려줄 때까지 폴링한다.

    Args:
        describe: 현재 인덱스 상태를 조회하는 함수.
        name: 로그에 남길 인덱스 이름.
        interval: 첫 재시도 간격(초).
        timeout: 최대 대기 시간(초). 넘기면 ready=False 결과를 반환한다.
        backoff: 재시도마다 간격에 곱할 배수 (1.0이면 고정 간격).
        max_interval: 간격 상한.
        clock: 시간 조회/대기 구현. 기본은 SystemClock.
        cancel: set 되면 다음 조회 전에 중단한다.
        stop_if_absent: True면 인덱스가 없을 때 기다리지 않고 바로 반환한다.
            생성을 요청하지 않은 인덱스는 스스로 생기지 않는다.

    Returns:
        ReadyOutcome. 예외를 던지지 않으며 실패 처리는 호출자 몫이다.
    """
    clock = clock or SystemClock()
    start = clock.monotonic()
    delay = interval
    attempts = 0

    while True:
        if cancel is not None and cancel.is_set():
            return ReadyOutcome(False, "Cancelled", clock.monotonic() - start, attempts, cancelled=True)

        status = describe()
        attempts += 1
        elapsed = clock.monotonic() - start

        if status.ready:
            logger.info('Index "%s" is ready after %.1f seconds', name, elapsed)
            return ReadyOutcome(True, status.state, elapsed, attempts)

        if stop_if_absent and not status.exists:
            return ReadyOutcome(False, status.state, elapsed, attempts, absent=True)

        if elapsed >= timeout:
            return ReadyOutcome(False, status.state, elapsed, attempts)

        logger.info(
            'Index "%s" not ready yet (state=%s), retrying... (%.1f/%.1f)',
            name, status.state, elapsed, timeout,
        )
        # 마지막 대기가 제한 시간을 넘기지 않게 자른다
        clock.sleep(min(delay, max(timeout - elapsed, 0.0)))
        delay *= backoff
        if max_interval is not None:
            delay = min(delay, max_interval)
