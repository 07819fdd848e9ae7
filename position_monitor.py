"""
Position monitoring and the polling loop.
Each poll cycle evaluates the owner's positions in the target pool and
rebalances the ones whose range no longer contains the current price.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from config import Config
from models import Pool, Position
from utils import ErrorHandler

logger = logging.getLogger(__name__)


def is_out_of_range(position: Position, pool: Pool) -> bool:
    """
    Check whether the pool price sits at or beyond either edge of the position

    The edges count as out of range, so rebalancing starts when the price
    touches a boundary rather than after it has crossed it.
    """
    current_tick = int(pool.current_tick)
    return current_tick <= int(position.tick_lower) or current_tick >= int(position.tick_upper)


@dataclass
class CycleResult:
    """What happened during one poll cycle"""
    started_at: float
    finished_at: Optional[float] = None
    positions_seen: int = 0
    rebalanced: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failures


class PositionMonitor:
    """Runs one poll cycle over the monitored owner's positions"""

    def __init__(self, config: Config, position_source, rebalancer):
        """
        Initialize the position monitor

        Args:
            config: Configuration object
            position_source: Provides fetch_pool_positions(owner, pool_id)
            rebalancer: Provides rebalance(position)
        """
        self.config = config
        self.position_source = position_source
        self.rebalancer = rebalancer

    def fetch_positions(self) -> List[Position]:
        """Positions of the monitored owner in the target pool, in fetch order"""
        return self.position_source.fetch_pool_positions(self.config.LP_OWNER_ADDRESS, self.config.POOL_ID)

    def run_cycle(self) -> CycleResult:
        """
        Evaluate every position once

        Never raises: a failed fetch is recorded as the cycle error and a
        failed rebalance is recorded against its position while the cycle
        moves on to the next one.

        Returns:
            CycleResult for this cycle
        """
        result = CycleResult(started_at=time.time())

        try:
            positions = self.fetch_positions()
        except Exception as e:
            info = ErrorHandler.handle_transaction_error(e)
            logger.error(f"Rebalance cycle failed while fetching positions: {info['message']}", exc_info=True)
            result.error = info['message']
            result.finished_at = time.time()
            return result

        result.positions_seen = len(positions)

        for position in positions:
            pool = position.pool
            if pool is None:
                logger.debug(f"Position {position.position_id} has no pool data, skipping")
                result.skipped.append(position.position_id)
                continue
            if int(position.liquidity) == 0:
                result.skipped.append(position.position_id)
                continue
            if not is_out_of_range(position, pool):
                continue

            logger.info(
                f"Position {position.position_id} out of range "
                f"([{position.tick_lower}, {position.tick_upper}], tick {pool.current_tick}). Rebalancing..."
            )
            try:
                outcome = self.rebalancer.rebalance(position)
            except Exception as e:
                info = ErrorHandler.handle_transaction_error(e)
                logger.error(
                    f"Rebalance of position {position.position_id} failed ({info['type']}): "
                    f"{info['message']} - {info['suggestion']}",
                    exc_info=True
                )
                result.failures[position.position_id] = info['message']
                continue

            if outcome.skipped_reason:
                result.skipped.append(position.position_id)
            else:
                result.rebalanced.append(position.position_id)

        result.finished_at = time.time()
        return result


class LoopState(Enum):
    """Poll loop states"""
    IDLE = "idle"
    CYCLING = "cycling"


class PollLoop:
    """
    Fixed-interval driver for the position monitor.

    IDLE -> CYCLING when the interval elapses, back to IDLE once the cycle
    has evaluated every position or failed. There is no terminal state; the
    loop runs until stop() is called.
    """

    def __init__(self, monitor: PositionMonitor, interval_seconds: float,
                 on_cycle: Optional[Callable[[CycleResult], None]] = None):
        self.monitor = monitor
        self.interval_seconds = interval_seconds
        self.on_cycle = on_cycle
        self.state = LoopState.IDLE
        self.cycles_run = 0
        self.last_result: Optional[CycleResult] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> CycleResult:
        """Run exactly one cycle and return to IDLE"""
        self.state = LoopState.CYCLING
        try:
            result = self.monitor.run_cycle()
        finally:
            self.state = LoopState.IDLE

        self.cycles_run += 1
        self.last_result = result
        if result.ok:
            logger.info(
                f"Cycle {self.cycles_run} complete: {result.positions_seen} positions, "
                f"{len(result.rebalanced)} rebalanced"
            )
        else:
            logger.warning(
                f"Cycle {self.cycles_run} finished with errors: "
                f"{result.error or f'{len(result.failures)} position(s) failed'}"
            )
        if self.on_cycle:
            try:
                self.on_cycle(result)
            except Exception as e:
                logger.error(f"Cycle callback failed: {e}", exc_info=True)
        return result

    def run_forever(self, max_cycles: Optional[int] = None):
        """
        Alternate cycles and interval waits until stopped

        Args:
            max_cycles: Stop after this many cycles (None runs until stop())
        """
        cycles = 0
        while not self._stop_event.is_set():
            self.tick()
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            self._stop_event.wait(self.interval_seconds)

    def start(self):
        """Run the loop in a background thread"""
        if self.is_running:
            logger.warning("Monitoring is already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, name="poll-loop", daemon=True)
        self._thread.start()
        logger.info("Monitoring started")

    def stop(self, timeout: Optional[float] = None):
        """Stop the loop after the current cycle"""
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        logger.info("Monitoring stopped")
