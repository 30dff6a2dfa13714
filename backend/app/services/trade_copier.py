"""Trade copier: route a mentor's signal to every active student account."""

import asyncio
import logging
from dataclasses import dataclass, field

from app.services.student_registry import StudentRegistry
from core.execution import ExecutionBackend, OrderRequest
from core.models.signal import TradeSignal
from core.models.student import Student

logger = logging.getLogger(__name__)

DEFAULT_EXECUTION_TIMEOUT = 10.0
DEFAULT_LOT_SIZE = 0.01


@dataclass
class CopyResult:
    """Outcome of copying one signal."""

    signal_id: str
    attempted: int = 0
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class TradeCopier:
    """Executes signals on students' accounts through the execution backend.

    Each student's order is bounded by ``timeout`` and runs concurrently
    with the others; a failure or timeout is logged for that student only.
    ``schedule`` runs a copy in the background so ingestion never waits
    for the backend.
    """

    def __init__(
        self,
        students: StudentRegistry,
        backend: ExecutionBackend | None,
        timeout: float = DEFAULT_EXECUTION_TIMEOUT,
        default_size: float = DEFAULT_LOT_SIZE,
    ):
        self._students = students
        self._backend = backend
        self._timeout = timeout
        self._default_size = default_size
        self._tasks: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self._backend is not None

    def targets_for(self, signal: TradeSignal) -> list[Student]:
        """Active students of the signal's mentor that have an execution account."""
        return [
            s
            for s in self._students.active_students(signal.mentor_id)
            if s.account_ref and signal.targets_ea(s.ea_id)
        ]

    async def copy(self, signal: TradeSignal) -> CopyResult:
        """Execute ``signal`` for every target. Never raises for per-student failures."""
        result = CopyResult(signal_id=signal.id)
        if self._backend is None:
            return result

        targets = self.targets_for(signal)
        result.attempted = len(targets)
        if not targets:
            return result

        logger.info(f"Copying signal {signal.id} to {len(targets)} students")
        outcomes = await asyncio.gather(
            *(self._execute_one(signal, student) for student in targets)
        )
        for student, ok in zip(targets, outcomes):
            (result.succeeded if ok else result.failed).append(student.license_key)

        logger.info(
            f"Signal {signal.id} copied: {len(result.succeeded)} ok, "
            f"{len(result.failed)} failed"
        )
        return result

    async def _execute_one(self, signal: TradeSignal, student: Student) -> bool:
        order = OrderRequest(
            account_ref=student.account_ref,
            symbol=signal.symbol,
            direction=signal.direction,
            size=signal.size or self._default_size,
            stop_loss=signal.stop_loss,
            take_profit=signal.take_profit,
            comment=signal.comment or "EdgeFlow",
        )
        try:
            await asyncio.wait_for(self._backend.place_order(order), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.error(
                f"Student {student.license_key}: order for signal {signal.id} "
                f"timed out after {self._timeout:.0f}s"
            )
            return False
        except Exception as e:
            logger.error(
                f"Student {student.license_key}: failed to execute signal {signal.id}: {e}"
            )
            return False

        logger.info(
            f"Student {student.license_key}: {signal.direction.value} {signal.symbol} "
            f"{order.size:.2f} lots executed"
        )
        return True

    def schedule(self, signal: TradeSignal) -> asyncio.Task | None:
        """Start copying in the background. Returns None when nothing to do."""
        if self._backend is None or not self.targets_for(signal):
            return None
        task = asyncio.create_task(self.copy(signal), name=f"copy-{signal.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def close(self) -> None:
        """Cancel copies still in flight."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    @property
    def pending_count(self) -> int:
        return len(self._tasks)
