"""Progress tracking for in-flight blueprint generations.

One entry per generation id, polled by clients. Entries are removed either
explicitly with ``clear_progress`` or by the background sweeper once they
have not been touched for ``max_age`` seconds.

Percentages never go backwards within a run. A failed run keeps the last
percentage it reached; only a new run (PENDING/RUNNING after a terminal
state) may start again from a lower value.
"""

import asyncio
import threading
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import logging

from pydantic import BaseModel, ConfigDict, Field

from ..reliability.errors import BlueprintError

logger = logging.getLogger(__name__)


class GenerationStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = {GenerationStatus.COMPLETED, GenerationStatus.FAILED}


class GenerationProgress(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    generation_id: str
    status: GenerationStatus = GenerationStatus.PENDING
    current_step: str = "Starting..."
    percentage: int = Field(default=0, ge=0, le=100)
    error: Optional[BlueprintError] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


ProgressObserver = Callable[[GenerationProgress], None]


class ProgressTracker:
    def __init__(
        self,
        max_age: float = 3600.0,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.max_age = max_age
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._progress: Dict[str, GenerationProgress] = {}
        self._touched: Dict[str, float] = {}
        self._observers: List[ProgressObserver] = []
        self.is_running = False
        self._sweeper_task: Optional[asyncio.Task] = None

    def subscribe(self, observer: ProgressObserver) -> Callable[[], None]:
        """Register an observer (e.g. a push channel). Returns an unsubscribe hook."""
        self._observers.append(observer)

        def unsubscribe():
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def update_progress(
        self,
        generation_id: str,
        status: Optional[GenerationStatus] = None,
        current_step: Optional[str] = None,
        percentage: Optional[int] = None,
        error: Optional[BlueprintError] = None
    ) -> GenerationProgress:
        """Merge a partial update into the entry, creating it if absent."""
        with self._lock:
            current = self._progress.get(generation_id) or GenerationProgress(generation_id=generation_id)
            new_status = status or current.status
            new_run = current.is_terminal and new_status not in TERMINAL_STATUSES

            update = {"status": new_status, "updated_at": datetime.now(timezone.utc)}
            if current_step is not None:
                update["current_step"] = current_step
            if error is not None:
                update["error"] = error
            elif new_run:
                update["error"] = None

            if percentage is not None:
                percentage = max(0, min(100, int(percentage)))
                if percentage < current.percentage and not new_run:
                    logger.debug(
                        f"Ignoring backwards progress for {generation_id}: "
                        f"{current.percentage} -> {percentage}"
                    )
                    percentage = current.percentage
                update["percentage"] = percentage
            elif new_run:
                update["percentage"] = 0

            updated = current.model_copy(update=update)
            self._progress[generation_id] = updated
            self._touched[generation_id] = self._clock()

        self._emit_progress_update(updated)
        return updated

    def get_progress(self, generation_id: str) -> Optional[GenerationProgress]:
        with self._lock:
            return self._progress.get(generation_id)

    def clear_progress(self, generation_id: str):
        with self._lock:
            self._progress.pop(generation_id, None)
            self._touched.pop(generation_id, None)

    def active_generations(self) -> List[str]:
        with self._lock:
            return [gid for gid, p in self._progress.items() if not p.is_terminal]

    def _emit_progress_update(self, progress: GenerationProgress):
        logger.info(
            f"Progress update {progress.generation_id}: {progress.status.value} "
            f"{progress.percentage}% - {progress.current_step}"
        )
        for observer in list(self._observers):
            try:
                observer(progress)
            except Exception as e:
                logger.error(f"Progress observer failed for {progress.generation_id}: {e}")

    def sweep(self, max_age: Optional[float] = None) -> int:
        """Drop entries not updated within ``max_age`` seconds."""
        max_age = self.max_age if max_age is None else max_age
        cutoff = self._clock() - max_age
        with self._lock:
            stale = [gid for gid, touched in self._touched.items() if touched <= cutoff]
            for gid in stale:
                self._progress.pop(gid, None)
                self._touched.pop(gid, None)

        if stale:
            logger.info(f"Swept {len(stale)} stale progress entries")
        return len(stale)

    async def start_sweeper(self):
        if self.is_running:
            return

        self.is_running = True
        self._sweeper_task = asyncio.create_task(self._run_periodic_sweep())
        logger.info("Started progress sweeper")

    async def stop_sweeper(self):
        self.is_running = False

        if self._sweeper_task:
            self._sweeper_task.cancel()
            try:
                await self._sweeper_task
            except asyncio.CancelledError:
                pass
            self._sweeper_task = None

        logger.info("Stopped progress sweeper")

    async def _run_periodic_sweep(self):
        while self.is_running:
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Error in progress sweep: {e}")
            await asyncio.sleep(self.sweep_interval)

    def get_stats(self) -> Dict[str, Any]:
        active = self.active_generations()
        return {
            "tracked": len(self),
            "active": len(active),
            "active_generations": active,
            "sweeper_running": self.is_running,
        }

    def __len__(self) -> int:
        return len(self._progress)
