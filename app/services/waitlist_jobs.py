"""
Periodic waitlist sweeps

Fallback path for everything the request flow can miss: slots freed without
a release call, entries past their expiry, and offers nobody answered.
"""

from typing import Awaitable, Callable, List, Optional
import asyncio
import logging

from app.config import settings
from app.core.metrics import metrics_collector
from app.core.redis import RedisManager, redis_manager as default_redis_manager
from app.services.waitlist_service import WaitlistService

logger = logging.getLogger(__name__)


class SweepJob:
    """
    One periodic sweep. Runs never overlap within a process; with a Redis
    manager they also never overlap across processes.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: int,
        run: Callable[[], Awaitable[int]],
        redis_manager: Optional[RedisManager] = None
    ):
        self.name = name
        self.interval_seconds = interval_seconds
        self._run = run
        self.redis_manager = redis_manager
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_once(self) -> Optional[int]:
        """
        Run the sweep now. Returns the number of items processed, or None
        when the run was skipped or failed.
        """
        if self._lock.locked():
            logger.info(f"{self.name} sweep still running, skipping", extra={"job": self.name})
            await metrics_collector.record_sweep_skipped(self.name)
            return None

        async with self._lock:
            lease = None
            if self.redis_manager is not None:
                lease = await self.redis_manager.acquire_lock(
                    f"waitlist-sweep:{self.name}", ttl=self.interval_seconds
                )
                if lease is None:
                    logger.info(f"{self.name} sweep held by another worker, skipping", extra={"job": self.name})
                    await metrics_collector.record_sweep_skipped(self.name)
                    return None

            try:
                async with metrics_collector.track_sweep(self.name) as result:
                    result["processed"] = await self._run()
                if result["processed"]:
                    logger.info(
                        f"{self.name} sweep processed {result['processed']} items",
                        extra={"job": self.name}
                    )
                return result["processed"]
            except Exception as e:
                logger.error(f"Error in {self.name} sweep: {e}", extra={"job": self.name}, exc_info=True)
                return None
            finally:
                if lease is not None:
                    await self.redis_manager.release_lock(f"waitlist-sweep:{self.name}", lease)

    async def run_forever(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.run_once()


class WaitlistScheduler:
    """Owns the availability, expiry and escalation sweeps"""

    def __init__(
        self,
        service: WaitlistService,
        redis_manager: Optional[RedisManager] = None
    ):
        if redis_manager is None and settings.WAITLIST_SWEEP_DISTRIBUTED_LOCK:
            redis_manager = default_redis_manager

        self.jobs: List[SweepJob] = [
            SweepJob(
                "availability",
                settings.WAITLIST_AVAILABILITY_SWEEP_SECONDS,
                service.process_available_slots,
                redis_manager
            ),
            SweepJob(
                "expiry",
                settings.WAITLIST_EXPIRY_SWEEP_SECONDS,
                service.expire_old_entries,
                redis_manager
            ),
            SweepJob(
                "escalation",
                settings.WAITLIST_ESCALATION_SWEEP_SECONDS,
                service.escalate_unresponded_notifications,
                redis_manager
            ),
        ]
        self._tasks: List[asyncio.Task] = []

    def get_job(self, name: str) -> SweepJob:
        for job in self.jobs:
            if job.name == name:
                return job
        raise KeyError(name)

    @property
    def started(self) -> bool:
        return bool(self._tasks)

    def start(self):
        if self._tasks:
            return
        for job in self.jobs:
            self._tasks.append(asyncio.create_task(job.run_forever(), name=f"waitlist-sweep-{job.name}"))
        logger.info(f"Started {len(self._tasks)} waitlist sweeps")

    async def stop(self):
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Waitlist sweeps stopped")
