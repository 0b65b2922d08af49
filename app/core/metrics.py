"""
Waitlist engine metrics and health checks
"""

import time
import logging
from typing import Dict, Optional
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
import asyncio

from prometheus_client import Counter, Histogram
from sqlalchemy import text

logger = logging.getLogger(__name__)

try:
    WAITLIST_TRANSITIONS = Counter(
        "waitlist_transitions_total",
        "Waitlist entry status transitions",
        ["to_status"]
    )
    WAITLIST_NOTIFICATIONS = Counter(
        "waitlist_notifications_total",
        "Slot offers sent to waitlisted customers",
        ["channel", "outcome"]
    )
    SWEEP_DURATION = Histogram(
        "waitlist_sweep_duration_seconds",
        "Waitlist sweep duration in seconds",
        ["job"]
    )
    HTTP_REQUESTS = Counter(
        "waitlist_http_requests_total",
        "HTTP requests by route template",
        ["method", "route", "status"]
    )
    HTTP_LATENCY = Histogram(
        "waitlist_http_request_duration_seconds",
        "HTTP request latency by route template",
        ["method", "route"]
    )
except ValueError:
    # Metrics already registered (module reloaded by the test runner)
    from prometheus_client import REGISTRY
    WAITLIST_TRANSITIONS = REGISTRY._names_to_collectors["waitlist_transitions_total"]
    WAITLIST_NOTIFICATIONS = REGISTRY._names_to_collectors["waitlist_notifications_total"]
    SWEEP_DURATION = REGISTRY._names_to_collectors["waitlist_sweep_duration_seconds"]
    HTTP_REQUESTS = REGISTRY._names_to_collectors["waitlist_http_requests_total"]
    HTTP_LATENCY = REGISTRY._names_to_collectors["waitlist_http_request_duration_seconds"]


@dataclass
class SweepStats:
    """Per-job sweep counters"""
    runs: int = 0
    failures: int = 0
    skipped: int = 0
    items_processed: int = 0
    last_duration: float = 0.0
    last_run_at: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "runs": self.runs,
            "failures": self.failures,
            "skipped": self.skipped,
            "items_processed": self.items_processed,
            "last_duration_ms": self.last_duration * 1000,
            "last_run_at": self.last_run_at,
        }


@dataclass
class WaitlistMetrics:
    """Waitlist engine metrics"""
    joined: int = 0
    notified: int = 0
    booked: int = 0
    cancelled: int = 0
    expired: int = 0

    notifications_sent: int = 0
    notifications_failed: int = 0

    # Lost conditional updates and slot contention
    race_losses: int = 0
    booking_conflicts: int = 0

    sweeps: Dict[str, SweepStats] = field(default_factory=dict)

    def conversion_rate(self) -> float:
        """Share of offers that became bookings"""
        if self.notified == 0:
            return 0.0
        return (self.booked / self.notified) * 100

    def to_dict(self) -> Dict:
        return {
            "transitions": {
                "joined": self.joined,
                "notified": self.notified,
                "booked": self.booked,
                "cancelled": self.cancelled,
                "expired": self.expired,
            },
            "conversion_rate_percent": self.conversion_rate(),
            "notifications": {
                "sent": self.notifications_sent,
                "failed": self.notifications_failed,
            },
            "concurrency": {
                "race_losses": self.race_losses,
                "booking_conflicts": self.booking_conflicts,
            },
            "sweeps": {name: stats.to_dict() for name, stats in self.sweeps.items()},
        }


class MetricsCollector:
    """In-process metrics collector for the waitlist engine"""

    def __init__(self):
        self.metrics = WaitlistMetrics()
        self.logger = logging.getLogger(__name__)
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def track_sweep(self, job: str):
        """
        Context manager to time a sweep run. The body may set
        `result["processed"]` to report how many items it handled.
        """
        start_time = time.time()
        result = {"processed": 0}

        try:
            yield result
        except Exception as e:
            duration = time.time() - start_time
            async with self._lock:
                stats = self.metrics.sweeps.setdefault(job, SweepStats())
                stats.runs += 1
                stats.failures += 1
                stats.last_duration = duration
                stats.last_run_at = datetime.now(timezone.utc).isoformat()
            SWEEP_DURATION.labels(job=job).observe(duration)
            self.logger.error(f"Failed {job} sweep: {e} (duration: {duration:.2f}s)", extra={"job": job})
            raise

        duration = time.time() - start_time
        async with self._lock:
            stats = self.metrics.sweeps.setdefault(job, SweepStats())
            stats.runs += 1
            stats.items_processed += result["processed"]
            stats.last_duration = duration
            stats.last_run_at = datetime.now(timezone.utc).isoformat()
        SWEEP_DURATION.labels(job=job).observe(duration)

        if duration > 30.0:
            self.logger.warning(f"Slow {job} sweep: {duration:.2f}s", extra={"job": job})

    async def record_sweep_skipped(self, job: str):
        async with self._lock:
            self.metrics.sweeps.setdefault(job, SweepStats()).skipped += 1

    async def record_transition(self, to_status: str, count: int = 1):
        """Record waitlist entries entering a status"""
        if count <= 0:
            return
        WAITLIST_TRANSITIONS.labels(to_status=to_status).inc(count)
        async with self._lock:
            if to_status == "waiting":
                self.metrics.joined += count
            elif to_status == "notified":
                self.metrics.notified += count
            elif to_status == "booked":
                self.metrics.booked += count
            elif to_status == "cancelled":
                self.metrics.cancelled += count
            elif to_status == "expired":
                self.metrics.expired += count

    async def record_notification(self, channel: str, success: bool):
        WAITLIST_NOTIFICATIONS.labels(
            channel=channel,
            outcome="sent" if success else "failed"
        ).inc()
        async with self._lock:
            if success:
                self.metrics.notifications_sent += 1
            else:
                self.metrics.notifications_failed += 1

    async def record_race_loss(self):
        async with self._lock:
            self.metrics.race_losses += 1

    async def record_booking_conflict(self):
        async with self._lock:
            self.metrics.booking_conflicts += 1

    async def get_metrics(self) -> Dict:
        """Get current metrics"""
        async with self._lock:
            return self.metrics.to_dict()

    async def reset_metrics(self):
        """Reset all metrics (useful for testing)"""
        async with self._lock:
            self.metrics = WaitlistMetrics()
            self.logger.info("Metrics reset")


class HealthChecker:
    """Health checking for waitlist engine dependencies"""

    def __init__(self, redis_manager, db_manager):
        self.redis_manager = redis_manager
        self.db_manager = db_manager

    async def check_redis_health(self) -> Dict[str, any]:
        try:
            start_time = time.time()
            client = await self.redis_manager.get_client()
            await client.ping()
            response_time = time.time() - start_time

            return {
                "status": "healthy",
                "response_time_ms": response_time * 1000,
                "error": None
            }
        except Exception as e:
            return {
                "status": "unhealthy",
                "response_time_ms": None,
                "error": str(e)
            }

    async def check_database_health(self) -> Dict[str, any]:
        try:
            start_time = time.time()
            async with self.db_manager.read_session() as session:
                await session.execute(text("SELECT 1"))
            response_time = time.time() - start_time

            return {
                "status": "healthy",
                "response_time_ms": response_time * 1000,
                "error": None
            }
        except Exception as e:
            return {
                "status": "unhealthy",
                "response_time_ms": None,
                "error": str(e)
            }

    async def get_system_health(self) -> Dict[str, any]:
        """
        Database is required; Redis only backs rate limiting and sweep
        leases, so losing it degrades the service rather than failing it.
        """
        redis_health = await self.check_redis_health()
        db_health = await self.check_database_health()

        if db_health["status"] != "healthy":
            overall_status = "unhealthy"
        elif redis_health["status"] != "healthy":
            overall_status = "degraded"
        else:
            overall_status = "healthy"

        return {
            "status": overall_status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": {
                "redis": redis_health,
                "database": db_health
            }
        }


# Global instances
metrics_collector = MetricsCollector()
