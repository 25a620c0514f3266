"""
Performance/SLA tracking for pipeline requests.

Records per-stage timings of each request and compares them against
latency targets (audio start, video render, total). Observability only:
no method raises, unknown request ids are logged and ignored.
"""

import functools
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Callable

from talkar.config import Settings
from talkar.models.schemas import (
    PerformanceRecord,
    PerformanceSummary,
    PerformanceTargets,
)

logger = logging.getLogger(__name__)

DIMENSIONS = ("audio_start", "video_render", "total")


def _never_raise(method):
    """Log instead of propagating: tracking must not break a pipeline run."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except Exception as e:
            logger.warning(f"Performance tracking error in {method.__name__}: {e}")
            return None

    return wrapper


class PerformanceTracker:
    """
    Per-request timing records over a bounded window.

    Records are kept for at most ``window`` requests and ``retention_seconds``;
    older ones are purged on write and by cleanup().

    Example:
        tracker = PerformanceTracker.from_settings(settings)
        tracker.start_tracking("job-1", "sunrich-001")
        tracker.record_stage("job-1", "script", 420.0)
        tracker.record_audio_start("job-1", 1200.0)
        tracker.record_completion("job-1", 4100.0)
        summary = tracker.get_summary()
    """

    def __init__(
        self,
        targets: PerformanceTargets | None = None,
        window: int = 500,
        retention_seconds: float = 24 * 3600,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.targets = targets or PerformanceTargets()
        self.window = window
        self.retention = timedelta(seconds=retention_seconds)
        self._clock = clock
        self._records: OrderedDict[str, PerformanceRecord] = OrderedDict()

    @classmethod
    def from_settings(cls, settings: Settings) -> "PerformanceTracker":
        targets = PerformanceTargets(
            audio_start_ms=settings.target_audio_start_ms,
            video_render_ms=settings.target_video_render_ms,
            total_ms=settings.target_total_ms,
        )
        return cls(
            targets=targets,
            window=settings.performance_window,
            retention_seconds=settings.performance_retention_seconds,
        )

    @_never_raise
    def start_tracking(self, request_id: str, subject_ref: str | None = None) -> None:
        """Open a record for a request (replaces an existing one)."""
        self._records.pop(request_id, None)
        self._records[request_id] = PerformanceRecord(
            request_id=request_id,
            subject_ref=subject_ref,
            status="in_progress",
            started_at=self._clock(),
        )
        self._enforce_window()

    @_never_raise
    def record_stage(self, request_id: str, stage: str, duration_ms: float) -> None:
        """Record the duration of one stage."""
        record = self._get_for_update(request_id, "record_stage")
        if record is None:
            return
        durations = {**record.stage_durations_ms, stage: round(duration_ms, 1)}
        self._records[request_id] = record.model_copy(
            update={"stage_durations_ms": durations}
        )

    @_never_raise
    def record_audio_start(self, request_id: str, delay_ms: float) -> None:
        """Record the delay until the first playable audio was available."""
        record = self._get_for_update(request_id, "record_audio_start")
        if record is None:
            return
        self._records[request_id] = record.model_copy(
            update={"audio_start_ms": round(delay_ms, 1)}
        )

    @_never_raise
    def record_completion(self, request_id: str, total_ms: float) -> None:
        """
        Close a record successfully and evaluate targets.

        Video render delay is the part of the total after audio started.
        """
        record = self._get_for_update(request_id, "record_completion")
        if record is None:
            return

        video_render_ms = None
        if record.audio_start_ms is not None:
            video_render_ms = round(max(0.0, total_ms - record.audio_start_ms), 1)

        targets_met = {"total": total_ms <= self.targets.total_ms}
        if record.audio_start_ms is not None:
            targets_met["audio_start"] = record.audio_start_ms <= self.targets.audio_start_ms
        if video_render_ms is not None:
            targets_met["video_render"] = video_render_ms <= self.targets.video_render_ms

        self._records[request_id] = record.model_copy(
            update={
                "status": "completed",
                "total_ms": round(total_ms, 1),
                "video_render_ms": video_render_ms,
                "targets_met": targets_met,
                "finished_at": self._clock(),
            }
        )

        missed = [name for name, met in targets_met.items() if not met]
        if missed:
            logger.warning(
                f"Targets missed for {request_id}: {', '.join(missed)} "
                f"(total {total_ms:.0f}ms)"
            )
        else:
            logger.info(f"All targets met for {request_id} (total {total_ms:.0f}ms)")

    @_never_raise
    def record_failure(self, request_id: str, reason: str) -> None:
        """Close a record as failed."""
        record = self._get_for_update(request_id, "record_failure")
        if record is None:
            return
        self._records[request_id] = record.model_copy(
            update={"status": "failed", "error": reason, "finished_at": self._clock()}
        )

    def get_record(self, request_id: str) -> PerformanceRecord | None:
        """Get the record of one request."""
        return self._records.get(request_id)

    def get_records(self) -> list[PerformanceRecord]:
        """All records in the window, oldest first."""
        return list(self._records.values())

    def get_summary(self) -> PerformanceSummary:
        """
        Aggregate statistics over the window.

        Returns:
            Counts, average timings and target hit ratios
        """
        records = list(self._records.values())
        completed = [r for r in records if r.status == "completed"]

        stage_totals: dict[str, list[float]] = {}
        for record in records:
            for stage, duration in record.stage_durations_ms.items():
                stage_totals.setdefault(stage, []).append(duration)

        met = {name: 0 for name in DIMENSIONS}
        missed = {name: 0 for name in DIMENSIONS}
        for record in completed:
            for name, ok in record.targets_met.items():
                if ok:
                    met[name] += 1
                else:
                    missed[name] += 1

        ratios = {
            name: met[name] / (met[name] + missed[name])
            for name in DIMENSIONS
            if met[name] + missed[name]
        }

        return PerformanceSummary(
            total_requests=len(records),
            successful_requests=len(completed),
            failed_requests=sum(1 for r in records if r.status == "failed"),
            average_stage_ms={
                stage: _average(values) for stage, values in stage_totals.items()
            },
            average_audio_start_ms=_average(
                [r.audio_start_ms for r in records if r.audio_start_ms is not None]
            ),
            average_video_render_ms=_average(
                [r.video_render_ms for r in completed if r.video_render_ms is not None]
            ),
            average_total_ms=_average(
                [r.total_ms for r in completed if r.total_ms is not None]
            ),
            targets_met=met,
            targets_missed=missed,
            target_hit_ratio=ratios,
        )

    def cleanup(self) -> int:
        """
        Remove records older than the retention window.

        Returns:
            Number of removed records
        """
        cutoff = self._clock() - self.retention
        old = [
            request_id
            for request_id, record in list(self._records.items())
            if record.started_at < cutoff
        ]
        for request_id in old:
            self._records.pop(request_id, None)
        if old:
            logger.info(f"Cleaned up {len(old)} old performance records")
        return len(old)

    def _get_for_update(self, request_id: str, operation: str) -> PerformanceRecord | None:
        record = self._records.get(request_id)
        if record is None:
            logger.warning(f"{operation}: unknown request id {request_id}")
        return record

    def _enforce_window(self) -> None:
        self.cleanup()
        while len(self._records) > self.window:
            self._records.popitem(last=False)


def _average(values: list[float]) -> float:
    return round(sum(values) / len(values), 1) if values else 0.0
