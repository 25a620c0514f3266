"""
Pipeline module for ad-content generation.

This package contains the pipeline components:
- orchestrator: Stage sequencing (sync, fire-and-poll, streaming)
- provider_selector: Per-stage provider chains with fallback
- fallback_factory: Deterministic local generators
- stage_cache: In-memory TTL cache for stage results and lookups
- job_store: Job state and progress broadcasting
- performance_tracker: Latency targets and statistics
- progress_manager: Progress calculation

Example:
    from talkar.services.pipeline import PipelineOrchestrator, StageExhaustedError

    orchestrator = PipelineOrchestrator.from_settings(settings)
    try:
        result = await orchestrator.run_pipeline("sunrich-001")
    except StageExhaustedError as e:
        print(f"{e.stage.value} failed: {e.cause}")
"""

from .errors import (
    JobCancelledError,
    JobStateError,
    NotFoundError,
    PipelineError,
    StageExhaustedError,
    ValidationError,
)
from .fallback_factory import FallbackFactory
from .job_store import JobStore
from .orchestrator import PipelineOrchestrator
from .performance_tracker import PerformanceTracker
from .progress_manager import ProgressManager
from .provider_selector import ProviderSelector, SelectionResult, build_selectors
from .stage_cache import CacheManager

__all__ = [
    # Main orchestrator
    "PipelineOrchestrator",
    # Supporting classes
    "ProviderSelector",
    "SelectionResult",
    "build_selectors",
    "FallbackFactory",
    "CacheManager",
    "JobStore",
    "PerformanceTracker",
    "ProgressManager",
    # Errors
    "PipelineError",
    "ValidationError",
    "NotFoundError",
    "StageExhaustedError",
    "JobStateError",
    "JobCancelledError",
]
