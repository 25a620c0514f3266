"""
Pydantic models for the ad-content pipeline.

Stage inputs/outputs and job state live in schemas; cache bookkeeping
in cache. API request bodies are imported from schemas directly.
"""

from talkar.models.cache import (
    CacheEntry,
    CacheInfo,
    CacheNamespace,
    CacheNamespaceInfo,
    NamespaceStats,
)
from talkar.models.schemas import (
    JobError,
    LipSyncResult,
    PipelineJob,
    PipelineMetadata,
    PipelineResult,
    PipelineStage,
    ScriptResult,
    SpeechResult,
    StageName,
    SubjectMetadata,
    UserPreferences,
)

__all__ = [
    # Stage results
    "ScriptResult",
    "SpeechResult",
    "LipSyncResult",
    # Pipeline
    "StageName",
    "PipelineStage",
    "PipelineJob",
    "JobError",
    "PipelineMetadata",
    "PipelineResult",
    # Context
    "SubjectMetadata",
    "UserPreferences",
    # Cache
    "CacheEntry",
    "CacheInfo",
    "CacheNamespace",
    "CacheNamespaceInfo",
    "NamespaceStats",
]
