"""
Pydantic models for the ad-content generation pipeline.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, computed_field


class PipelineStage(str, Enum):
    """Stage of a pipeline job (value = last completed stage)."""
    PENDING = "pending"
    SCRIPT = "script"
    SPEECH = "speech"
    LIPSYNC = "lipsync"
    COMPLETED = "completed"
    FAILED = "failed"


class StageName(str, Enum):
    """Generation stage served by a provider chain."""
    SCRIPT = "script"
    SPEECH = "speech"
    LIPSYNC = "lipsync"


class PipelineMode(str, Enum):
    """How a pipeline run was started."""
    SYNC = "sync"
    ASYNC = "async"
    STREAMING = "streaming"


# Ordered, non-terminal progression of a job
STAGE_ORDER = [
    PipelineStage.PENDING,
    PipelineStage.SCRIPT,
    PipelineStage.SPEECH,
    PipelineStage.LIPSYNC,
    PipelineStage.COMPLETED,
]

TERMINAL_STAGES = (PipelineStage.COMPLETED, PipelineStage.FAILED)

VALID_EMOTIONS = (
    "neutral",
    "happy",
    "surprised",
    "serious",
    "friendly",
    "excited",
    "professional",
    "casual",
    "enthusiastic",
    "persuasive",
)


# ═══════════════════════════════════════════════════════════════════════════
# Collaborator data
# ═══════════════════════════════════════════════════════════════════════════


class SubjectMetadata(BaseModel):
    """Metadata of the product/poster being advertised."""

    subject_ref: str
    name: str
    category: str = "General"
    brand: str = ""
    tone: str | None = None
    language: str | None = None
    image_url: str = ""
    description: str = ""
    features: list[str] = Field(default_factory=list)
    price: float | None = None
    currency: str = "USD"
    target_audience: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)


class UserPreferences(BaseModel):
    """Preferences applied when subject metadata does not set language/tone."""

    language: str = "en"
    preferred_tone: str = "friendly"


# ═══════════════════════════════════════════════════════════════════════════
# Stage inputs and outputs
# ═══════════════════════════════════════════════════════════════════════════


class ScriptRequest(BaseModel):
    """Input of the script stage."""

    subject_ref: str
    language: str = "en"
    emotion: str = "neutral"
    subject: SubjectMetadata | None = None


class ScriptResult(BaseModel):
    """Generated ad copy."""

    text: str
    language: str
    emotion: str
    provider: str = ""
    cached: bool = False


class SpeechRequest(BaseModel):
    """Input of the speech stage."""

    text: str
    language: str = "en"
    emotion: str = "neutral"
    voice_id: str | None = None


class SpeechResult(BaseModel):
    """Synthesized voice track."""

    audio_ref: str
    duration_seconds: float
    provider: str = ""
    cached: bool = False


class LipSyncRequest(BaseModel):
    """Input of the lip-sync stage."""

    subject_ref: str
    audio_ref: str
    emotion: str = "neutral"
    avatar: str | None = None


class LipSyncResult(BaseModel):
    """Rendered lip-synced video."""

    video_ref: str
    duration_seconds: float
    job_id: str | None = None
    provider: str = ""
    cached: bool = False


# ═══════════════════════════════════════════════════════════════════════════
# Pipeline jobs
# ═══════════════════════════════════════════════════════════════════════════


class PipelineOptions(BaseModel):
    """Per-run options; unset fields come from metadata/preferences."""

    language: str | None = None
    emotion: str | None = None
    user_id: str | None = None


class JobError(BaseModel):
    """Failure details of a job, tagged with the originating stage."""

    stage: StageName
    message: str
    code: str = "stage_exhausted"  # stage_exhausted | cancelled | internal


class PipelineJob(BaseModel):
    """State of one end-to-end pipeline run."""

    id: str
    subject_ref: str
    mode: PipelineMode = PipelineMode.ASYNC
    stage: PipelineStage = PipelineStage.PENDING
    progress: float = Field(ge=0, le=100, default=0)
    script: str | None = None
    audio_ref: str | None = None
    video_ref: str | None = None
    error: JobError | None = None
    cancel_requested: bool = False
    cached_stages: list[StageName] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @computed_field
    @property
    def is_terminal(self) -> bool:
        """True once the job is completed or failed."""
        return self.stage in TERMINAL_STAGES


class PipelineMetadata(BaseModel):
    """Descriptive metadata returned alongside a pipeline result."""

    job_id: str
    subject_ref: str
    product_name: str
    language: str
    tone: str
    image_url: str = ""
    user_id: str = "anonymous"
    providers: dict[str, str] = Field(default_factory=dict)
    cached_stages: list[StageName] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=datetime.now)


class PipelineResult(BaseModel):
    """Final output of a full pipeline run."""

    script: str
    audio_ref: str
    video_ref: str
    metadata: PipelineMetadata


# ═══════════════════════════════════════════════════════════════════════════
# Providers and performance
# ═══════════════════════════════════════════════════════════════════════════


class ProviderDescriptor(BaseModel):
    """Static description of one provider in a stage chain."""

    name: str
    stage: StageName
    priority: int
    available: bool
    is_fallback: bool = False


class PerformanceTargets(BaseModel):
    """Latency targets in milliseconds."""

    audio_start_ms: float = 1500
    video_render_ms: float = 3000
    total_ms: float = 5000


class PerformanceRecord(BaseModel):
    """Timings of one tracked request."""

    request_id: str
    subject_ref: str | None = None
    status: str = "pending"  # pending | in_progress | completed | failed
    stage_durations_ms: dict[str, float] = Field(default_factory=dict)
    audio_start_ms: float | None = None
    video_render_ms: float | None = None
    total_ms: float | None = None
    targets_met: dict[str, bool] = Field(default_factory=dict)
    error: str | None = None
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: datetime | None = None


class PerformanceSummary(BaseModel):
    """Aggregate statistics over the recent window."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_stage_ms: dict[str, float] = Field(default_factory=dict)
    average_audio_start_ms: float = 0
    average_video_render_ms: float = 0
    average_total_ms: float = 0
    targets_met: dict[str, int] = Field(default_factory=dict)
    targets_missed: dict[str, int] = Field(default_factory=dict)
    target_hit_ratio: dict[str, float] = Field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════════════
# API Request/Response Models
# ═══════════════════════════════════════════════════════════════════════════


class GenerateScriptRequest(BaseModel):
    """Request for /generate_script."""

    subject_ref: str = Field(..., examples=["sunrich-001"])
    language: str = "en"
    emotion: str = "neutral"


class GenerateAudioRequest(BaseModel):
    """Request for /generate_audio."""

    text: str
    language: str = "en"
    emotion: str = "neutral"
    voice_id: str | None = None


class GenerateLipSyncRequest(BaseModel):
    """Request for /generate_lipsync."""

    subject_ref: str = "default"
    audio_ref: str
    emotion: str = "neutral"
    avatar: str | None = None


class AdContentRequest(BaseModel):
    """Request for the full-pipeline endpoints."""

    subject_ref: str = Field(..., examples=["sunrich-001"])
    language: str | None = None
    emotion: str | None = None
    user_id: str | None = None

    def to_options(self) -> PipelineOptions:
        """Convert to orchestrator options."""
        return PipelineOptions(
            language=self.language,
            emotion=self.emotion,
            user_id=self.user_id,
        )


class StartPipelineResponse(BaseModel):
    """Response of the fire-and-poll endpoint."""

    job_id: str
    stage: PipelineStage
    message: str = "AI pipeline started"


class ProgressMessage(BaseModel):
    """WebSocket progress message."""

    job_id: str
    stage: PipelineStage
    progress: float = Field(ge=0, le=100)
    message: str
    timestamp: datetime
    error: JobError | None = None
