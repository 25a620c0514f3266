"""
HTTP API routes for the ad-content pipeline.

Provides endpoints for:
- Single stages (script, audio, lip-sync)
- Full pipeline, synchronous and streaming
- Fire-and-poll jobs (start, status, cancel)
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from talkar.models.schemas import (
    AdContentRequest,
    GenerateAudioRequest,
    GenerateLipSyncRequest,
    GenerateScriptRequest,
    LipSyncResult,
    PipelineJob,
    PipelineResult,
    ScriptResult,
    SpeechResult,
    StartPipelineResponse,
)
from talkar.services.pipeline import (
    NotFoundError,
    PipelineError,
    PipelineOrchestrator,
    StageExhaustedError,
    ValidationError,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/ai-pipeline", tags=["ai-pipeline"])


def get_orchestrator(request: Request) -> PipelineOrchestrator:
    """Orchestrator built by the application lifespan."""
    return request.app.state.orchestrator


def to_http_error(error: PipelineError) -> HTTPException:
    """
    Map a pipeline error to an HTTP error.

    ValidationError -> 400, NotFoundError -> 404,
    StageExhaustedError -> 502 (with the failed stage), others -> 500.
    """
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail=error.message)
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=error.message)
    if isinstance(error, StageExhaustedError):
        return HTTPException(
            status_code=502,
            detail={"stage": error.stage.value, "message": error.message},
        )
    return HTTPException(status_code=500, detail=error.message)


@router.post("/generate_script", response_model=ScriptResult)
async def generate_script(
    request: GenerateScriptRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> ScriptResult:
    """
    Generate ad copy for a subject.

    Args:
        request: Subject ref, language and emotion

    Returns:
        ScriptResult with text, language and emotion
    """
    try:
        return await orchestrator.generate_script(
            request.subject_ref, request.language, request.emotion
        )
    except PipelineError as e:
        raise to_http_error(e) from e


@router.post("/generate_audio", response_model=SpeechResult)
async def generate_audio(
    request: GenerateAudioRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> SpeechResult:
    """
    Synthesize speech for a text.

    Args:
        request: Text, language, emotion and optional voice

    Returns:
        SpeechResult with audio_ref and duration
    """
    try:
        return await orchestrator.generate_audio(
            request.text, request.language, request.emotion, request.voice_id
        )
    except PipelineError as e:
        raise to_http_error(e) from e


@router.post("/generate_lipsync", response_model=LipSyncResult)
async def generate_lipsync(
    request: GenerateLipSyncRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> LipSyncResult:
    """
    Render a lip-synced video for an audio track.

    Args:
        request: Subject ref, audio_ref, emotion and optional avatar

    Returns:
        LipSyncResult with video_ref, duration and provider job id
    """
    try:
        return await orchestrator.generate_lipsync(
            request.subject_ref, request.audio_ref, request.emotion, request.avatar
        )
    except PipelineError as e:
        raise to_http_error(e) from e


@router.post("/generate_ad_content", response_model=PipelineResult)
async def generate_ad_content(
    request: AdContentRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> PipelineResult:
    """
    Run the full pipeline and wait for the result.

    Returns:
        PipelineResult with script, audio_ref, video_ref and metadata
    """
    try:
        return await orchestrator.run_pipeline(request.subject_ref, request.to_options())
    except PipelineError as e:
        raise to_http_error(e) from e


@router.post("/generate_ad_content_streaming", response_model=PipelineResult)
async def generate_ad_content_streaming(
    request: AdContentRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> PipelineResult:
    """
    Run the full pipeline with overlapped stages.

    Same response as /generate_ad_content, lower latency.
    """
    try:
        return await orchestrator.run_pipeline_streaming(
            request.subject_ref, request.to_options()
        )
    except PipelineError as e:
        raise to_http_error(e) from e


@router.post("/generate", response_model=StartPipelineResponse)
async def start_pipeline(
    request: AdContentRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> StartPipelineResponse:
    """
    Start the pipeline in the background.

    Poll /status/{job_id} or connect to WebSocket /ws/{job_id} for progress.

    Returns:
        StartPipelineResponse with job_id
    """
    try:
        job_id = await orchestrator.start_pipeline(request.subject_ref, request.to_options())
    except PipelineError as e:
        raise to_http_error(e) from e

    job = orchestrator.get_job_status(job_id)
    logger.info(f"Started pipeline job {job_id} for {request.subject_ref}")
    return StartPipelineResponse(job_id=job_id, stage=job.stage)


@router.get("/status/{job_id}", response_model=PipelineJob)
async def get_job_status(
    job_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> PipelineJob:
    """
    Get job status.

    Raises:
        HTTPException: 404 for unknown or expired jobs
    """
    job = orchestrator.get_job_status(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return job


@router.post("/status/{job_id}/cancel", response_model=PipelineJob)
async def cancel_job(
    job_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> PipelineJob:
    """
    Request best-effort cancellation.

    Returns:
        Job after the request (terminal jobs are returned unchanged)
    """
    try:
        return orchestrator.cancel_job(job_id)
    except PipelineError as e:
        raise to_http_error(e) from e


@router.get("/jobs", response_model=list[PipelineJob])
async def list_jobs(
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> list[PipelineJob]:
    """List live jobs, newest first."""
    return orchestrator.list_jobs()
