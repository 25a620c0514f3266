#!/usr/bin/env python3
"""
Latency benchmark for the ad-content pipeline.

Runs the pipeline against the configured providers (local generators
where no credentials are set) and compares timings with the targets.

Two modes:
- stages: Run each stage on its own once, then one full pipeline (smoke test)
- pipeline: Run sequential and streaming pipelines N times per subject (default)

Usage:
    # Pipeline mode: 3 cold runs per subject and mode
    python scripts/benchmark_pipeline.py --subjects sunrich-001 brew-master-200 --runs 3

    # Stage mode: one pass through every operation
    python scripts/benchmark_pipeline.py --mode stages --subjects sunrich-001
"""

import argparse
import asyncio
import time
from dataclasses import dataclass, field
from statistics import mean, stdev

import httpx

from talkar.config import get_settings
from talkar.logging_config import setup_logging
from talkar.services.pipeline import PipelineError, PipelineOrchestrator


# =============================================================================
# Data structures
# =============================================================================

@dataclass
class RunResult:
    """Result of a single pipeline run."""
    subject_ref: str
    mode: str  # sequential | streaming
    run: int
    success: bool
    total_ms: float
    audio_start_ms: float | None = None
    stage_ms: dict[str, float] = field(default_factory=dict)
    providers: dict[str, str] = field(default_factory=dict)
    error: str | None = None


# =============================================================================
# Runs
# =============================================================================

async def run_once(
    orchestrator: PipelineOrchestrator, subject_ref: str, mode: str, run: int
) -> RunResult:
    """Run one cold pipeline (cache cleared) and collect its timings."""
    orchestrator.cache.clear()
    started = time.perf_counter()

    try:
        if mode == "streaming":
            result = await orchestrator.run_pipeline_streaming(subject_ref)
        else:
            result = await orchestrator.run_pipeline(subject_ref)
    except PipelineError as e:
        return RunResult(
            subject_ref=subject_ref,
            mode=mode,
            run=run,
            success=False,
            total_ms=(time.perf_counter() - started) * 1000,
            error=str(e),
        )

    record = orchestrator.tracker.get_record(result.metadata.job_id)
    return RunResult(
        subject_ref=subject_ref,
        mode=mode,
        run=run,
        success=True,
        total_ms=(time.perf_counter() - started) * 1000,
        audio_start_ms=record.audio_start_ms if record else None,
        stage_ms=dict(record.stage_durations_ms) if record else {},
        providers=result.metadata.providers,
    )


async def run_pipeline_benchmark(
    orchestrator: PipelineOrchestrator, subjects: list[str], num_runs: int
) -> dict[str, list[RunResult]]:
    """Run every subject in both modes, num_runs times each."""
    all_results: dict[str, list[RunResult]] = {"sequential": [], "streaming": []}

    print("=" * 70)
    print(f"PIPELINE BENCHMARK ({num_runs} runs per subject and mode)")
    print("=" * 70)

    for mode in all_results:
        for subject_ref in subjects:
            for run in range(1, num_runs + 1):
                result = await run_once(orchestrator, subject_ref, mode, run)
                all_results[mode].append(result)
                status = "OK" if result.success else f"FAILED: {result.error}"
                print(
                    f"  [{mode:10}] {subject_ref:20} run {run}: "
                    f"{result.total_ms:8.0f}ms  {status}"
                )

    return all_results


async def run_stage_smoke_test(orchestrator: PipelineOrchestrator, subject_ref: str) -> None:
    """Call every operation once and print what it returned."""
    print("=" * 70)
    print(f"STAGE SMOKE TEST: {subject_ref}")
    print("=" * 70)

    started = time.perf_counter()
    script = await orchestrator.generate_script(subject_ref, emotion="happy")
    print(f"\n1. Script ({script.provider}, {_since(started):.0f}ms):\n   {script.text}")

    started = time.perf_counter()
    audio = await orchestrator.generate_audio(script.text, script.language, script.emotion)
    print(f"\n2. Audio ({audio.provider}, {_since(started):.0f}ms):\n   {audio.audio_ref}")

    started = time.perf_counter()
    video = await orchestrator.generate_lipsync(subject_ref, audio.audio_ref, script.emotion)
    print(f"\n3. Lip-sync ({video.provider}, {_since(started):.0f}ms):\n   {video.video_ref}")

    print("\n4. Background pipeline...")
    job_id = await orchestrator.start_pipeline(subject_ref)
    await orchestrator.wait_for_background()
    job = orchestrator.get_job_status(job_id)
    print(f"   job {job_id}: {job.stage.value} ({job.progress:.0f}%)")
    if job.error:
        print(f"   error at {job.error.stage.value}: {job.error.message}")


def _since(started: float) -> float:
    return (time.perf_counter() - started) * 1000


# =============================================================================
# Reports
# =============================================================================

def aggregate_results(results: list[RunResult]) -> dict:
    """Aggregate timings of successful runs."""
    ok = [r for r in results if r.success]
    totals = [r.total_ms for r in ok]
    audio = [r.audio_start_ms for r in ok if r.audio_start_ms is not None]

    return {
        "runs": len(results),
        "success_rate": len(ok) / len(results) * 100 if results else 0,
        "avg_total": mean(totals) if totals else 0,
        "std_total": stdev(totals) if len(totals) > 1 else 0,
        "max_total": max(totals) if totals else 0,
        "avg_audio_start": mean(audio) if audio else 0,
    }


def print_report(all_results: dict[str, list[RunResult]], targets: dict[str, float]) -> None:
    """Print per-mode statistics against the targets."""
    print("\n" + "=" * 70)
    print("RESULTS")
    print("=" * 70)
    print(f"Targets: audio start {targets['audio_start_ms']:.0f}ms, total {targets['total_ms']:.0f}ms\n")
    print(f"{'Mode':12} {'Runs':>5} {'OK %':>6} {'Avg total':>10} {'Std':>8} {'Max':>8} {'Audio start':>12}")
    print("-" * 70)

    for mode, results in all_results.items():
        stats = aggregate_results(results)
        print(
            f"{mode:12} {stats['runs']:>5} {stats['success_rate']:>5.0f}% "
            f"{stats['avg_total']:>9.0f}ms {stats['std_total']:>7.0f}ms "
            f"{stats['max_total']:>7.0f}ms {stats['avg_audio_start']:>11.0f}ms"
        )

    providers = {
        stage: name
        for results in all_results.values()
        for r in results
        for stage, name in r.providers.items()
    }
    if providers:
        print(f"\nProviders used: {', '.join(f'{s}={p}' for s, p in providers.items())}")


# =============================================================================
# Main
# =============================================================================

async def main() -> None:
    parser = argparse.ArgumentParser(description="Benchmark the ad-content pipeline")
    parser.add_argument("--mode", choices=["pipeline", "stages"], default="pipeline")
    parser.add_argument("--subjects", nargs="+", default=["sunrich-001"])
    parser.add_argument("--runs", type=int, default=3, help="Runs per subject and mode")
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings)

    async with httpx.AsyncClient(timeout=None) as http_client:
        orchestrator = PipelineOrchestrator.from_settings(settings, http_client)
        try:
            if args.mode == "stages":
                for subject_ref in args.subjects:
                    await run_stage_smoke_test(orchestrator, subject_ref)
            else:
                results = await run_pipeline_benchmark(orchestrator, args.subjects, args.runs)
                print_report(results, orchestrator.tracker.targets.model_dump())
        finally:
            await orchestrator.close()


if __name__ == "__main__":
    asyncio.run(main())
