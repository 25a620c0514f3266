"""
WebSocket handler for real-time job progress updates.

Streams progress of a fire-and-poll pipeline job until it is terminal.
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from talkar.models.schemas import TERMINAL_STAGES

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])

TERMINAL_VALUES = tuple(stage.value for stage in TERMINAL_STAGES)


@router.websocket("/ws/{job_id}")
async def job_progress_websocket(websocket: WebSocket, job_id: str) -> None:
    """
    WebSocket endpoint for real-time job progress updates.

    Messages are JSON objects with job_id, stage, progress, message,
    timestamp and (for failed jobs) error. The connection closes when
    the job completes or fails.

    Example client (Python):
        async with websockets.connect(f"ws://localhost:8801/ws/{job_id}") as ws:
            async for message in ws:
                data = json.loads(message)
                print(f"{data['stage']}: {data['progress']}% - {data['message']}")

    Args:
        websocket: WebSocket connection
        job_id: Job identifier to subscribe to
    """
    jobs = websocket.app.state.orchestrator.jobs

    job = jobs.get(job_id)
    if not job:
        await websocket.close(code=4004, reason=f"Job not found: {job_id}")
        return

    await websocket.accept()
    logger.info(f"WebSocket connected for job {job_id}")

    # Subscribe before sending the snapshot so no transition is missed
    queue = jobs.subscribe(job_id)

    try:
        snapshot = jobs.get(job_id) or job
        await websocket.send_json(jobs.snapshot_message(snapshot))

        if snapshot.is_terminal:
            await websocket.close()
            return

        while True:
            try:
                message = await asyncio.wait_for(queue.get(), timeout=30.0)
                await websocket.send_json(message)

                if message.get("stage") in TERMINAL_VALUES:
                    await websocket.close()
                    break

            except asyncio.TimeoutError:
                # Heartbeat keeps proxies from closing idle connections
                await websocket.send_json({"type": "heartbeat"})

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for job {job_id}")
    finally:
        jobs.unsubscribe(job_id, queue)
        logger.info(f"WebSocket closed for job {job_id}")
