# pdfrelay/routers/jobs.py
from __future__ import annotations
from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from fastapi.responses import StreamingResponse
from typing import Optional
import logging

from pdfrelay.core.broadcaster import QueueSink
from pdfrelay.core.models import JobState
from pdfrelay.error_handlers import UploadFailed
from pdfrelay.services.sse import SSE_HEADERS, event_stream
from pdfrelay.services.uploads import output_path_for, save_upload

logger = logging.getLogger("pdfrelay.jobs")

router = APIRouter(tags=["jobs"])


@router.post("/upload")
async def upload(request: Request, pdf: Optional[UploadFile] = File(None)):
    if pdf is None or not pdf.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")

    settings = request.app.state.settings
    registry = request.app.state.registry
    supervisor = request.app.state.supervisor

    input_path = await save_upload(pdf, settings.UPLOADS_DIR, settings.max_upload_bytes)
    job = None
    try:
        output_path = output_path_for(input_path, settings.OUTPUTS_DIR)
        job = registry.create_job(output_path, input_path=input_path)
        registry.track(supervisor.start(job, input_path, output_path))
    except Exception as e:
        # no supervisor will finish this job
        if job is not None:
            job.transition(JobState.error)
        input_path.unlink(missing_ok=True)
        raise UploadFailed(input_path.name) from e

    return {"jobId": job.id}


@router.get("/stream/{job_id}")
async def stream(job_id: str, request: Request):
    job = request.app.state.registry.get_job(job_id)
    if job is None:
        logger.info("stream requested for unknown job=%s", job_id)
    sink = QueueSink()
    return StreamingResponse(
        event_stream(request.app.state.broadcaster, job, sink),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/status/{job_id}")
def status(job_id: str, request: Request):
    job = request.app.state.registry.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="job_id not found")
    return job.to_api()
