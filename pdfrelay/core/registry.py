from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional, Set
import asyncio
import logging
import threading

from .models import Job, new_job_id

logger = logging.getLogger("pdfrelay.jobs")


class JobRegistry:
    """In-memory job map; jobs are never evicted, so it grows with the process."""

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()
        self._tasks: Set[asyncio.Task] = set()

    def create_job(self, output_path: Path, input_path: Optional[Path] = None) -> Job:
        with self._lock:
            job_id = new_job_id()
            while job_id in self._jobs:
                job_id = new_job_id()
            job = Job(output_path=Path(output_path), input_path=input_path, id=job_id)
            self._jobs[job.id] = job
        logger.info("created job=%s output=%s", job.id, job.output_path.name)
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def track(self, task: asyncio.Task) -> asyncio.Task:
        # keep a strong ref so the event loop can't drop a running supervisor
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("cancelled %d running job(s) on shutdown", len(tasks))
