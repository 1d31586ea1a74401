from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Set
import threading
import time
import uuid


class JobState(str, Enum):
    running = "running"
    finished = "finished"
    failed = "failed"
    error = "error"


TERMINAL_STATES = frozenset({JobState.finished, JobState.failed, JobState.error})

# SSE event names
EVENT_STATUS = "status"
EVENT_LOG = "log"
EVENT_ERROR = "error"
EVENT_DONE = "done"


def new_job_id() -> str:
    # uuid4 draws from os.urandom
    return uuid.uuid4().hex


@dataclass(eq=False)
class Job:
    output_path: Path
    input_path: Optional[Path] = None
    id: str = field(default_factory=new_job_id)
    created_at: float = field(default_factory=time.time)
    state: JobState = JobState.running
    subscribers: Set[Any] = field(default_factory=set)
    worker: Optional[Any] = None  # asyncio.subprocess.Process while running
    exit_code: Optional[int] = None
    download_urls: Optional[Dict[str, str]] = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: JobState, exit_code: Optional[int] = None,
                   download_urls: Optional[Dict[str, str]] = None) -> bool:
        """Move a running job into a terminal state.

        Returns False without touching the job if it already left ``running``;
        the caller that gets True owns the terminal ``done`` broadcast.
        """
        if new_state not in TERMINAL_STATES:
            raise ValueError(f"not a terminal state: {new_state}")
        with self.lock:
            if self.is_terminal:
                return False
            self.state = new_state
            self.exit_code = exit_code
            self.download_urls = download_urls
            self.worker = None
            return True

    def to_api(self) -> dict:
        with self.lock:
            return {
                "id": self.id,
                "status": self.state.value,
                "created_at": self.created_at,
                "output": self.output_path.name,
                "code": self.exit_code,
                "downloadUrls": self.download_urls,
                "subscribers": len(self.subscribers),
                "pid": getattr(self.worker, "pid", None),
            }
