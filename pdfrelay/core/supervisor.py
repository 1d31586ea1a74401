"""
Runs the external conversion worker for one job.

The worker is an opaque process invoked as
``<python_bin> <script> --input <in> --output <out>``. Its stdout/stderr are
relayed chunk by chunk as ``log`` events; its exit drives the job into a
terminal state and a single ``done`` event.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence
import asyncio
import codecs
import logging

from .broadcaster import Broadcaster
from .models import EVENT_DONE, EVENT_ERROR, EVENT_LOG, Job, JobState

logger = logging.getLogger("pdfrelay.supervisor")


@dataclass
class WorkerCommand:
    python_bin: str
    script: str
    extra_args: Sequence[str] = field(default_factory=tuple)

    def argv(self, input_path: Path, output_path: Path) -> List[str]:
        return [
            self.python_bin,
            self.script,
            "--input", str(input_path),
            "--output", str(output_path),
            *self.extra_args,
        ]


def download_urls(output_path: Path, sibling_suffix: str = ".csv",
                  prefix: str = "/download") -> Dict[str, str]:
    """Retrieval locators for the primary output and its same-stem sibling."""
    output_path = Path(output_path)
    sibling = output_path.with_suffix(sibling_suffix)
    primary_key = output_path.suffix.lstrip(".") or "file"
    return {
        primary_key: f"{prefix}/{output_path.name}",
        sibling_suffix.lstrip("."): f"{prefix}/{sibling.name}",
    }


def remove_quietly(path: Optional[Path]) -> None:
    if path is None:
        return
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as e:
        logger.warning("could not remove %s: %s", path, e)


class ProcessSupervisor:
    def __init__(self, broadcaster: Broadcaster, command: WorkerCommand,
                 sibling_suffix: str = ".csv", download_prefix: str = "/download",
                 chunk_size: int = 4096):
        self.broadcaster = broadcaster
        self.command = command
        self.sibling_suffix = sibling_suffix
        self.download_prefix = download_prefix
        self.chunk_size = chunk_size

    def start(self, job: Job, input_path: Path, output_path: Path) -> asyncio.Task:
        return asyncio.get_running_loop().create_task(
            self.run(job, Path(input_path), Path(output_path)),
            name=f"worker-{job.id}",
        )

    async def run(self, job: Job, input_path: Path, output_path: Path) -> None:
        argv = self.command.argv(input_path, output_path)
        try:
            try:
                proc = await asyncio.create_subprocess_exec(
                    *argv,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as e:
                logger.error("job=%s failed to start worker: %s", job.id, e)
                self._finish_launch_error(job, e)
                return
            except asyncio.CancelledError:
                self._finish_exit(job, None, output_path)
                raise

            with job.lock:
                job.worker = proc
            logger.info("job=%s worker pid=%s started", job.id, proc.pid)

            try:
                await asyncio.gather(
                    self._pump(job, proc.stdout, "stdout"),
                    self._pump(job, proc.stderr, "stderr"),
                )
                code = await proc.wait()
            except asyncio.CancelledError:
                await self._kill(proc)
                self._finish_exit(job, None, output_path)
                raise

            self._finish_exit(job, code, output_path)
        finally:
            remove_quietly(input_path)

    async def _pump(self, job: Job, stream: Optional[asyncio.StreamReader], kind: str) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(self.chunk_size)
            if not chunk:
                tail = decoder.decode(b"", final=True)
                if tail:
                    self.broadcaster.broadcast(job, EVENT_LOG, {"type": kind, "message": tail})
                return
            text = decoder.decode(chunk)
            if text:
                self.broadcaster.broadcast(job, EVENT_LOG, {"type": kind, "message": text})

    async def _kill(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            return
        await proc.wait()

    def _finish_launch_error(self, job: Job, err: Exception) -> None:
        with job.lock:
            if not job.transition(JobState.error):
                return
            self.broadcaster.broadcast(job, EVENT_ERROR, {"message": f"Failed to start worker: {err}"})
            self.broadcaster.broadcast(job, EVENT_DONE, {"ok": False})

    def _finish_exit(self, job: Job, code: Optional[int], output_path: Path) -> None:
        ok = code == 0 and output_path.exists()
        urls = download_urls(output_path, self.sibling_suffix, self.download_prefix) if ok else None
        state = JobState.finished if ok else JobState.failed
        with job.lock:
            if not job.transition(state, exit_code=code, download_urls=urls):
                return
            self.broadcaster.broadcast(job, EVENT_DONE, {"ok": ok, "code": code, "downloadUrls": urls})
        logger.info("job=%s %s code=%s", job.id, state.value, code)
