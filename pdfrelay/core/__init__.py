from .broadcaster import Broadcaster, QueueSink, Sink, SinkClosed, SinkError, SinkOverflow
from .models import Job, JobState, TERMINAL_STATES
from .registry import JobRegistry
from .supervisor import ProcessSupervisor, WorkerCommand, download_urls

__all__ = [
    "Broadcaster", "QueueSink", "Sink", "SinkClosed", "SinkError", "SinkOverflow",
    "Job", "JobState", "TERMINAL_STATES",
    "JobRegistry",
    "ProcessSupervisor", "WorkerCommand", "download_urls",
]
