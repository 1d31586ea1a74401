# tests/conftest.py
import sys
import textwrap
import json
import pytest

from pdfrelay.config import Settings

WORKER_HEADER = """
import argparse, os, sys, time
p = argparse.ArgumentParser()
p.add_argument("--input")
p.add_argument("--output")
args = p.parse_args()
"""


@pytest.fixture
def make_worker(tmp_path):
    """Write a fake conversion worker; returns its path."""
    def _make(body: str, name: str = "worker.py"):
        path = tmp_path / name
        path.write_text(WORKER_HEADER + textwrap.dedent(body), encoding="utf-8")
        return path
    return _make


@pytest.fixture
def input_pdf(tmp_path):
    p = tmp_path / "in.pdf"
    p.write_bytes(b"%PDF-1.4 test")
    return p


@pytest.fixture
def make_settings(tmp_path, monkeypatch):
    def _make(script, heartbeat_ms: int = 2000, **env):
        monkeypatch.setenv("UPLOADS_DIR", str(tmp_path / "uploads"))
        monkeypatch.setenv("OUTPUTS_DIR", str(tmp_path / "outputs"))
        monkeypatch.delenv("PUBLIC_DIR", raising=False)
        monkeypatch.setenv("PYTHON_BIN", sys.executable)
        monkeypatch.setenv("PYTHON_SCRIPT", str(script))
        monkeypatch.setenv("HEARTBEAT_INTERVAL_MS", str(heartbeat_ms))
        for k, v in env.items():
            monkeypatch.setenv(k, str(v))
        return Settings()
    return _make


class RecordingSink:
    def __init__(self):
        self.events = []
        self.pings = 0
        self.closed = False

    def send(self, event, data):
        self.events.append((event, data))

    def ping(self):
        self.pings += 1

    def close(self):
        self.closed = True

    def named(self, name):
        return [d for e, d in self.events if e == name]


class BrokenSink(RecordingSink):
    def send(self, event, data):
        raise ConnectionResetError("client went away")

    def ping(self):
        raise ConnectionResetError("client went away")


def parse_sse(text: str):
    """Return [(event, data)] for data frames and count of ': ping' comments."""
    events, pings = [], 0
    for frame in text.split("\n\n"):
        if not frame.strip():
            continue
        if frame.startswith(": ping"):
            pings += 1
            continue
        if frame.startswith(":"):
            continue
        name, data = None, None
        for line in frame.split("\n"):
            if line.startswith("event: "):
                name = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        events.append((name, data))
    return events, pings
