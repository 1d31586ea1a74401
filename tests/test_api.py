# tests/test_api.py
import threading
import time

import pytest
from fastapi.testclient import TestClient

from pdfrelay.main import create_app
from conftest import parse_sse

PDF = ("doc.pdf", b"%PDF-1.4 hello", "application/pdf")


def _wait_for(client, job_id, timeout=10.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        body = client.get(f"/status/{job_id}").json()
        if body["status"] != "running":
            return body
        time.sleep(0.05)
    raise AssertionError(f"job {job_id} still running")


@pytest.fixture
def gated_worker(make_worker, tmp_path):
    """Worker that waits for a 'go' file, so a stream can attach first."""
    go = tmp_path / "go"
    script = make_worker(f"""
        while not os.path.exists({str(go)!r}):
            time.sleep(0.01)
        print("page 1 done", flush=True)
        with open(args.output, "wb") as f:
            f.write(b"%PDF-1.4 translated")
    """)
    return script, go


def test_health(make_worker, make_settings):
    with TestClient(create_app(make_settings(make_worker("")))) as client:
        assert client.get("/health").json() == {"ok": True}
        env = client.get("/health/env").json()
        assert env["HEARTBEAT_INTERVAL_MS"] == 2000
        assert env["jobs"] == 0


def test_upload_requires_file(make_worker, make_settings):
    with TestClient(create_app(make_settings(make_worker("")))) as client:
        r = client.post("/upload")
        assert r.status_code == 400
        assert r.json() == {"error": "No file uploaded"}


def test_upload_rejects_non_pdf(make_worker, make_settings, tmp_path):
    with TestClient(create_app(make_settings(make_worker("")))) as client:
        r = client.post("/upload", files={"pdf": ("notes.txt", b"hello", "text/plain")})
        assert r.status_code == 400
        assert r.json() == {"error": "Only PDF files are allowed"}
        assert list((tmp_path / "uploads").iterdir()) == []


def test_upload_size_limit(make_worker, make_settings, tmp_path):
    settings = make_settings(make_worker(""), MAX_UPLOAD_MB=1)
    with TestClient(create_app(settings)) as client:
        big = b"%PDF" + b"0" * (1024 * 1024 + 1)
        r = client.post("/upload", files={"pdf": ("big.pdf", big, "application/pdf")})
        assert r.status_code == 413
        assert list((tmp_path / "uploads").iterdir()) == []


def test_stream_unknown_job(make_worker, make_settings):
    with TestClient(create_app(make_settings(make_worker("")))) as client:
        r = client.get("/stream/does-not-exist")
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/event-stream")
        events, pings = parse_sse(r.text)
        assert events == [("error", {"message": "Unknown job id"})]
        assert r.text.startswith(": connected\n\n")


def test_status_unknown_job(make_worker, make_settings):
    with TestClient(create_app(make_settings(make_worker("")))) as client:
        r = client.get("/status/nope")
        assert r.status_code == 404
        assert r.json() == {"error": "job_id not found"}


def test_upload_stream_and_download(gated_worker, make_settings, tmp_path):
    script, go = gated_worker
    app = create_app(make_settings(script, heartbeat_ms=50))
    with TestClient(app) as client:
        r = client.post("/upload", files={"pdf": PDF})
        assert r.status_code == 200
        job_id = r.json()["jobId"]
        assert client.get(f"/status/{job_id}").json()["status"] == "running"

        threading.Timer(0.5, go.touch).start()
        stream = client.get(f"/stream/{job_id}")
        events, pings = parse_sse(stream.text)

        assert events[0] == ("status", {"status": "running"})
        assert "".join(d["message"] for e, d in events if e == "log") == "page 1 done\n"
        name, done = events[-1]
        assert name == "done"
        assert done["ok"] is True and done["code"] == 0
        assert [e for e, _ in events].count("done") == 1
        assert pings > 0

        pdf_url = done["downloadUrls"]["pdf"]
        assert done["downloadUrls"]["csv"] == pdf_url[:-len(".pdf")] + ".csv"
        dl = client.get(pdf_url)
        assert dl.status_code == 200
        assert dl.content == b"%PDF-1.4 translated"
        assert "attachment" in dl.headers["content-disposition"]

        snap = _wait_for(client, job_id)
        assert snap["status"] == "finished"
        assert snap["subscribers"] == 0
        assert list((tmp_path / "uploads").iterdir()) == []
        assert app.state.broadcaster.active_heartbeats() == 0


def test_late_stream_gets_terminal_status_only(make_worker, make_settings):
    script = make_worker("""
        sys.exit(3)
    """)
    with TestClient(create_app(make_settings(script))) as client:
        job_id = client.post("/upload", files={"pdf": PDF}).json()["jobId"]
        snap = _wait_for(client, job_id)
        assert snap["status"] == "failed"
        assert snap["code"] == 3

        events, _ = parse_sse(client.get(f"/stream/{job_id}").text)
        assert events == [("status", {"status": "failed"})]


def test_two_streams_see_same_events(gated_worker, make_settings):
    script, go = gated_worker
    app = create_app(make_settings(script))
    with TestClient(app) as client:
        job_id = client.post("/upload", files={"pdf": PDF}).json()["jobId"]
        results = {}

        def read(key):
            results[key] = parse_sse(client.get(f"/stream/{job_id}").text)[0]

        readers = [threading.Thread(target=read, args=(k,)) for k in ("a", "b")]
        for t in readers:
            t.start()
        deadline = time.time() + 5
        while client.get(f"/status/{job_id}").json()["subscribers"] < 2 and time.time() < deadline:
            time.sleep(0.02)
        go.touch()
        for t in readers:
            t.join(timeout=10)

        assert results["a"] == results["b"]
        assert results["a"][0] == ("status", {"status": "running"})
        assert results["a"][-1][0] == "done"


def test_missing_worker_binary_via_http(make_worker, make_settings, tmp_path):
    settings = make_settings(make_worker(""), PYTHON_BIN=str(tmp_path / "missing-python"))
    with TestClient(create_app(settings)) as client:
        job_id = client.post("/upload", files={"pdf": PDF}).json()["jobId"]
        snap = _wait_for(client, job_id)
        assert snap["status"] == "error"
        assert snap["pid"] is None
        assert list((tmp_path / "uploads").iterdir()) == []


def test_failed_worker_start_leaves_no_running_job(make_worker, make_settings, monkeypatch, tmp_path):
    app = create_app(make_settings(make_worker("")))
    started = []

    def broken_start(job, input_path, output_path):
        started.append(job)
        raise RuntimeError("event loop refused the task")

    monkeypatch.setattr(app.state.supervisor, "start", broken_start)
    with TestClient(app) as client:
        r = client.post("/upload", files={"pdf": PDF})
        assert r.status_code == 500
        assert r.json() == {"error": "Upload failed"}

        (job,) = started
        assert app.state.registry.get_job(job.id).state.value == "error"
        assert client.get(f"/status/{job.id}").json()["status"] == "error"
        events, _ = parse_sse(client.get(f"/stream/{job.id}").text)
        assert events == [("status", {"status": "error"})]
        assert list((tmp_path / "uploads").iterdir()) == []
