# pdfrelay/routers/health.py
from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
def health():
    return {"ok": True}


@router.get("/health/env")
def env_preview(request: Request):
    s = request.app.state.settings
    return {
        "status": "ok",
        # server
        "PORT": s.PORT,
        "UPLOADS_DIR": str(s.UPLOADS_DIR.resolve()),
        "OUTPUTS_DIR": str(s.OUTPUTS_DIR.resolve()),
        "PUBLIC_DIR": str(s.PUBLIC_DIR.resolve()) if s.PUBLIC_DIR else None,
        "MAX_UPLOAD_MB": s.MAX_UPLOAD_MB,
        "ALLOWED_ORIGINS": s.ALLOWED_ORIGINS,
        # worker
        "WORKER": {
            "python_bin": s.PYTHON_BIN,
            "script": s.PYTHON_SCRIPT,
            "sibling_suffix": s.SIBLING_SUFFIX,
        },
        "HEARTBEAT_INTERVAL_MS": s.HEARTBEAT_INTERVAL_MS,
        "jobs": len(request.app.state.registry),
    }
