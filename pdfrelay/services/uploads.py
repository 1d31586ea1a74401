# pdfrelay/services/uploads.py
from __future__ import annotations
from fastapi import HTTPException, UploadFile
from pathlib import Path, PurePath
import time, uuid

PDF_ONLY_MESSAGE = "Only PDF files are allowed"
CHUNK_SIZE = 1024 * 1024  # 1MB


def is_pdf(upload: UploadFile) -> bool:
    name = (upload.filename or "").lower()
    return "pdf" in (upload.content_type or "").lower() or name.endswith(".pdf")


def stored_name_for(original: str) -> str:
    ext = Path(PurePath(original or "").name).suffix or ".pdf"
    return f"{int(time.time() * 1000)}-{uuid.uuid4()}{ext}"


def output_path_for(stored: Path, outputs_dir: Path) -> Path:
    return outputs_dir / f"{stored.stem}-translated.pdf"


async def save_upload(upload: UploadFile, uploads_dir: Path, max_bytes: int) -> Path:
    if not is_pdf(upload):
        raise HTTPException(status_code=400, detail=PDF_ONLY_MESSAGE)

    dest = (uploads_dir / stored_name_for(upload.filename or "")).resolve()
    if dest.parent != uploads_dir.resolve():
        raise HTTPException(status_code=400, detail="Invalid upload destination")

    written = 0
    try:
        with dest.open("xb") as buf:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise HTTPException(
                        status_code=413,
                        detail=f"File too large (> {max_bytes // (1024 * 1024)} MB)",
                    )
                buf.write(chunk)
    except BaseException:
        dest.unlink(missing_ok=True)
        raise
    finally:
        await upload.close()
    return dest
