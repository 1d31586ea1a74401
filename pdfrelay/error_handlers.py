import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("pdfrelay.errors")


class UploadFailed(Exception):
    """Upload was stored but the job could not be started."""


def register_error_handlers(app: FastAPI):
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):
        logger.warning(
            "HTTPException path=%s status=%s detail=%r",
            request.url.path, exc.status_code, exc.detail
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail) if exc.detail else "HTTP error"},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):
        logger.warning(
            "ValidationError path=%s errors=%s",
            request.url.path, exc.errors()
        )
        return JSONResponse(
            status_code=422,
            content={"error": "Validation error", "details": jsonable_errors(exc)},
        )

    @app.exception_handler(UploadFailed)
    async def upload_failed_handler(request: Request, exc: UploadFailed):
        logger.error("Upload failed path=%s cause=%r", request.url.path, exc.__cause__)
        return JSONResponse(status_code=500, content={"error": "Upload failed"})

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error at path=%s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error"},
        )

def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may carry exception instances that json can't encode
    return [{k: v for k, v in e.items() if k != "ctx"} for e in exc.errors()]
