import uvicorn

from pdfrelay.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    print(f"Server listening on http://localhost:{settings.PORT}")
    uvicorn.run("pdfrelay.main:app", host="0.0.0.0", port=settings.PORT)
