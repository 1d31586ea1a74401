# pdfrelay/config.py
from functools import lru_cache
from pathlib import Path
from typing import Optional
import os
from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]

# Load in ascending precedence; later overrides earlier
load_dotenv(ROOT / ".env")
load_dotenv(ROOT / ".env.local", override=True)


def _env_path(name: str, default: Path) -> Path:
    val = (os.getenv(name) or "").strip()
    return Path(val) if val else default


class Settings:
    def __init__(self) -> None:
        # Server
        self.PORT: int = int(os.getenv("PORT", "3000"))
        self.DATA_DIR: Path = _env_path("DATA_DIR", ROOT / "data")
        self.UPLOADS_DIR: Path = _env_path("UPLOADS_DIR", self.DATA_DIR / "uploads")
        self.OUTPUTS_DIR: Path = _env_path("OUTPUTS_DIR", self.DATA_DIR / "outputs")
        self.PUBLIC_DIR: Optional[Path] = (
            Path(os.environ["PUBLIC_DIR"]) if os.getenv("PUBLIC_DIR") else None
        )
        self.MAX_UPLOAD_MB: int = int(os.getenv("MAX_UPLOAD_MB", "100"))

        # CORS
        self.ALLOWED_ORIGINS: list[str] = [
            s.strip() for s in os.getenv("ALLOWED_ORIGINS", "*").split(",") if s.strip()
        ]

        # Worker
        self.PYTHON_BIN: str = os.getenv("PYTHON_BIN", "python3")
        self.PYTHON_SCRIPT: str = os.getenv("PYTHON_SCRIPT", str(ROOT / "index.py"))
        self.SIBLING_SUFFIX: str = os.getenv("SIBLING_SUFFIX", ".csv")

        # Streaming
        self.HEARTBEAT_INTERVAL_MS: int = int(os.getenv("HEARTBEAT_INTERVAL_MS", "2000"))

    @property
    def heartbeat_interval(self) -> float:
        return self.HEARTBEAT_INTERVAL_MS / 1000.0

    @property
    def max_upload_bytes(self) -> int:
        return self.MAX_UPLOAD_MB * 1024 * 1024

    def ensure_dirs(self) -> None:
        for d in (self.UPLOADS_DIR, self.OUTPUTS_DIR):
            d.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    return Settings()
