"""Runtime settings read from the environment and an optional .env file."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


@dataclass
class Settings:
    api_endpoint: str
    access_token: str
    device_name: str = "local"
    data_dir: Path = Path("data")
    scratch_dir: Optional[Path] = None
    image_workers: int = 5
    retry_max_attempts: int = 3
    retry_backoff: str = "exponential"
    retry_base: float = 2.0
    retry_delay: float = 1.0
    reclaim_after_hours: float = 6.0
    http_timeout: float = 30.0
    rating_lookup: bool = True

    def __post_init__(self):
        if self.scratch_dir is None:
            self.scratch_dir = self.data_dir / "temp"

    @property
    def db_path(self) -> Path:
        return self.data_dir / "jobs.db"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        load_dotenv(env_file)

        data_dir = Path(os.getenv("DATA_DIR", "data"))
        scratch_dir = os.getenv("SCRATCH_DIR")

        return cls(
            api_endpoint=os.getenv("API_ENDPOINT", "").rstrip("/"),
            access_token=os.getenv("ACCESS_TOKEN", ""),
            device_name=os.getenv("DEVICE_NAME", "local"),
            data_dir=data_dir,
            scratch_dir=Path(scratch_dir) if scratch_dir else None,
            image_workers=int(os.getenv("IMAGE_WORKERS", "5")),
            retry_max_attempts=int(os.getenv("RETRY_MAX_ATTEMPTS", "3")),
            retry_backoff=os.getenv("RETRY_BACKOFF", "exponential"),
            retry_base=float(os.getenv("RETRY_BASE", "2")),
            retry_delay=float(os.getenv("RETRY_DELAY", "1")),
            reclaim_after_hours=float(os.getenv("RECLAIM_AFTER_HOURS", "6")),
            http_timeout=float(os.getenv("HTTP_TIMEOUT", "30")),
            rating_lookup=os.getenv("RATING_LOOKUP", "1").strip().lower() not in ("0", "false", "no", "off"),
        )
