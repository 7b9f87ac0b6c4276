"""Process settings read from the environment (and an optional .env file)."""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent.parent
load_dotenv(ROOT / ".env")

DEFAULT_DATA_DIR = ROOT / "data"
DEFAULT_NARRATOR_URL = "https://router.huggingface.co/v1/chat/completions"
DEFAULT_NARRATOR_MODEL = "mistralai/Mistral-7B-Instruct-v0.2"


@dataclass
class Settings:
    narrator_api_key: str = ""
    narrator_backend: str = "http"
    narrator_url: str = DEFAULT_NARRATOR_URL
    narrator_model: str = DEFAULT_NARRATOR_MODEL
    redis_url: str = ""
    data_dir: Path = DEFAULT_DATA_DIR
    host: str = "0.0.0.0"
    port: int = 3000
    autosave_interval: float = 60.0

    @property
    def narrator_enabled(self) -> bool:
        return bool(self.narrator_api_key)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            narrator_api_key=os.getenv("NARRATOR_API_KEY") or os.getenv("HF_TOKEN", ""),
            narrator_backend=os.getenv("NARRATOR_BACKEND", "http").strip().lower(),
            narrator_url=os.getenv("NARRATOR_URL", DEFAULT_NARRATOR_URL),
            narrator_model=os.getenv("NARRATOR_MODEL", DEFAULT_NARRATOR_MODEL),
            redis_url=os.getenv("REDIS_URL", ""),
            data_dir=Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR))),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
            autosave_interval=float(os.getenv("AUTOSAVE_INTERVAL", "60")),
        )
