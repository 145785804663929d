from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env at the project root: app/core/config.py -> app/core -> app -> root
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"

# An OpenAI key only counts when it looks like one (no stray whitespace etc.)
OPENAI_KEY_PREFIX = "sk-"


class Settings(BaseSettings):
    openai_api_key: str = ""
    # Several keys, comma separated. Empty means OPENAI_API_KEY is used. The next key is tried when one is rejected or rate limited.
    openai_api_keys: str = ""
    openai_model: str = "gpt-4o-mini"
    secret_key: str = "change-me-in-production"
    database_url: str = "sqlite:///./medrecord.db"
    # CORS: comma separated origin list; in production https://your-domain.com
    cors_origins: str = "*"
    # Max requests per minute per IP
    rate_limit_per_minute: int = 60
    rate_limit_register_per_minute: int = 3
    upload_max_mb: int = 10
    # Object store: blobs live under this directory, served from storage_public_url
    storage_dir: str = str(_ROOT / "data" / "uploads")
    storage_public_url: str = "/files"
    # When set, uploads are analyzed through POST {url}/api/analyze-document instead of calling OpenAI in-process
    analysis_service_url: str = ""
    # Upper bound (seconds) for each AI / object store call made by the upload pipeline
    external_call_timeout: float = 30.0
    # PDFs are sent to the model as a placeholder unless this is on
    pdf_text_extraction: bool = False
    environment: str = "development"
    log_level: str = "INFO"

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator("openai_api_key", mode="before")
    @classmethod
    def strip_openai_key(cls, v: str | None) -> str:
        """Guards against keys pasted with whitespace."""
        return (v or "").strip()

    @field_validator("openai_api_keys", mode="before")
    @classmethod
    def strip_openai_keys(cls, v: str | None) -> str:
        return (v or "").strip()

    @property
    def upload_max_bytes(self) -> int:
        return self.upload_max_mb * 1024 * 1024


settings = Settings()


def get_openai_keys() -> list[str]:
    """
    Usable OpenAI keys (starting with sk-, no whitespace).
    OPENAI_API_KEYS wins when present; otherwise OPENAI_API_KEY as a single item.
    """
    keys_raw = (settings.openai_api_keys or "").strip()
    if keys_raw:
        keys = [k.strip() for k in keys_raw.split(",") if k.strip() and k.strip().startswith(OPENAI_KEY_PREFIX)]
        if keys:
            return keys
    single = (settings.openai_api_key or "").strip()
    if single and single.startswith(OPENAI_KEY_PREFIX):
        return [single]
    return []


def is_openai_configured() -> bool:
    return len(get_openai_keys()) > 0
