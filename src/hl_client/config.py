from functools import lru_cache
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ENDPOINT = "https://headless.ly"


class ClientConfig(BaseSettings):
    """Client settings. Every field can come from an ``HL_``-prefixed env var.

    ``api_key`` is read from the client's config on every request, so assigning
    ``client.config.api_key`` rotates it; ``endpoint`` is captured once at init.

    A ``ClientConfig`` passed to the client without overrides is used as is,
    so rotating the key on that same object also works. A dict, or a
    ``ClientConfig`` combined with ``init()`` keyword overrides, is copied:
    later changes to the caller's object are not seen by the client.
    """

    api_key: Optional[str] = None
    endpoint: str = DEFAULT_ENDPOINT

    batch_size: int = Field(10, gt=0)
    flush_interval: int = Field(5000, gt=0)  # ms
    max_queue_size: Optional[int] = Field(None, gt=0)
    sample_rate: float = Field(1.0, ge=0.0, le=1.0)
    timeout: float = Field(30.0, gt=0)  # seconds, per request
    max_retries: int = Field(3, ge=0)
    retry_base_delay: int = Field(1000, ge=0)  # ms
    flags_ttl: Optional[int] = Field(None, gt=0)  # ms
    realtime_interval: int = Field(5000, gt=0)  # ms

    persistence: Literal["file", "memory"] = "file"
    storage_path: str = "~/.headlessly/storage.json"

    release: Optional[str] = None
    environment: Optional[str] = None
    tags: Dict[str, str] = Field(default_factory=dict)
    url: Optional[str] = None
    user_agent: Optional[str] = None

    forwarders: List[Dict[str, Any]] = Field(default_factory=list)

    model_config = SettingsConfigDict(
        env_prefix="HL_",
        env_file=".env",
        extra="ignore",
        validate_assignment=True,
    )


@lru_cache()
def get_config() -> ClientConfig:
    return ClientConfig()
