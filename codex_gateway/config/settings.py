"""Application settings loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings

from codex_gateway.security.credentials import default_auth_path


class Settings(BaseSettings):
    # Listen address
    bind: str = "127.0.0.1"
    port: int = 8181

    # Upstream Codex API
    codex_upstream_base_url: str = "https://api.openai.com"
    codex_auth_path: str = ""  # Empty = ~/.codex/auth.json
    codex_upstream_bearer: str = ""  # Set to skip auth.json entirely

    # Forwarding
    non_streaming_timeout: float = 120.0  # Seconds; streaming has no deadline
    stream_chunk_size: int = 8 * 1024

    # Logging
    log_level: str = "INFO"
    audit_log_file: str = ""  # Empty = stdout only
    log_retention_days: int = 14
    log_request_bodies: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def auth_path(self) -> str:
        """Resolved auth.json location."""
        return self.codex_auth_path or default_auth_path()


@lru_cache
def get_settings() -> Settings:
    return Settings()
