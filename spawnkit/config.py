"""Global configuration — loaded from environment variables."""

from pydantic_settings import BaseSettings


class SpawnkitSettings(BaseSettings):
    read_chunk_size: int = 65536
    write_chunk_size: int = 65536
    stderr_encoding: str = "utf-8"
    stderr_errors: str = "replace"
    default_path: str = "/usr/bin:/bin"  # used when the environment has no PATH
    log_level: str = "WARNING"

    model_config = {"env_prefix": "SPAWNKIT_"}


settings = SpawnkitSettings()
