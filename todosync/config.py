from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    host: str = "127.0.0.1"
    port: int = 9000
    session_file: Path = Path("session.json")
    log_level: str = "INFO"
    firebase_api_key: str = ""
    firebase_project_id: str = ""
    users_collection: str = "users"
    tasks_collection: str = "tasks"
    request_timeout: float = 15.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
