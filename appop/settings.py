from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Storage
    db_path: str = os.getenv("APPOP_DB_PATH", "appop.db")
    store: str = os.getenv("APPOP_STORE", "sqlite")  # sqlite|memory

    # Annotation/label prefix for everything appop writes.
    annotation_domain: str = os.getenv("APPOP_ANNOTATION_DOMAIN", "app.appop.io")

    # Controller
    start_controller: bool = _env_bool("APPOP_START_CONTROLLER", True)
    resync_interval_s: float = _env_float("APPOP_RESYNC_INTERVAL_S", 30.0)
    workers: int = _env_int("APPOP_WORKERS", 2)
    backoff_base_s: float = _env_float("APPOP_BACKOFF_BASE_S", 0.5)
    backoff_max_s: float = _env_float("APPOP_BACKOFF_MAX_S", 60.0)

    # Dependent resources
    redis_image: str = os.getenv("APPOP_REDIS_IMAGE", "public.ecr.aws/docker/library/redis:latest")

    @property
    def hash_annotation(self) -> str:
        return f"{self.annotation_domain}/hash"


settings = Settings()
