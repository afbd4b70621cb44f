from __future__ import annotations

from pydantic import BaseModel, Field

QUANTITY_PATTERN = r"^([0-9]+(\.[0-9]+)?([eE][0-9]+|[numkMGTPE]|[KMGTPE]i)?)?$"


class ApplicationRequest(BaseModel):
    replica_count: int = Field(2, ge=1, le=100, description="PodInfo replicas")
    memory_limit: str = Field("", pattern=QUANTITY_PATTERN, description="Memory limit, e.g. 500M or 64Mi")
    cpu_request: str = Field("", pattern=QUANTITY_PATTERN, description="CPU request, e.g. 250m")
    image_repository: str = Field("ghcr.io/stefanprodan/podinfo", min_length=1, description="PodInfo image repository")
    image_tag: str = Field("latest", min_length=1, description="PodInfo image tag")
    ui_color: str = Field("", pattern=r"^(#[0-9a-fA-F]{6})?$", description="Hex color of the PodInfo UI")
    ui_message: str = Field("", max_length=256, description="Message shown by the PodInfo UI")
    redis_enabled: bool = Field(False, description="Run a Redis cache next to PodInfo")
