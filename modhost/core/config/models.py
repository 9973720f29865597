from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class HostConfig(BaseModel):
    """
    config/modhost.json schema.
    """

    model_config = ConfigDict(extra="forbid")

    schema_version: int = Field(default=1, ge=1, le=10)
    modules_dir: str = Field(default="modules", min_length=1)
    storage_dir: str = Field(default="storage/modhost", min_length=1)
    manifest_filename: str = Field(default="manifest.json", min_length=1)
    log_dir: str = "logs"

    # Writer lock (registry publish)
    lock_timeout_seconds: float = Field(default=10.0, gt=0, le=600)
    lock_poll_interval_seconds: float = Field(default=0.05, gt=0, le=5)
    lock_stale_seconds: float = Field(default=300.0, gt=0)

    # Removal: move module folder under storage/removed/ instead of deleting it.
    archive_removed_modules: bool = True

    # Usage tags assigned to modules whose manifest declares none.
    default_contexts: List[str] = Field(default_factory=lambda: ["web", "api"])

    max_backups: int = Field(default=10, ge=0, le=1000)

    @field_validator("default_contexts", mode="before")
    @classmethod
    def _norm_contexts(cls, v):  # noqa: ANN001
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        if isinstance(v, list):
            return sorted({str(x).strip().lower() for x in v if str(x or "").strip()})
        return v

    @field_validator("manifest_filename")
    @classmethod
    def _plain_filename(cls, v: str) -> str:
        v = str(v or "").strip()
        if "/" in v or "\\" in v:
            raise ValueError("manifest_filename must be a bare file name")
        return v


def default_host_config_dict() -> dict:
    return HostConfig().model_dump()
