# Health schemas.
# Created: 2026-10-18

from __future__ import annotations

from pydantic import BaseModel


class HealthSummary(BaseModel):
    """Liveness and storage status."""

    status: str = "unknown"
    version: str = ""
    storage_backend: str = ""
    error: str | None = None
