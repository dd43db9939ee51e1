"""
Processing History Model

Append-only audit record written once per completed enhancement.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field, Column, JSON


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HistoryEntry(SQLModel, table=True):
    """One row per completed job: who ran it, with which settings, at what cost."""
    __tablename__ = "processing_history"

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        primary_key=True
    )
    user_id: str = Field(index=True)
    job_id: str = Field(index=True)
    image_name: str = Field(default="api_upload")
    processing_type: str = Field(default="general_enhancement")
    enhancement_settings: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    credits_consumed: int = Field(default=1)
    status: str = Field(default="completed")
    result_url: Optional[str] = Field(default=None)
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
