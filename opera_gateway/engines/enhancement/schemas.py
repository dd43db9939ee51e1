"""
Enhancement Schemas

Pydantic models for the enhancement workflow:
- Job: read-only mirror of the inference service's job state
- EnhanceInput / EnhancementSettings: caller parameters before and after defaults
- ArchivedResult / EnhancementResult: workflow outputs
"""

from enum import Enum
from typing import Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, AliasChoices, field_validator


class JobStatus(str, Enum):
    """Normalized job states. SUCCEEDED and FAILED are terminal."""
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    JobStatus.PENDING: 0,
    JobStatus.PROCESSING: 1,
    JobStatus.SUCCEEDED: 2,
    JobStatus.FAILED: 2,
}

# Upstream vocabulary -> normalized status
UPSTREAM_STATUS_MAP = {
    "starting": JobStatus.PENDING,
    "pending": JobStatus.PENDING,
    "queued": JobStatus.PENDING,
    "processing": JobStatus.PROCESSING,
    "succeeded": JobStatus.SUCCEEDED,
    "failed": JobStatus.FAILED,
    "canceled": JobStatus.FAILED,
    "cancelled": JobStatus.FAILED,
    "aborted": JobStatus.FAILED,
}


def normalize_status(raw: Optional[str]) -> JobStatus:
    if not raw:
        return JobStatus.PENDING
    return UPSTREAM_STATUS_MAP.get(str(raw).lower(), JobStatus.PENDING)


class Job(BaseModel):
    """A unit of work on the inference service, as last reported by it."""

    id: str
    status: JobStatus = JobStatus.PENDING
    upstream_status: Optional[str] = None
    model: Optional[str] = None
    version: Optional[str] = None
    input: Dict[str, Any] = Field(default_factory=dict)
    logs: Optional[str] = None
    output: Any = None
    error: Optional[str] = None
    urls: Optional[Dict[str, Any]] = None
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @classmethod
    def from_upstream(cls, payload: Dict[str, Any]) -> "Job":
        if not isinstance(payload, dict):
            raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
        error = payload.get("error")
        if error is not None and not isinstance(error, str):
            error = str(error)
        return cls(
            id=str(payload["id"]),
            status=normalize_status(payload.get("status")),
            upstream_status=payload.get("status"),
            model=payload.get("model"),
            version=payload.get("version"),
            input=payload.get("input") or {},
            logs=payload.get("logs"),
            output=payload.get("output"),
            error=error,
            urls=payload.get("urls"),
            created_at=payload.get("created_at"),
            started_at=payload.get("started_at"),
            completed_at=payload.get("completed_at"),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def artifact_url(self) -> Optional[str]:
        """First output reference; models may return a single URL or a list."""
        output = self.output
        if isinstance(output, list):
            output = output[0] if output else None
        return output if isinstance(output, str) and output else None

    def to_descriptor(self) -> Dict[str, Any]:
        """Job descriptor returned to API callers."""
        return self.model_dump(mode="json", exclude={"upstream_status"})


class EnhanceInput(BaseModel):
    """Caller-supplied enhancement parameters. Absent values are filled from settings."""

    model_config = ConfigDict(extra="ignore")

    image: str = Field(..., min_length=1)
    scale: Optional[int] = Field(default=None, ge=1, le=10)
    sharpen: Optional[int] = Field(default=None, ge=0, le=100)
    denoise: Optional[int] = Field(default=None, ge=0, le=100)
    face_recovery: Optional[bool] = Field(
        default=None,
        validation_alias=AliasChoices("faceRecovery", "face_recovery"),
    )

    @field_validator("scale", mode="before")
    @classmethod
    def parse_scale(cls, v):
        # Accepts 2, "2" and "2x"
        if isinstance(v, str):
            v = v.strip().lower().removesuffix("x").strip()
        return cls._blank_to_none(v)

    @field_validator("sharpen", "denoise", "face_recovery", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
        return cls._blank_to_none(v)

    @field_validator("scale", "sharpen", "denoise", mode="before")
    @classmethod
    def reject_booleans(cls, v):
        if isinstance(v, bool):
            raise ValueError("must be a number, not a boolean")
        return v

    @staticmethod
    def _blank_to_none(v):
        return None if v == "" else v

    def resolve(self, scale: int, sharpen: int, denoise: int) -> "EnhancementSettings":
        return EnhancementSettings(
            scale=self.scale if self.scale is not None else scale,
            sharpen=self.sharpen if self.sharpen is not None else sharpen,
            denoise=self.denoise if self.denoise is not None else denoise,
            face_recovery=bool(self.face_recovery),
        )


class EnhanceRequest(BaseModel):
    """JSON body of the enhancement endpoints."""
    input: EnhanceInput


class EnhancementSettings(BaseModel):
    """Fully resolved parameters sent to the inference service."""

    scale: int
    sharpen: int
    denoise: int
    face_recovery: bool = False

    def to_upstream_input(self, image: str) -> Dict[str, Any]:
        return {
            "image": image,
            "scale": self.scale,
            "sharpen": self.sharpen,
            "denoise": self.denoise,
            "face_recovery": self.face_recovery,
        }

    def snapshot(self) -> Dict[str, Any]:
        return {
            "scale": self.scale,
            "sharpen": self.sharpen,
            "denoise": self.denoise,
            "faceRecovery": self.face_recovery,
        }


class ArchivedResult(BaseModel):
    """Durable reference to a finished job's artifact."""

    model_config = ConfigDict(frozen=True)

    source_job: str
    storage_key: Optional[str] = None
    public_url: str
    archived: bool = True


class EnhancementResult(BaseModel):
    """Outcome of a complete submit -> poll -> archive -> record run."""

    job: Job
    archived: ArchivedResult
    attempts: int
    processing_time_seconds: float
    credits_used: int
    original_size_bytes: int
    settings: EnhancementSettings
    history_recorded: bool = True

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "data": {
                "jobId": self.job.id,
                "status": self.job.status.value,
                "creditsUsed": self.credits_used,
                "resultUrl": self.archived.public_url,
                "thumbnailUrl": self.archived.public_url,
                "archived": self.archived.archived,
                "attempts": self.attempts,
                "processingTimeSeconds": round(self.processing_time_seconds, 2),
                "metadata": {
                    "originalSize": f"{self.original_size_bytes / (1024 * 1024):.2f}MB",
                    "settings": self.settings.snapshot(),
                },
            },
        }
