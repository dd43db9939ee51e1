"""
Enhancement Services

Implements the submit -> poll -> archive -> record workflow:
- JobPoller: waits for an upstream job to reach a terminal state
- ResultArchiver: copies the finished artifact into our own storage
- HistoryRecorder: best-effort audit trail
- EnhancementService: orchestrates the above for one request
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import httpx

from opera_gateway.core.exceptions import (
    HistoryWriteError,
    JobCancelledError,
    JobFailedError,
    JobTimeoutError,
    StorageError,
)
from opera_gateway.core.logging import LogContext, get_logger, set_stage
from opera_gateway.core.metrics import (
    history_write_failures_total,
    record_job_outcome,
    record_poll_completion,
    record_upstream_call,
    storage_fallbacks_total,
)
from opera_gateway.core.storage import IStorage
from opera_gateway.engines.enhancement.models import HistoryEntry
from opera_gateway.engines.enhancement.repositories import HistoryRepository
from opera_gateway.engines.enhancement.schemas import (
    ArchivedResult,
    EnhancementResult,
    EnhancementSettings,
    Job,
    JobStatus,
)
from opera_gateway.integrations.replicate_client import InferenceClient
from opera_gateway.integrations.supabase_auth import AuthenticatedUser

logger = get_logger(__name__)

CancelCheck = Callable[[], Awaitable[bool]]


@dataclass
class PollResult:
    job: Job
    attempts: int


class JobPoller:
    """Fixed-interval (optionally backed-off) polling of an upstream job.

    With the default backoff factor of 1.0 the worst-case wait is
    ``poll_interval * max_attempts``. The poller only reads upstream state.
    """

    def __init__(
        self,
        client: InferenceClient,
        poll_interval: float = 5.0,
        max_attempts: int = 60,
        backoff_factor: float = 1.0,
        max_interval: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.backoff_factor = backoff_factor
        self.max_interval = max_interval
        self._sleep = sleep

    def interval_for(self, attempt: int, poll_interval: Optional[float] = None) -> float:
        base = self.poll_interval if poll_interval is None else poll_interval
        if self.backoff_factor <= 1.0:
            return base
        return min(base * (self.backoff_factor ** (attempt - 1)), self.max_interval)

    async def wait_for_completion(
        self,
        job_id: str,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        is_cancelled: Optional[CancelCheck] = None,
    ) -> Job:
        """Return the succeeded job, or raise JobFailedError / JobTimeoutError."""
        result = await self.poll(job_id, poll_interval, max_attempts, is_cancelled)
        return result.job

    async def poll(
        self,
        job_id: str,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        is_cancelled: Optional[CancelCheck] = None,
    ) -> PollResult:
        max_attempts = self.max_attempts if max_attempts is None else max_attempts
        last_status: Optional[JobStatus] = None

        for attempt in range(1, max_attempts + 1):
            await self._sleep(self.interval_for(attempt, poll_interval))

            if is_cancelled is not None and await is_cancelled():
                logger.warning("poll_cancelled", job_id=job_id, attempt=attempt)
                record_poll_completion("cancelled", attempt - 1)
                raise JobCancelledError("Client disconnected while waiting for job", job_id=job_id)

            job = await self.client.fetch_status(job_id)
            logger.info(
                "poll_attempt",
                job_id=job_id,
                attempt=attempt,
                status=job.status.value,
                has_output=job.output is not None,
            )

            if last_status is not None and job.status.rank < last_status.rank:
                logger.warning(
                    "job_status_regressed",
                    job_id=job_id,
                    previous=last_status.value,
                    current=job.status.value,
                )
            last_status = job.status

            if job.status == JobStatus.SUCCEEDED:
                record_poll_completion("succeeded", attempt)
                return PollResult(job=job, attempts=attempt)

            if job.status == JobStatus.FAILED:
                record_poll_completion("failed", attempt)
                raise JobFailedError(
                    f"Enhancement failed: {job.error or 'Unknown error'}",
                    job_id=job_id,
                    details={"upstream_status": job.upstream_status},
                )

        record_poll_completion("timeout", max_attempts)
        logger.error(
            "poll_timed_out",
            job_id=job_id,
            attempts=max_attempts,
            final_status=last_status.value if last_status else None,
        )
        raise JobTimeoutError(
            f"Enhancement timed out after {max_attempts} status checks",
            job_id=job_id,
            details={"attempts": max_attempts},
        )


def _default_clock() -> datetime:
    return datetime.now(timezone.utc)


class ResultArchiver:
    """Downloads a finished artifact and stores it under a per-owner key.

    Any download or storage failure degrades to the upstream URL; the job
    itself has already succeeded.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        storage: IStorage,
        timeout: Optional[httpx.Timeout] = None,
        clock: Callable[[], datetime] = _default_clock,
    ):
        self.http_client = http_client
        self.storage = storage
        self.timeout = timeout or httpx.Timeout(60.0, connect=10.0)
        self._clock = clock

    def storage_key_for(self, owner_id: str) -> str:
        timestamp = self._clock().strftime("%Y-%m-%dT%H-%M-%S-%f")[:-3] + "Z"
        return f"enhanced_{owner_id}_{timestamp}.png"

    async def persist(self, artifact_url: str, owner_id: str, source_job: str = "") -> ArchivedResult:
        storage_key = self.storage_key_for(owner_id)
        try:
            data, content_type = await self._download(artifact_url)
            await self.storage.upload(data, storage_key, content_type=content_type)
        except (httpx.HTTPError, httpx.InvalidURL, StorageError) as e:
            storage_fallbacks_total.inc()
            logger.warning(
                "storage_upload_failed",
                job_id=source_job,
                storage_key=storage_key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ArchivedResult(
                source_job=source_job,
                storage_key=None,
                public_url=artifact_url,
                archived=False,
            )

        public_url = self.storage.get_public_url(storage_key)
        logger.info("storage_upload_succeeded", job_id=source_job, storage_key=storage_key)
        return ArchivedResult(
            source_job=source_job,
            storage_key=storage_key,
            public_url=public_url,
        )

    async def _download(self, artifact_url: str) -> tuple[bytes, str]:
        try:
            response = await self.http_client.get(artifact_url, timeout=self.timeout, follow_redirects=True)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL):
            record_upstream_call("artifact", "download", "error")
            raise
        record_upstream_call("artifact", "download", "success")

        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        if not content_type.startswith("image/"):
            content_type = "image/png"
        return response.content, content_type


class HistoryRecorder:
    """Best-effort writer of processing history. Never raises."""

    def __init__(self, repository: HistoryRepository):
        self.repository = repository

    async def append(self, entry: HistoryEntry) -> bool:
        try:
            await self.repository.add(entry)
        except HistoryWriteError as e:
            history_write_failures_total.inc()
            logger.error("history_write_failed", job_id=entry.job_id, error=e.message)
            return False
        except Exception:
            history_write_failures_total.inc()
            logger.exception("history_write_failed", job_id=entry.job_id)
            return False
        logger.info("history_recorded", job_id=entry.job_id, user_id=entry.user_id)
        return True


class EnhancementService:
    """Runs enhancement jobs on behalf of an authenticated user."""

    def __init__(
        self,
        inference: InferenceClient,
        poller: JobPoller,
        archiver: ResultArchiver,
        recorder: HistoryRecorder,
        credits_per_job: int = 1,
    ):
        self.inference = inference
        self.poller = poller
        self.archiver = archiver
        self.recorder = recorder
        self.credits_per_job = credits_per_job

    async def submit(self, image: str, settings: EnhancementSettings) -> Job:
        return await self.inference.submit(settings.to_upstream_input(image))

    async def get_status(self, job_id: str) -> Job:
        return await self.inference.fetch_status(job_id)

    async def run(
        self,
        user: AuthenticatedUser,
        image: str,
        settings: EnhancementSettings,
        image_name: str = "api_upload",
        original_size_bytes: int = 0,
        is_cancelled: Optional[CancelCheck] = None,
    ) -> EnhancementResult:
        """Submit, wait, archive and record one enhancement."""
        started = time.monotonic()
        job = await self.submit(image, settings)

        with LogContext(job_id=job.id, stage="polling"):
            try:
                if job.status == JobStatus.FAILED:
                    raise JobFailedError(
                        f"Enhancement failed: {job.error or 'Unknown error'}",
                        job_id=job.id,
                    )
                if job.status == JobStatus.SUCCEEDED:
                    attempts = 0
                else:
                    polled = await self.poller.poll(job.id, is_cancelled=is_cancelled)
                    job, attempts = polled.job, polled.attempts
            except JobCancelledError:
                record_job_outcome("cancelled")
                raise
            except JobTimeoutError:
                record_job_outcome("timeout")
                raise
            except JobFailedError:
                record_job_outcome("failed")
                raise

            artifact_url = job.artifact_url
            if artifact_url is None:
                record_job_outcome("failed")
                raise JobFailedError("Enhancement succeeded without an output image", job_id=job.id)

            set_stage("archiving")
            archived = await self.archiver.persist(artifact_url, user.user_id, source_job=job.id)

            set_stage("recording")
            recorded = await self.recorder.append(
                HistoryEntry(
                    user_id=user.user_id,
                    job_id=job.id,
                    image_name=image_name,
                    processing_type="general_enhancement",
                    enhancement_settings=settings.snapshot(),
                    credits_consumed=self.credits_per_job,
                    status="completed",
                    result_url=archived.public_url,
                )
            )

            elapsed = time.monotonic() - started
            record_job_outcome("completed")
            logger.info(
                "enhancement_completed",
                attempts=attempts,
                result_url=archived.public_url,
                archived=archived.archived,
                duration_seconds=round(elapsed, 2),
            )

        return EnhancementResult(
            job=job,
            archived=archived,
            attempts=attempts,
            processing_time_seconds=elapsed,
            credits_used=self.credits_per_job,
            original_size_bytes=original_size_bytes,
            settings=settings,
            history_recorded=recorded,
        )
