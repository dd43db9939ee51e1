"""
Inference Client - Replicate predictions API

submit() creates a remote job, fetch_status() reads it back.
Every call carries the per-call timeout configured on the client.
"""

from typing import Optional, Dict, Any

import httpx

from opera_gateway.core.exceptions import UpstreamError, NotFoundError
from opera_gateway.core.logging import get_logger
from opera_gateway.core.metrics import record_upstream_call
from opera_gateway.engines.enhancement.schemas import Job

logger = get_logger(__name__)

SERVICE = "inference"


class InferenceClient:
    """Thin async client over the predictions endpoints."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        api_token: str,
        model_version: str,
        timeout: Optional[httpx.Timeout] = None,
    ):
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.model_version = model_version
        self.timeout = timeout or httpx.Timeout(30.0, connect=10.0)

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    async def submit(self, input: Dict[str, Any]) -> Job:
        """Create a prediction. Raises UpstreamError on any non-success answer."""
        payload = {"version": self.model_version, "input": input}
        response = await self._request("POST", "/predictions", "submit", json=payload)

        if not response.is_success:
            record_upstream_call(SERVICE, "submit", "error")
            logger.warning(
                "inference_submit_rejected",
                upstream_status=response.status_code,
                body=response.text[:500],
            )
            raise UpstreamError(
                response.text or f"Inference API answered {response.status_code}",
                service=SERVICE,
                upstream_status=response.status_code,
                body=response.text,
            )

        record_upstream_call(SERVICE, "submit", "success")
        job = self._parse_job(response, "submit")
        logger.info("job_submitted", job_id=job.id, status=job.status.value)
        return job

    async def fetch_status(self, job_id: str) -> Job:
        """Read a prediction. Raises NotFoundError for unknown ids, UpstreamError otherwise."""
        response = await self._request("GET", f"/predictions/{job_id}", "fetch_status")

        if response.status_code == 404:
            record_upstream_call(SERVICE, "fetch_status", "error")
            raise NotFoundError(f"Job {job_id} not found", job_id=job_id)

        if not response.is_success:
            record_upstream_call(SERVICE, "fetch_status", "error")
            logger.warning(
                "inference_status_rejected",
                job_id=job_id,
                upstream_status=response.status_code,
                body=response.text[:500],
            )
            raise UpstreamError(
                response.text or f"Inference API answered {response.status_code}",
                service=SERVICE,
                upstream_status=response.status_code,
                body=response.text,
                job_id=job_id,
            )

        record_upstream_call(SERVICE, "fetch_status", "success")
        return self._parse_job(response, "fetch_status")

    async def _request(self, method: str, path: str, operation: str, **kwargs) -> httpx.Response:
        try:
            return await self.http_client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers,
                timeout=self.timeout,
                **kwargs,
            )
        except httpx.TimeoutException:
            record_upstream_call(SERVICE, operation, "timeout")
            logger.error("inference_timeout", operation=operation)
            raise UpstreamError(
                f"Inference API timed out during {operation}",
                service=SERVICE,
            )
        except httpx.HTTPError as e:
            record_upstream_call(SERVICE, operation, "error")
            logger.error("inference_unreachable", operation=operation, error=str(e))
            raise UpstreamError(
                f"Inference API unreachable: {e}",
                service=SERVICE,
            )

    def _parse_job(self, response: httpx.Response, operation: str) -> Job:
        try:
            return Job.from_upstream(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise UpstreamError(
                f"Malformed inference API response during {operation}: {e}",
                service=SERVICE,
                body=response.text,
            )
