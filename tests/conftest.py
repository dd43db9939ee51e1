import json
import re
from typing import AsyncGenerator, Dict, List, Optional, Tuple

import httpx
import pytest
from httpx import AsyncClient, ASGITransport

from opera_gateway.core.config import Settings
from opera_gateway.main import create_app

VALID_TOKEN = "valid-token"
USER_ID = "user-123"
AUTH_HEADERS = {"Authorization": f"Bearer {VALID_TOKEN}"}

SUPABASE_URL = "https://auth.test"
REPLICATE_URL = "https://replicate.test/v1"
ARTIFACT_HOST = "https://cdn.test"

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
SAMPLE_IMAGE = "data:image/jpeg;base64,/9j/4AAQSkZJRgABAQAAAQABAAD/2wBDAAgGBgcGBQgHBwcJCQgKDBQNDAsLDBkSEw8UHR8eHQ=="


class FakeUpstream:
    """Stands in for the identity provider, inference API, artifact CDN and object storage."""

    def __init__(self):
        self.calls: List[Tuple[str, str]] = []
        self.jobs: Dict[str, dict] = {}
        self.scripts: Dict[str, List[str]] = {}
        self.default_script: List[str] = ["processing", "succeeded"]
        self.submissions: List[dict] = []
        self.uploads: Dict[str, bytes] = {}
        self.submit_error: Optional[Tuple[int, str]] = None
        self.storage_status = 200
        self.artifact_status = 200
        self.job_error = "CUDA out of memory"

    # -- helpers ------------------------------------------------------------

    def count(self, method: str, path_prefix: str) -> int:
        return sum(1 for m, p in self.calls if m == method and p.startswith(path_prefix))

    @property
    def inference_calls(self) -> int:
        return sum(1 for _, p in self.calls if p.startswith("/v1/predictions"))

    def _job_payload(self, job_id: str, status: str) -> dict:
        job = dict(self.jobs[job_id])
        job["status"] = status
        if status == "succeeded":
            job["output"] = f"{ARTIFACT_HOST}/out/{job_id}.png"
            job["completed_at"] = "2026-10-19T12:00:10Z"
        if status == "failed":
            job["error"] = self.job_error
        if status != "starting":
            job["started_at"] = "2026-10-19T12:00:01Z"
        return job

    # -- transport ----------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = request.url
        self.calls.append((request.method, url.path))
        origin = f"{url.scheme}://{url.host}"

        if origin == SUPABASE_URL and url.path == "/auth/v1/user":
            if request.headers.get("Authorization") == f"Bearer {VALID_TOKEN}":
                return httpx.Response(200, json={"id": USER_ID, "email": "artist@example.com"})
            return httpx.Response(401, json={"msg": "invalid JWT"})

        if origin == SUPABASE_URL and url.path.startswith("/storage/v1/object/"):
            if self.storage_status != 200:
                return httpx.Response(self.storage_status, json={"error": "bucket unavailable"})
            key = url.path.rsplit("/", 1)[-1]
            self.uploads[key] = request.content
            return httpx.Response(200, json={"Key": key})

        if origin == "https://replicate.test" and url.path == "/v1/predictions" and request.method == "POST":
            if self.submit_error:
                status, body = self.submit_error
                return httpx.Response(status, text=body)
            body = json.loads(request.content)
            self.submissions.append(body)
            job_id = f"job-{len(self.jobs) + 1}"
            self.jobs[job_id] = {
                "id": job_id,
                "model": "opera/upscaler",
                "version": body["version"],
                "input": body["input"],
                "logs": "",
                "output": None,
                "error": None,
                "created_at": "2026-10-19T12:00:00Z",
                "urls": {"get": f"{REPLICATE_URL}/predictions/{job_id}"},
            }
            self.scripts[job_id] = list(self.default_script)
            return httpx.Response(201, json=self._job_payload(job_id, "starting"))

        match = re.fullmatch(r"/v1/predictions/([\w-]+)", url.path)
        if origin == "https://replicate.test" and match:
            job_id = match.group(1)
            if job_id not in self.jobs:
                return httpx.Response(404, json={"detail": "Not found."})
            script = self.scripts[job_id]
            status = script.pop(0) if len(script) > 1 else script[0]
            return httpx.Response(200, json=self._job_payload(job_id, status))

        if origin == ARTIFACT_HOST:
            if self.artifact_status != 200:
                return httpx.Response(self.artifact_status)
            return httpx.Response(200, content=PNG_BYTES, headers={"content-type": "image/png"})

        return httpx.Response(599, text=f"unrouted {request.method} {url}")


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        SUPABASE_URL=SUPABASE_URL,
        SUPABASE_ANON_KEY="anon-key",
        SUPABASE_SERVICE_ROLE_KEY="service-key",
        REPLICATE_API_URL=REPLICATE_URL,
        REPLICATE_API_TOKEN="r8_test",
        REPLICATE_MODEL_VERSION="df9a3c1d",
        POLL_INTERVAL_SECONDS=0,
        POLL_MAX_ATTEMPTS=5,
        STORAGE_BACKEND="supabase",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'gateway.db'}",
        LOG_LEVEL="WARNING",
        LOG_FORMAT_JSON=False,
    )


@pytest.fixture
async def client(settings, upstream) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(settings, transport=httpx.MockTransport(upstream.handler))
    # Trigger lifespan events (startup/shutdown)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
