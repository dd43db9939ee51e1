import json

import httpx
import pytest

from opera_gateway.core.exceptions import NotFoundError, UpstreamError
from opera_gateway.engines.enhancement.schemas import JobStatus
from opera_gateway.integrations.replicate_client import InferenceClient

BASE_URL = "https://replicate.test/v1"


def make_client(handler, timeout=None) -> InferenceClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return InferenceClient(
        http_client,
        base_url=BASE_URL,
        api_token="r8_secret",
        model_version="df9a3c1d",
        timeout=timeout,
    )


@pytest.mark.asyncio
async def test_submit_sends_version_input_and_bearer_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"id": "abc", "status": "starting", "input": seen["body"]["input"]})

    client = make_client(handler)
    job = await client.submit({"image": "data:image/png;base64,AAAA", "scale": 2})

    assert seen["method"] == "POST"
    assert seen["url"] == f"{BASE_URL}/predictions"
    assert seen["auth"] == "Bearer r8_secret"
    assert seen["body"] == {"version": "df9a3c1d", "input": {"image": "data:image/png;base64,AAAA", "scale": 2}}
    assert job.id == "abc"
    assert job.status == JobStatus.PENDING
    assert job.upstream_status == "starting"


@pytest.mark.asyncio
async def test_submit_failure_carries_upstream_status_and_body():
    def handler(request):
        return httpx.Response(402, text="Monthly spend limit reached")

    client = make_client(handler)
    with pytest.raises(UpstreamError) as exc_info:
        await client.submit({"image": "x"})

    error = exc_info.value
    assert error.upstream_status == 402
    assert error.status_code == 402
    assert error.body == "Monthly spend limit reached"
    assert error.service == "inference"


@pytest.mark.asyncio
async def test_fetch_status_unknown_job_is_not_found():
    client = make_client(lambda request: httpx.Response(404, json={"detail": "Not found."}))
    with pytest.raises(NotFoundError):
        await client.fetch_status("missing")


@pytest.mark.asyncio
async def test_fetch_status_server_error_is_upstream_error():
    client = make_client(lambda request: httpx.Response(503, text="overloaded"))
    with pytest.raises(UpstreamError) as exc_info:
        await client.fetch_status("abc")
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_fetch_status_maps_fields():
    payload = {
        "id": "abc",
        "status": "succeeded",
        "output": ["https://cdn.test/a.png", "https://cdn.test/b.png"],
        "error": None,
        "created_at": "2026-10-19T12:00:00Z",
        "started_at": "2026-10-19T12:00:01Z",
        "completed_at": "2026-10-19T12:00:09Z",
    }
    client = make_client(lambda request: httpx.Response(200, json=payload))

    job = await client.fetch_status("abc")

    assert job.status == JobStatus.SUCCEEDED
    assert job.artifact_url == "https://cdn.test/a.png"
    assert job.completed_at == "2026-10-19T12:00:09Z"


@pytest.mark.asyncio
async def test_timeout_is_applied_and_reported():
    seen = {}

    def handler(request: httpx.Request):
        seen["timeout"] = request.extensions.get("timeout")
        raise httpx.ReadTimeout("read timed out", request=request)

    client = make_client(handler, timeout=httpx.Timeout(12.0, connect=3.0))
    with pytest.raises(UpstreamError) as exc_info:
        await client.fetch_status("abc")

    assert seen["timeout"]["read"] == 12.0
    assert seen["timeout"]["connect"] == 3.0
    assert exc_info.value.status_code == 500
    assert "timed out" in exc_info.value.message


@pytest.mark.asyncio
async def test_malformed_response_is_upstream_error():
    client = make_client(lambda request: httpx.Response(200, text="<html>gateway</html>"))
    with pytest.raises(UpstreamError):
        await client.fetch_status("abc")


@pytest.mark.asyncio
async def test_non_object_response_is_upstream_error():
    client = make_client(lambda request: httpx.Response(200, json=[1, 2]))
    with pytest.raises(UpstreamError) as exc_info:
        await client.fetch_status("abc")
    assert exc_info.value.status_code == 500
