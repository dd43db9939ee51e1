import pytest
from pydantic import ValidationError

from opera_gateway.engines.enhancement.schemas import (
    EnhanceInput,
    EnhancementResult,
    ArchivedResult,
    EnhancementSettings,
    Job,
    JobStatus,
    normalize_status,
)

IMAGE = "data:image/png;base64,AAAA"


@pytest.mark.parametrize("raw, expected", [(2, 2), ("4", 4), ("2x", 2), (" 8X ", 8)])
def test_scale_accepts_multiplier_notation(raw, expected):
    assert EnhanceInput(image=IMAGE, scale=raw).scale == expected


@pytest.mark.parametrize(
    "field, value",
    [
        ("scale", 0),
        ("scale", 11),
        ("scale", "big"),
        ("sharpen", 101),
        ("sharpen", "very"),
        ("denoise", -1),
        ("denoise", True),
        ("sharpen", 12.5),
    ],
)
def test_malformed_or_out_of_range_settings_are_rejected(field, value):
    with pytest.raises(ValidationError):
        EnhanceInput(image=IMAGE, **{field: value})


def test_image_is_required():
    with pytest.raises(ValidationError):
        EnhanceInput(scale=2)
    with pytest.raises(ValidationError):
        EnhanceInput(image="")


def test_face_recovery_accepts_both_spellings():
    assert EnhanceInput.model_validate({"image": IMAGE, "faceRecovery": "true"}).face_recovery is True
    assert EnhanceInput.model_validate({"image": IMAGE, "face_recovery": False}).face_recovery is False


def test_resolve_fills_absent_values_only():
    settings = EnhanceInput(image=IMAGE, sharpen="", denoise=0).resolve(scale=2, sharpen=37, denoise=25)
    assert settings == EnhancementSettings(scale=2, sharpen=37, denoise=0, face_recovery=False)
    assert settings.to_upstream_input(IMAGE) == {
        "image": IMAGE,
        "scale": 2,
        "sharpen": 37,
        "denoise": 0,
        "face_recovery": False,
    }
    assert settings.snapshot()["faceRecovery"] is False


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("starting", JobStatus.PENDING),
        ("queued", JobStatus.PENDING),
        ("processing", JobStatus.PROCESSING),
        ("succeeded", JobStatus.SUCCEEDED),
        ("failed", JobStatus.FAILED),
        ("canceled", JobStatus.FAILED),
        ("SUCCEEDED", JobStatus.SUCCEEDED),
        (None, JobStatus.PENDING),
        ("something-new", JobStatus.PENDING),
    ],
)
def test_status_normalization(raw, expected):
    assert normalize_status(raw) == expected


def test_terminal_states():
    assert JobStatus.SUCCEEDED.is_terminal
    assert JobStatus.FAILED.is_terminal
    assert not JobStatus.PROCESSING.is_terminal
    assert JobStatus.PROCESSING.rank > JobStatus.PENDING.rank


def test_job_artifact_url_handles_lists_and_strings():
    assert Job.from_upstream({"id": "a", "output": ["https://x/1.png", "https://x/2.png"]}).artifact_url == "https://x/1.png"
    assert Job.from_upstream({"id": "a", "output": "https://x/1.png"}).artifact_url == "https://x/1.png"
    assert Job.from_upstream({"id": "a", "output": []}).artifact_url is None
    assert Job.from_upstream({"id": "a"}).artifact_url is None


def test_job_descriptor_hides_upstream_vocabulary():
    job = Job.from_upstream({"id": "a", "status": "starting", "error": {"detail": "x"}})
    descriptor = job.to_descriptor()
    assert descriptor["status"] == "pending"
    assert "upstream_status" not in descriptor
    assert descriptor["error"] == "{'detail': 'x'}"


def test_result_response_shape():
    settings = EnhancementSettings(scale=4, sharpen=50, denoise=25, face_recovery=True)
    result = EnhancementResult(
        job=Job(id="job-1", status=JobStatus.SUCCEEDED, output="https://x/1.png"),
        archived=ArchivedResult(source_job="job-1", storage_key="k.png", public_url="https://store/k.png"),
        attempts=3,
        processing_time_seconds=12.3456,
        credits_used=1,
        original_size_bytes=2 * 1024 * 1024,
        settings=settings,
    )

    data = result.to_response()["data"]
    assert data["resultUrl"] == data["thumbnailUrl"] == "https://store/k.png"
    assert data["processingTimeSeconds"] == 12.35
    assert data["metadata"]["originalSize"] == "2.00MB"
    assert data["metadata"]["settings"] == {"scale": 4, "sharpen": 50, "denoise": 25, "faceRecovery": True}


def test_job_from_non_object_payload_is_rejected():
    with pytest.raises(ValueError):
        Job.from_upstream([1, 2])
