"""
Request body parsing for the enhancement endpoints.

JSON bodies follow ``{"input": {"image": <data URI>, ...}}``; multipart bodies
carry an ``image`` file part plus optional form fields. Multipart decoding is
Starlette's (python-multipart); nothing here splits boundaries by hand.
"""

import base64
import json
from dataclasses import dataclass
from typing import Any, Dict

import pydantic
from fastapi import Request
from starlette.datastructures import UploadFile

from opera_gateway.core.config import Settings
from opera_gateway.core.exceptions import ValidationError
from opera_gateway.engines.enhancement.schemas import EnhanceInput, EnhancementSettings

FORM_FIELDS = ("scale", "sharpen", "denoise", "faceRecovery", "face_recovery")


@dataclass
class ParsedEnhanceRequest:
    image: str
    settings: EnhancementSettings
    image_name: str
    original_size_bytes: int


def estimate_data_uri_size(image: str) -> int:
    """Approximate decoded size of a base64 data URI (or length of a plain reference)."""
    if image.startswith("data:") and "," in image:
        payload = image.split(",", 1)[1]
        return int(len(payload) * 3 / 4)
    return len(image)


def _check_size(size_bytes: int, settings: Settings):
    if size_bytes > settings.MAX_IMAGE_SIZE_BYTES:
        max_mb = settings.MAX_IMAGE_SIZE_BYTES / (1024 * 1024)
        actual_mb = size_bytes / (1024 * 1024)
        raise ValidationError(
            f"Image size ({actual_mb:.2f}MB) exceeds maximum allowed size ({max_mb:.0f}MB)",
            error="image_too_large",
        )


def _validate_input(raw: Dict[str, Any]) -> EnhanceInput:
    if not raw.get("image"):
        raise ValidationError("Request must include input.image", error="missing_image")
    try:
        return EnhanceInput.model_validate(raw)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(f"Invalid {field}: {first.get('msg')}", error="invalid_setting")


def _resolve(enhance_input: EnhanceInput, settings: Settings) -> EnhancementSettings:
    return enhance_input.resolve(
        scale=settings.DEFAULT_SCALE,
        sharpen=settings.DEFAULT_SHARPEN,
        denoise=settings.DEFAULT_DENOISE,
    )


async def parse_json_body(request: Request, settings: Settings) -> ParsedEnhanceRequest:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Request body must be valid JSON", error="invalid_json")

    raw = body.get("input") if isinstance(body, dict) else None
    if not isinstance(raw, dict):
        raise ValidationError("Request must include input.image", error="missing_image")

    enhance_input = _validate_input(raw)
    size = estimate_data_uri_size(enhance_input.image)
    _check_size(size, settings)

    return ParsedEnhanceRequest(
        image=enhance_input.image,
        settings=_resolve(enhance_input, settings),
        image_name="api_upload",
        original_size_bytes=size,
    )


async def parse_multipart_body(request: Request, settings: Settings) -> ParsedEnhanceRequest:
    form = await request.form(max_files=1)
    upload = form.get("image")

    if isinstance(upload, UploadFile):
        data = await upload.read()
        if not data:
            raise ValidationError("Please provide an image file", error="missing_image")
        _check_size(len(data), settings)
        mime = upload.content_type if (upload.content_type or "").startswith("image/") else "image/jpeg"
        image = f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"
        image_name = upload.filename or "api_upload"
        size = len(data)
    elif isinstance(upload, str) and upload:
        image = upload
        image_name = "api_upload"
        size = estimate_data_uri_size(image)
        _check_size(size, settings)
    else:
        raise ValidationError("Please provide an image file", error="missing_image")

    raw: Dict[str, Any] = {"image": image}
    for field in FORM_FIELDS:
        value = form.get(field)
        if isinstance(value, str):
            raw[field] = value

    enhance_input = _validate_input(raw)
    return ParsedEnhanceRequest(
        image=image,
        settings=_resolve(enhance_input, settings),
        image_name=image_name,
        original_size_bytes=size,
    )


async def parse_enhance_body(
    request: Request,
    settings: Settings,
    allow_multipart: bool = True,
) -> ParsedEnhanceRequest:
    """Dispatch on Content-Type; anything unsupported is a 400."""
    content_type = request.headers.get("content-type", "").lower()

    if content_type.startswith("application/json"):
        return await parse_json_body(request, settings)

    if allow_multipart and content_type.startswith("multipart/form-data"):
        return await parse_multipart_body(request, settings)

    expected = "application/json or multipart/form-data" if allow_multipart else "application/json"
    raise ValidationError(
        f"Unsupported content type '{content_type or 'none'}'; expected {expected}",
        error="unsupported_content_type",
    )
