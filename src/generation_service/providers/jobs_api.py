"""Providers served by the shared ``/jobs`` task API.

They share submission and status endpoints but differ in model identifier and
in the names of the ``input`` fields they accept.
"""

from __future__ import annotations

from typing import Any

from ..enums import Provider
from ..extraction import extract_jobs_api_urls
from ..schemas import GenerationRequest
from .base import BodyBuilder, ProviderAdapter, ProviderInfo

SUBMIT_PATH = "/jobs/createTask"
STATUS_PATH = "/jobs/recordInfo"


def _envelope(
    model: str, fields: dict[str, Any], callback_url: str | None
) -> dict[str, Any]:
    body: dict[str, Any] = {"model": model, "input": fields}
    if callback_url:
        body["callBackUrl"] = callback_url
    return body


def build_nano_banana_body(
    request: GenerationRequest, callback_url: str | None
) -> dict[str, Any]:
    return _envelope(
        "google/nano-banana",
        {
            "prompt": request.prompt,
            "image_size": request.aspect_ratio.value,
            "output_format": request.output_format.value,
        },
        callback_url,
    )


def build_nano_banana_pro_body(
    request: GenerationRequest, callback_url: str | None
) -> dict[str, Any]:
    return _envelope(
        "nano-banana-pro",
        {
            "prompt": request.prompt,
            "aspect_ratio": request.aspect_ratio.value,
            "resolution": request.resolution.value,
            "output_format": request.output_format.value,
        },
        callback_url,
    )


def build_grok_imagine_body(
    request: GenerationRequest, callback_url: str | None
) -> dict[str, Any]:
    return _envelope(
        "grok-imagine/text-to-image",
        {
            "prompt": request.prompt,
            "aspect_ratio": request.aspect_ratio.value,
        },
        callback_url,
    )


def _jobs_adapter(
    provider: Provider, builder: BodyBuilder, info: ProviderInfo
) -> ProviderAdapter:
    return ProviderAdapter(
        provider=provider,
        submit_path=SUBMIT_PATH,
        build_body=builder,
        status_path=STATUS_PATH,
        status_field="state",
        failure_fields=("failMsg",),
        extract_results=extract_jobs_api_urls,
        info=info,
    )


NANO_BANANA = _jobs_adapter(
    Provider.NANO_BANANA,
    build_nano_banana_body,
    ProviderInfo(
        name="Nano Banana",
        description="Google's fast image generation model",
        pricing="~$0.02 per image",
    ),
)

NANO_BANANA_PRO = _jobs_adapter(
    Provider.NANO_BANANA_PRO,
    build_nano_banana_pro_body,
    ProviderInfo(
        name="Nano Banana Pro",
        description="Enhanced version with higher quality",
        pricing="~$0.04 per image",
    ),
)

GROK_IMAGINE = _jobs_adapter(
    Provider.GROK_IMAGINE,
    build_grok_imagine_body,
    ProviderInfo(
        name="Grok Imagine",
        description="xAI's multimodal image generation (6 images per request)",
        pricing="~$0.02 for 6 images",
    ),
)
