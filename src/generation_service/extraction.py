from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from .enums import Provider


def _string_urls(values: Any) -> list[str]:
    if not isinstance(values, list):
        return []
    return [value for value in values if isinstance(value, str) and value]


def extract_jobs_api_urls(data: Mapping[str, Any]) -> list[str]:
    """Read ``resultUrls`` from the JSON document embedded in ``resultJson``."""

    raw = data.get("resultJson")
    if isinstance(raw, Mapping):
        parsed: Any = raw
    elif isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except ValueError:
            return []
    else:
        return []
    if not isinstance(parsed, Mapping):
        return []
    return _string_urls(parsed.get("resultUrls"))


def extract_gpt4o_urls(data: Mapping[str, Any]) -> list[str]:
    """Prefer ``response.resultUrls``; fall back to ``result.images[].url``."""

    response = data.get("response")
    if isinstance(response, Mapping):
        urls = _string_urls(response.get("resultUrls"))
        if urls:
            return urls

    result = data.get("result")
    if not isinstance(result, Mapping):
        return []
    images = result.get("images")
    if not isinstance(images, list):
        return []
    return _string_urls(
        [image.get("url") for image in images if isinstance(image, Mapping)]
    )


def extract_result_urls(provider: Provider, data: Mapping[str, Any]) -> list[str]:
    """Locate result URLs in a provider's status payload, or return ``[]``."""

    if provider is Provider.OPENAI_4O:
        return extract_gpt4o_urls(data)
    return extract_jobs_api_urls(data)
