from __future__ import annotations

from typing import Any

from ..enums import Provider
from ..extraction import extract_gpt4o_urls
from ..schemas import GenerationRequest
from .base import ProviderAdapter, ProviderInfo


def build_gpt4o_body(
    request: GenerationRequest, callback_url: str | None
) -> dict[str, Any]:
    # Flat body; the aspect ratio travels as the single combined "size" value.
    return {"prompt": request.prompt, "size": request.aspect_ratio.value}


OPENAI_4O = ProviderAdapter(
    provider=Provider.OPENAI_4O,
    submit_path="/gpt4o-image/generate",
    build_body=build_gpt4o_body,
    status_path="/gpt4o-image/record-info",
    status_field="status",
    failure_fields=("error", "errorMessage"),
    extract_results=extract_gpt4o_urls,
    info=ProviderInfo(
        name="OpenAI 4o",
        description="GPT-Image-1 with precise text rendering",
        pricing="~$0.03 per image",
    ),
)
