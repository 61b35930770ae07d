from __future__ import annotations

import pytest

from generation_service.enums import AspectRatio, OutputFormat, Provider, Resolution
from generation_service.exceptions import UnknownProviderError
from generation_service.providers import ADAPTERS, get_adapter
from generation_service.schemas import GenerationRequest


def _request(provider: Provider) -> GenerationRequest:
    return GenerationRequest(
        prompt="A dragon over mountains",
        provider=provider,
        aspect_ratio=AspectRatio.LANDSCAPE_16_9,
        resolution=Resolution.TWO_K,
        output_format=OutputFormat.JPG,
    )


def test_every_provider_has_an_adapter() -> None:
    assert set(ADAPTERS) == set(Provider)
    for provider in Provider:
        assert get_adapter(provider).provider is provider
        assert get_adapter(provider.value).provider is provider


def test_unknown_provider_is_rejected() -> None:
    with pytest.raises(UnknownProviderError):
        get_adapter("dall-e-9")


def test_nano_banana_body_uses_image_size() -> None:
    adapter = get_adapter(Provider.NANO_BANANA)
    body = adapter.build_body(_request(Provider.NANO_BANANA), None)

    assert adapter.submit_path == "/jobs/createTask"
    assert body == {
        "model": "google/nano-banana",
        "input": {
            "prompt": "A dragon over mountains",
            "image_size": "16:9",
            "output_format": "jpg",
        },
    }


def test_nano_banana_pro_body_carries_resolution() -> None:
    body = get_adapter(Provider.NANO_BANANA_PRO).build_body(
        _request(Provider.NANO_BANANA_PRO), "https://hooks.example/kie"
    )

    assert body["model"] == "nano-banana-pro"
    assert body["input"] == {
        "prompt": "A dragon over mountains",
        "aspect_ratio": "16:9",
        "resolution": "2K",
        "output_format": "jpg",
    }
    assert body["callBackUrl"] == "https://hooks.example/kie"


def test_grok_body_only_sends_aspect_ratio() -> None:
    body = get_adapter(Provider.GROK_IMAGINE).build_body(
        _request(Provider.GROK_IMAGINE), None
    )

    assert body["model"] == "grok-imagine/text-to-image"
    assert body["input"] == {
        "prompt": "A dragon over mountains",
        "aspect_ratio": "16:9",
    }
    assert "callBackUrl" not in body


def test_gpt4o_body_is_flat_and_ignores_callback() -> None:
    adapter = get_adapter(Provider.OPENAI_4O)
    body = adapter.build_body(_request(Provider.OPENAI_4O), "https://hooks.example")

    assert adapter.submit_path == "/gpt4o-image/generate"
    assert adapter.status_path == "/gpt4o-image/record-info"
    assert body == {"prompt": "A dragon over mountains", "size": "16:9"}


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ({"code": 200, "data": {"taskId": "abc"}}, "abc"),
        ({"code": 200, "data": {"taskId": 42}}, "42"),
        ({"code": 200, "data": {"taskId": "  "}}, None),
        ({"code": 200, "data": {}}, None),
        ({"code": 200, "data": None}, None),
        ([], None),
    ],
)
def test_read_task_id(payload: object, expected: str | None) -> None:
    assert get_adapter(Provider.NANO_BANANA).read_task_id(payload) == expected


def test_read_failure_checks_fields_in_order() -> None:
    adapter = get_adapter(Provider.OPENAI_4O)

    assert adapter.read_failure({"error": "quota", "errorMessage": "x"}) == "quota"
    assert adapter.read_failure({"errorMessage": " blocked "}) == "blocked"
    assert adapter.read_failure({"error": ""}) is None


def test_provider_catalogue_has_pricing() -> None:
    for adapter in ADAPTERS.values():
        assert adapter.info.name
        assert adapter.info.pricing.startswith("~$")
