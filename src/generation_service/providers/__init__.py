"""Provider adapters keyed by the canonical :class:`Provider` enum.

Adding a provider means writing one adapter and registering it here.
"""

from __future__ import annotations

from collections.abc import Mapping

from ..enums import Provider
from ..exceptions import UnknownProviderError
from .base import ProviderAdapter, ProviderInfo
from .gpt4o import OPENAI_4O
from .jobs_api import GROK_IMAGINE, NANO_BANANA, NANO_BANANA_PRO

ADAPTERS: Mapping[Provider, ProviderAdapter] = {
    adapter.provider: adapter
    for adapter in (NANO_BANANA, NANO_BANANA_PRO, GROK_IMAGINE, OPENAI_4O)
}


def get_adapter(provider: Provider | str) -> ProviderAdapter:
    try:
        return ADAPTERS[Provider(provider)]
    except (KeyError, ValueError) as exc:
        raise UnknownProviderError(f"unsupported provider: {provider}") from exc


__all__ = ["ADAPTERS", "ProviderAdapter", "ProviderInfo", "get_adapter"]
