"""Provider mode helpers.

Rule:
- `llama_stack_provider` is the source of truth ("real" | "fake" | "off")
- `use_fake_providers=True` downgrades "real" to "fake" (but never overrides "off")
"""

from __future__ import annotations

from typing import Literal

from sophia.config.settings import Settings

ProviderMode = Literal["real", "fake", "off"]


def _coerce_mode(value: object, *, default: ProviderMode) -> ProviderMode:
    """Best-effort normalize provider mode; unknown values fall back to `default`."""
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"real", "fake", "off"}:
            return lowered  # type: ignore[return-value]
    return default


def _coerce_bool(value: object, *, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "y", "on"}:
            return True
        if lowered in {"0", "false", "no", "n", "off"}:
            return False
    return default


def effective_llama_stack_provider(settings: Settings) -> ProviderMode:
    mode = _coerce_mode(getattr(settings, "llama_stack_provider", "real"), default="real")
    use_fake = _coerce_bool(getattr(settings, "use_fake_providers", False), default=False)
    if use_fake and mode == "real":
        return "fake"
    return mode


__all__ = ["ProviderMode", "effective_llama_stack_provider"]
