from __future__ import annotations

import importlib
import logging
from threading import Lock

from replypilot.core.logs import log_event
from replypilot.sms.contract import CAPABILITIES, SmsProvider
from replypilot.sms.errors import ProviderContractError, ProviderNotRegisteredError

logger = logging.getLogger("replypilot.sms")


def check_provider_shape(provider_id: str, provider: object) -> None:
    if provider is None:
        raise ProviderContractError(f'Provider implementation for "{provider_id}" is required')
    for capability in CAPABILITIES:
        if not callable(getattr(provider, capability, None)):
            raise ProviderContractError(
                f'SMS provider "{provider_id}" must implement {capability}()'
            )


class ProviderRegistry:
    """Provider id -> implementation. Providers stay registered for the process lifetime."""

    def __init__(self) -> None:
        self._providers: dict[str, SmsProvider] = {}
        self._lock = Lock()

    def register(self, provider_id: str, provider: SmsProvider) -> None:
        provider_id = (provider_id or "").strip()
        if not provider_id:
            raise ProviderContractError("Provider id is required")
        check_provider_shape(provider_id, provider)

        with self._lock:
            if provider_id in self._providers:
                raise ProviderContractError(f'SMS provider "{provider_id}" is already registered')
            self._providers[provider_id] = provider

        log_event(logger, "sms.provider.registered", provider=provider_id)

    def register_from_path(self, provider_id: str, target: str) -> None:
        """Register an adapter named as ``"package.module:attr"``.

        ``attr`` may be a provider instance or a zero-argument factory/class.
        """
        module_name, sep, attr = target.partition(":")
        if not sep or not module_name or not attr:
            raise ProviderContractError(
                f'Provider path for "{provider_id}" must look like "module:attr", got "{target}"'
            )
        try:
            module = importlib.import_module(module_name)
            obj = getattr(module, attr)
        except (ImportError, AttributeError) as e:
            raise ProviderContractError(
                f'Cannot load SMS provider "{provider_id}" from "{target}": {e}'
            ) from e

        if isinstance(obj, type) or not callable(getattr(obj, "send", None)):
            obj = obj() if callable(obj) else obj
        self.register(provider_id, obj)

    def get(self, provider_id: str) -> SmsProvider | None:
        return self._providers.get(provider_id)

    def require(self, provider_id: str) -> SmsProvider:
        provider = self._providers.get(provider_id)
        if provider is None:
            raise ProviderNotRegisteredError(provider_id)
        return provider

    def ids(self) -> list[str]:
        return sorted(self._providers)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers


def parse_extra_providers(raw: str) -> list[tuple[str, str]]:
    entries: list[tuple[str, str]] = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        provider_id, sep, target = chunk.partition("=")
        if not sep:
            raise ProviderContractError(f'SMS_EXTRA_PROVIDERS entry "{chunk}" must be "id=module:attr"')
        entries.append((provider_id.strip(), target.strip()))
    return entries
