from __future__ import annotations


class ProviderConfigurationError(RuntimeError):
    pass


class ProviderNotRegisteredError(ProviderConfigurationError):
    def __init__(self, provider_id: str) -> None:
        super().__init__(f'SMS provider "{provider_id}" is not registered')
        self.provider_id = provider_id


class ProviderContractError(ProviderConfigurationError):
    pass
