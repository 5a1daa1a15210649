"""Provider construction.

Every audit worker calls ``build_provider`` itself so that no SDK client or
credential object is shared between threads.
"""

from typing import Optional

from pydantic_settings import BaseSettings

from retention_audit.config import (
    load_aliyun_config,
    load_azure_config,
    load_tencent_config,
)
from retention_audit.providers.base import StorageProvider
from retention_audit.utils.rate_limiter import RateLimiter

SUPPORTED_PROVIDERS = ("azure", "tencent", "aliyun")

CONFIG_LOADERS = {
    "azure": load_azure_config,
    "tencent": load_tencent_config,
    "aliyun": load_aliyun_config,
}


def load_provider_config(provider_name: str) -> BaseSettings:
    """Load and validate a provider's configuration without connecting.

    Raises:
        ValueError: If the provider name is unknown.
        ValidationError: If required credentials are missing.
    """
    if provider_name not in CONFIG_LOADERS:
        raise ValueError(
            f"Unknown provider '{provider_name}', expected one of: {', '.join(SUPPORTED_PROVIDERS)}"
        )
    return CONFIG_LOADERS[provider_name]()


def build_provider(
    provider_name: str,
    account_id: str,
    rate_limiter: Optional[RateLimiter] = None,
) -> StorageProvider:
    """Create a fresh provider instance.

    Args:
        provider_name: One of SUPPORTED_PROVIDERS.
        account_id: Storage account identifier (the Azure account name).
        rate_limiter: Limiter shared across all instances of a run.

    Returns:
        Newly constructed provider.

    Raises:
        ValueError: If the provider name is unknown.
        ValidationError: If required credentials are missing.
    """
    config = load_provider_config(provider_name)

    if provider_name == "azure":
        from retention_audit.providers.azure import AzureProvider

        return AzureProvider(config, account_id, rate_limiter)
    elif provider_name == "tencent":
        from retention_audit.providers.tencent import TencentProvider

        return TencentProvider(config, rate_limiter)
    from retention_audit.providers.aliyun import AliyunProvider

    return AliyunProvider(config, rate_limiter)
