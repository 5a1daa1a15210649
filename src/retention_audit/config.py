"""Configuration management with Pydantic Settings."""

from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class AzureConfig(BaseSettings):
    """Azure Blob Storage configuration.

    When client id and secret are both absent, DefaultAzureCredential is used
    (environment, managed identity, Azure CLI login, ...).
    """

    tenant_id: Optional[str] = Field(default=None, validation_alias="AZURE_TENANT_ID")
    client_id: Optional[str] = Field(default=None, validation_alias="AZURE_CLIENT_ID")
    client_secret: Optional[SecretStr] = Field(
        default=None, validation_alias="AZURE_CLIENT_SECRET"
    )
    subscription_id: str = Field(default="", validation_alias="AZURE_SUBSCRIPTION_ID")
    account_url_template: str = Field(
        default="https://{account}.blob.core.windows.net",
        validation_alias="AZURE_ACCOUNT_URL_TEMPLATE",
    )

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


class TencentConfig(BaseSettings):
    """Tencent COS configuration."""

    secret_id: SecretStr = Field(..., validation_alias="TENCENT_SECRET_ID")
    secret_key: SecretStr = Field(..., validation_alias="TENCENT_SECRET_KEY")
    region: str = Field(default="ap-guangzhou", validation_alias="TENCENT_REGION")
    scheme: str = Field(default="https", validation_alias="TENCENT_SCHEME")
    app_id: str = Field(default="", validation_alias="TENCENT_APP_ID")

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


class AliyunConfig(BaseSettings):
    """Aliyun OSS configuration."""

    access_key_id: SecretStr = Field(..., validation_alias="ALIYUN_ACCESS_KEY_ID")
    access_key_secret: SecretStr = Field(..., validation_alias="ALIYUN_ACCESS_KEY_SECRET")
    endpoint: str = Field(
        default="oss-cn-hangzhou.aliyuncs.com", validation_alias="ALIYUN_ENDPOINT"
    )

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


class AppConfig(BaseSettings):
    """Application configuration."""

    log_file: Optional[str] = Field(default=None, validation_alias="LOG_FILE")
    verbose: bool = Field(default=False, validation_alias="VERBOSE")
    rate_limit: int = Field(default=50, gt=0, validation_alias="RATE_LIMIT")
    # Azure hot tier LRS list price, USD per GB-month
    cost_per_gb_month: float = Field(
        default=0.0184, ge=0, validation_alias="COST_PER_GB_MONTH"
    )
    max_attempts: int = Field(default=3, ge=1, validation_alias="RETRY_MAX_ATTEMPTS")
    retry_delay: float = Field(default=5.0, ge=0, validation_alias="RETRY_DELAY")
    retry_auth_errors: bool = Field(default=True, validation_alias="RETRY_AUTH_ERRORS")
    credential_threshold_minutes: int = Field(
        default=5, ge=0, validation_alias="CREDENTIAL_THRESHOLD_MINUTES"
    )
    lock_timeout: float = Field(default=60.0, gt=0, validation_alias="LOCK_TIMEOUT")
    concurrency_warn_delay: float = Field(
        default=5.0, ge=0, validation_alias="CONCURRENCY_WARN_DELAY"
    )
    top_n: int = Field(default=10, ge=1, validation_alias="TOP_N")

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


def load_azure_config() -> AzureConfig:
    """Load Azure configuration.

    Returns:
        Azure configuration. Every field is optional.
    """
    return AzureConfig()


def load_tencent_config() -> TencentConfig:
    """Load Tencent COS configuration.

    Returns:
        Validated Tencent configuration.

    Raises:
        ValidationError: If required credentials are missing.
    """
    return TencentConfig()


def load_aliyun_config() -> AliyunConfig:
    """Load Aliyun OSS configuration.

    Returns:
        Validated Aliyun configuration.

    Raises:
        ValidationError: If required credentials are missing.
    """
    return AliyunConfig()


def load_app_config() -> AppConfig:
    """Load application configuration.

    Returns:
        Application configuration with defaults.
    """
    return AppConfig()
