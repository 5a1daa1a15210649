"""Unit tests for the Azure provider with a mocked SDK."""

import base64
import json
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
from azure.core.credentials import AccessToken
from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
)

from retention_audit.config import AzureConfig
from retention_audit.providers import azure as azure_module
from retention_audit.providers.azure import AzureProvider
from retention_audit.providers.base import (
    AuthenticationError,
    ContainerNotFoundError,
    CredentialRenewalError,
    RateLimitError,
)
from retention_audit.utils.rate_limiter import RateLimiter


def make_token(claims: dict, lifetime: int = 3600) -> AccessToken:
    payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode().rstrip("=")
    return AccessToken(f"header.{payload}.signature", int(time.time()) + lifetime)


@pytest.fixture
def credential() -> Mock:
    credential = Mock()
    credential.get_token.return_value = make_token({"tid": "tenant-1", "oid": "principal-1"})
    return credential


@pytest.fixture
def provider(monkeypatch, credential: Mock) -> AzureProvider:
    monkeypatch.setattr(azure_module, "BlobServiceClient", Mock())
    config = AzureConfig.model_construct(subscription_id="sub-1", tenant_id="tenant-cfg")
    return AzureProvider(config, "acct01", RateLimiter(rate=1000.0), credential=credential)


def named(name: str, **attrs) -> Mock:
    item = Mock(**attrs)
    item.name = name
    return item


def test_account_url_from_template(provider: AzureProvider) -> None:
    """Test that the account name is placed in the endpoint."""
    assert provider.account_url == "https://acct01.blob.core.windows.net"


def test_authenticate_resolves_tenant_from_token(provider: AzureProvider) -> None:
    """Test that the identity uses token claims and configured subscription."""
    identity = provider.authenticate()

    assert identity.tenant_id == "tenant-1"
    assert identity.subscription_id == "sub-1"
    assert identity.principal_id == "principal-1"


def test_authenticate_opaque_token_uses_config(provider: AzureProvider, credential: Mock) -> None:
    """Test the fallback when the token carries no readable claims."""
    credential.get_token.return_value = AccessToken("opaque", int(time.time()) + 60)

    assert provider.authenticate().tenant_id == "tenant-cfg"


def test_authenticate_failure(provider: AzureProvider, credential: Mock) -> None:
    """Test that a rejected credential maps to AuthenticationError."""
    credential.get_token.side_effect = ClientAuthenticationError(message="bad secret")

    with pytest.raises(AuthenticationError):
        provider.authenticate()


def test_credential_validity(provider: AzureProvider, credential: Mock) -> None:
    """Test remaining token lifetime."""
    credential.get_token.return_value = make_token({"tid": "tenant-1"}, lifetime=600)
    provider.authenticate()

    remaining = provider.get_credential_validity()

    assert timedelta(minutes=9) < remaining <= timedelta(minutes=10)


def test_renew_credential_fetches_new_token(provider: AzureProvider, credential: Mock) -> None:
    """Test that renewal requests a new token."""
    provider.authenticate()

    identity = provider.renew_credential()

    assert credential.get_token.call_count == 2
    assert identity.tenant_id == "tenant-1"


def test_renew_credential_failure(provider: AzureProvider, credential: Mock) -> None:
    """Test that a failed renewal maps to CredentialRenewalError."""
    credential.get_token.side_effect = ClientAuthenticationError(message="revoked")

    with pytest.raises(CredentialRenewalError):
        provider.renew_credential()


def test_list_containers_pages(provider: AzureProvider) -> None:
    """Test that every page of containers is yielded."""
    provider.service.list_containers.return_value.by_page.return_value = [
        [named("a"), named("b")],
        [named("c")],
    ]

    names = [c.name for c in provider.list_containers()]

    assert names == ["a", "b", "c"]


def test_list_objects_maps_blobs(provider: AzureProvider) -> None:
    """Test conversion of blob properties to object records."""
    naive = datetime(2024, 1, 1, 8, 0)
    blobs = [
        named("logs/a.log", size=100, last_modified=naive, blob_tier="Hot"),
        named("logs/b.log", size=None, last_modified=naive.replace(tzinfo=timezone.utc), blob_tier=None),
    ]
    client = provider.service.get_container_client.return_value
    client.list_blobs.return_value.by_page.return_value = [blobs]

    records = list(provider.list_objects("logs"))

    assert [r.key for r in records] == ["logs/a.log", "logs/b.log"]
    assert records[0].size == 100
    assert records[1].size == 0
    assert records[0].last_modified.tzinfo is timezone.utc
    assert records[0].storage_class == "Hot"
    assert all(r.container == "logs" and r.provider == "azure" for r in records)


def test_list_objects_missing_container(provider: AzureProvider) -> None:
    """Test that a missing container maps to ContainerNotFoundError."""
    client = provider.service.get_container_client.return_value
    client.list_blobs.return_value.by_page.side_effect = ResourceNotFoundError(message="gone")

    with pytest.raises(ContainerNotFoundError):
        list(provider.list_objects("gone"))


def test_list_objects_throttled(provider: AzureProvider) -> None:
    """Test that HTTP 429 maps to RateLimitError."""
    error = HttpResponseError(message="too many requests")
    error.status_code = 429
    client = provider.service.get_container_client.return_value
    client.list_blobs.return_value.by_page.side_effect = error

    with pytest.raises(RateLimitError):
        list(provider.list_objects("busy"))
