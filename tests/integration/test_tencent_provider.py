"""Integration tests for Tencent COS provider.

These tests require real Tencent COS credentials.
Set up credentials in .env file before running.

Run with: pytest tests/integration/test_tencent_provider.py --provider=tencent -v -s
"""

from datetime import datetime, timedelta

import pytest
from pydantic import SecretStr, ValidationError

from retention_audit.config import TencentConfig, load_tencent_config
from retention_audit.providers.base import AuthenticationError, ContainerNotFoundError
from retention_audit.providers.tencent import TencentProvider
from retention_audit.utils.rate_limiter import RateLimiter

pytestmark = pytest.mark.skipif(
    "config.getoption('--provider') != 'tencent'",
    reason="Requires --provider=tencent and real credentials",
)


@pytest.fixture(scope="module")
def tencent_provider():
    """Create Tencent provider with real credentials."""
    try:
        config = load_tencent_config()
    except ValidationError as e:
        pytest.skip(f"Tencent credentials not configured: {e}")
    return TencentProvider(config, RateLimiter(rate=10.0))


def test_authenticate_success(tencent_provider):
    """Test that valid credentials resolve to an identity."""
    identity = tencent_provider.authenticate()

    assert identity.tenant_id == "tencent"
    assert tencent_provider.get_credential_validity() > timedelta(days=1)
    assert tencent_provider.renew_credential().same_scope(identity)


def test_authenticate_with_invalid_credentials():
    """Test that invalid credentials raise AuthenticationError."""
    config = TencentConfig(
        TENCENT_SECRET_ID=SecretStr("invalid_id"),
        TENCENT_SECRET_KEY=SecretStr("invalid_key"),
    )
    provider = TencentProvider(config, RateLimiter(rate=10.0))

    with pytest.raises(AuthenticationError):
        provider.authenticate()


def test_list_containers(tencent_provider):
    """Test listing buckets with valid credentials."""
    containers = list(tencent_provider.list_containers())

    assert isinstance(containers, list)
    if containers:
        assert containers[0].provider == "tencent"
        assert containers[0].region
        print(f"\n✓ Found {len(containers)} bucket(s)")


def test_list_objects_nonexistent_container(tencent_provider):
    """Test listing objects of a non-existent bucket."""
    with pytest.raises(ContainerNotFoundError):
        list(tencent_provider.list_objects("nonexistent-bucket-xyz-1250000000"))


@pytest.mark.skipif(
    "not config.getoption('--test-container')",
    reason="Requires --test-container option with a real bucket name",
)
def test_list_objects_success(tencent_provider, request):
    """Test listing objects of a real bucket, across pages."""
    container = request.config.getoption("--test-container")
    list(tencent_provider.list_containers())

    objects = list(tencent_provider.list_objects(container))

    assert len({o.key for o in objects}) == len(objects)
    for obj in objects[:10]:
        assert obj.container == container
        assert obj.provider == "tencent"
        assert isinstance(obj.last_modified, datetime)
    print(f"\n✓ {len(objects)} object(s) in {container}")
