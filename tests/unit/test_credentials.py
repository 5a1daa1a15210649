"""Unit tests for credential renewal."""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from retention_audit.credentials import CredentialGuard
from retention_audit.models import Identity
from retention_audit.providers.base import CloudStorageError, CredentialRenewalError
from retention_audit.utils.retry import RetryPolicy

POLICY = RetryPolicy(max_attempts=2, delay=0)


def make_provider(validities, renewed_identity: Identity) -> Mock:
    provider = Mock()
    provider.get_credential_validity.side_effect = list(validities)
    provider.renew_credential.return_value = renewed_identity
    return provider


def test_fresh_credential_not_renewed(identity: Identity, no_sleep) -> None:
    """Test that a credential above the threshold is left alone."""
    provider = make_provider([timedelta(hours=1)], identity)
    guard = CredentialGuard(provider, identity, retry_policy=POLICY, sleep=no_sleep)

    guard.ensure_fresh()

    provider.renew_credential.assert_not_called()


def test_expiring_credential_renewed(identity: Identity, no_sleep) -> None:
    """Test renewal when validity is at the threshold."""
    provider = make_provider([timedelta(minutes=5), timedelta(hours=1)], identity)
    guard = CredentialGuard(provider, identity, retry_policy=POLICY, sleep=no_sleep)

    guard.ensure_fresh()

    provider.renew_credential.assert_called_once()


def test_renewal_to_other_scope_rejected(identity: Identity, no_sleep) -> None:
    """Test that a renewed credential for another subscription is an error."""
    other = Identity(identity.tenant_id, "other-subscription")
    provider = make_provider([timedelta(minutes=1), timedelta(hours=1)], other)
    guard = CredentialGuard(provider, identity, retry_policy=POLICY, sleep=no_sleep)

    with pytest.raises(CredentialRenewalError, match="different scope"):
        guard.ensure_fresh()


def test_renewal_without_extension_rejected(identity: Identity, no_sleep) -> None:
    """Test that renewal must push validity past the threshold."""
    provider = make_provider([timedelta(minutes=1), timedelta(minutes=2)], identity)
    guard = CredentialGuard(provider, identity, retry_policy=POLICY, sleep=no_sleep)

    with pytest.raises(CredentialRenewalError, match="still expiring"):
        guard.ensure_fresh()


def test_renewal_failure_after_retries(identity: Identity, no_sleep) -> None:
    """Test that a renewal failing on every attempt becomes a renewal error."""
    provider = make_provider([timedelta(0)], identity)
    provider.renew_credential.side_effect = CloudStorageError("token endpoint down")
    guard = CredentialGuard(provider, identity, retry_policy=POLICY, sleep=no_sleep)

    with pytest.raises(CredentialRenewalError, match="renewal failed"):
        guard.ensure_fresh()

    assert provider.renew_credential.call_count == 2


def test_validity_check_failure(identity: Identity, no_sleep) -> None:
    """Test that an unreadable validity becomes a renewal error."""
    provider = Mock()
    provider.get_credential_validity.side_effect = CloudStorageError("no token")
    guard = CredentialGuard(provider, identity, retry_policy=POLICY, sleep=no_sleep)

    with pytest.raises(CredentialRenewalError, match="validity"):
        guard.ensure_fresh()


def test_renewal_without_expected_identity(identity: Identity, no_sleep) -> None:
    """Test that scope is not compared when no identity is expected."""
    other = Identity("another-tenant", "another-sub")
    provider = make_provider([timedelta(0), timedelta(hours=1)], other)
    guard = CredentialGuard(provider, retry_policy=POLICY, sleep=no_sleep)

    guard.ensure_fresh()

    provider.renew_credential.assert_called_once()
