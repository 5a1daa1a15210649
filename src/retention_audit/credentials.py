"""Credential freshness checks before remote calls."""

import time
from datetime import timedelta
from typing import Callable, Optional

from retention_audit.models import Identity
from retention_audit.providers.base import (
    CloudStorageError,
    CredentialRenewalError,
    StorageProvider,
)
from retention_audit.utils.logging import get_logger
from retention_audit.utils.retry import RetryPolicy, call_with_policy

logger = get_logger(__name__)


class CredentialGuard:
    """Renews a provider's credential before it gets close to expiry.

    A guard wraps exactly one provider instance. Workers each build their own
    provider and guard, so a renewal in one worker never touches another
    worker's credential.
    """

    def __init__(
        self,
        provider: StorageProvider,
        expected_identity: Optional[Identity] = None,
        threshold: timedelta = timedelta(minutes=5),
        retry_policy: RetryPolicy = RetryPolicy(),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize guard.

        Args:
            provider: Provider whose credential is checked.
            expected_identity: Scope the credential must keep after renewal.
                Renewal results are not scope-checked when None.
            threshold: Renew when remaining validity is at or below this.
            retry_policy: Retry parameters for validity and renewal calls.
            sleep: Sleep function used between retries.
        """
        self.provider = provider
        self.expected_identity = expected_identity
        self.threshold = threshold
        self.retry_policy = retry_policy
        self.sleep = sleep

    def _remaining(self) -> timedelta:
        return call_with_policy(
            self.provider.get_credential_validity,
            self.retry_policy,
            "credential validity check",
            sleep=self.sleep,
        )

    def ensure_fresh(self) -> None:
        """Make sure the credential outlives the threshold.

        Raises:
            CredentialRenewalError: If renewal failed, changed the account
                scope, or did not extend validity past the threshold.
        """
        try:
            remaining = self._remaining()
        except CloudStorageError as e:
            raise CredentialRenewalError(f"Could not determine credential validity: {e}") from e

        if remaining > self.threshold:
            logger.debug("credential_fresh", remaining_seconds=int(remaining.total_seconds()))
            return

        logger.info(
            "credential_renewing",
            remaining_seconds=int(remaining.total_seconds()),
            threshold_seconds=int(self.threshold.total_seconds()),
        )

        try:
            identity = call_with_policy(
                self.provider.renew_credential,
                self.retry_policy,
                "credential renewal",
                sleep=self.sleep,
            )
            renewed_remaining = self._remaining()
        except CloudStorageError as e:
            raise CredentialRenewalError(f"Credential renewal failed: {e}") from e

        if self.expected_identity is not None and not identity.same_scope(self.expected_identity):
            raise CredentialRenewalError(
                "Renewed credential resolves to a different scope "
                f"(tenant {identity.tenant_id}, subscription {identity.subscription_id}); "
                f"expected tenant {self.expected_identity.tenant_id}, "
                f"subscription {self.expected_identity.subscription_id}"
            )

        if renewed_remaining <= self.threshold:
            raise CredentialRenewalError(
                f"Renewed credential is still expiring in {int(renewed_remaining.total_seconds())}s"
            )

        logger.info(
            "credential_renewed",
            remaining_seconds=int(renewed_remaining.total_seconds()),
        )
