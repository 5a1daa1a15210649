"""Abstract base class for cloud storage providers."""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Iterator, Optional

from retention_audit.models import ContainerInfo, Identity, ObjectRecord


class StorageProvider(ABC):
    """Abstract interface for the remote storage account.

    One instance owns one credential and one set of SDK clients. Instances
    are never shared between audit workers.
    """

    name: str = "unknown"

    @abstractmethod
    def authenticate(self) -> Identity:
        """Acquire a credential and resolve the account scope it grants.

        Raises:
            AuthenticationError: If no credential could be obtained.
        """
        pass

    @abstractmethod
    def list_containers(self) -> Iterator[ContainerInfo]:
        """List all containers in the account.

        Yields:
            ContainerInfo objects for each container.

        Raises:
            CloudStorageError: If listing fails.
        """
        pass

    @abstractmethod
    def list_objects(self, container: str, region: Optional[str] = None) -> Iterator[ObjectRecord]:
        """List objects in a container with size and last-modified metadata.

        Args:
            container: Container name.
            region: Region reported for the container by list_containers.
                Providers with per-region endpoints list through it; None
                means whatever the provider already knows or its default.

        Yields:
            ObjectRecord objects for each object.

        Raises:
            CloudStorageError: If listing fails.
        """
        pass

    @abstractmethod
    def get_credential_validity(self) -> timedelta:
        """Return how long the current credential remains valid."""
        pass

    @abstractmethod
    def renew_credential(self) -> Identity:
        """Renew the current credential.

        Returns:
            The identity the renewed credential resolves to.

        Raises:
            CloudStorageError: If renewal fails.
        """
        pass


class CloudStorageError(Exception):
    """Base exception for cloud storage operations."""

    pass


class AuthenticationError(CloudStorageError):
    """Authentication failed."""

    pass


class ContainerNotFoundError(CloudStorageError):
    """Container does not exist."""

    pass


class RateLimitError(CloudStorageError):
    """Rate limit exceeded."""

    pass


class CredentialRenewalError(CloudStorageError):
    """The credential could not be renewed or changed scope after renewal."""

    pass


class TaskTimeoutError(CloudStorageError):
    """A container task ran past its deadline and was abandoned."""

    pass


class RetryExhaustedError(CloudStorageError):
    """A remote call failed on every allowed attempt."""

    def __init__(
        self, description: str, attempts: int, last_error: Optional[BaseException]
    ) -> None:
        self.description = description
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{description} failed after {attempts} attempt(s): {last_error}"
        )


# Static access keys do not expire during a run.
STATIC_CREDENTIAL_VALIDITY = timedelta(days=365)


def mask_key(key: str) -> str:
    """Mask an access key id for logs and identities, keeping the last 4 characters."""
    if len(key) <= 4:
        return "*" * len(key)
    return "*" * (len(key) - 4) + key[-4:]
