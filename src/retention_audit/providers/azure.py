"""Azure Blob Storage provider implementation."""

import base64
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator, Optional

from azure.core.credentials import AccessToken, TokenCredential
from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
)
from azure.identity import ClientSecretCredential, DefaultAzureCredential
from azure.storage.blob import BlobServiceClient

from retention_audit.config import AzureConfig
from retention_audit.models import ContainerInfo, Identity, ObjectRecord
from retention_audit.providers.base import (
    AuthenticationError,
    CloudStorageError,
    ContainerNotFoundError,
    CredentialRenewalError,
    RateLimitError,
    StorageProvider,
)
from retention_audit.utils.logging import get_logger
from retention_audit.utils.rate_limiter import RateLimiter

logger = get_logger(__name__)

STORAGE_SCOPE = "https://storage.azure.com/.default"
THROTTLING_STATUSES = (429, 503)


def _token_claims(token: str) -> dict[str, Any]:
    """Decode the (unverified) claims segment of a JWT access token."""
    try:
        payload = token.split(".")[1]
        payload += "=" * (-len(payload) % 4)
        return json.loads(base64.urlsafe_b64decode(payload))
    except (IndexError, ValueError):
        return {}


class AzureProvider(StorageProvider):
    """Azure Blob Storage provider for a single storage account."""

    name = "azure"

    def __init__(
        self,
        config: AzureConfig,
        account: str,
        rate_limiter: Optional[RateLimiter] = None,
        credential: Optional[TokenCredential] = None,
    ) -> None:
        """Initialize Azure provider.

        Args:
            config: Azure configuration.
            account: Storage account name.
            rate_limiter: Shared limiter for API calls.
            credential: Explicit credential; built from config when omitted.
        """
        self.config = config
        self.account = account
        self.account_url = config.account_url_template.format(account=account)
        self.rate_limiter = rate_limiter or RateLimiter(rate=50.0)
        self._explicit_credential = credential
        self.credential = credential or self._build_credential()
        self.service = BlobServiceClient(self.account_url, credential=self.credential)
        self._token: Optional[AccessToken] = None
        logger.debug("azure_provider_initialized", account_url=self.account_url)

    def _build_credential(self) -> TokenCredential:
        if self._explicit_credential is not None:
            return self._explicit_credential
        if self.config.client_id and self.config.client_secret and self.config.tenant_id:
            return ClientSecretCredential(
                tenant_id=self.config.tenant_id,
                client_id=self.config.client_id,
                client_secret=self.config.client_secret.get_secret_value(),
            )
        return DefaultAzureCredential()

    def _fetch_token(self) -> AccessToken:
        try:
            self._token = self.credential.get_token(STORAGE_SCOPE)
        except ClientAuthenticationError as e:
            raise AuthenticationError(f"Authentication failed: {e.message}")
        except AzureError as e:
            raise CloudStorageError(f"Failed to acquire access token: {str(e)}")
        return self._token

    def _identity(self, token: AccessToken) -> Identity:
        claims = _token_claims(token.token)
        return Identity(
            tenant_id=claims.get("tid") or self.config.tenant_id or "",
            subscription_id=self.config.subscription_id,
            principal_id=claims.get("oid"),
        )

    def authenticate(self) -> Identity:
        """Acquire a storage token and resolve its tenant."""
        identity = self._identity(self._fetch_token())
        logger.info(
            "azure_authenticated",
            tenant_id=identity.tenant_id,
            subscription_id=identity.subscription_id,
        )
        return identity

    def get_credential_validity(self) -> timedelta:
        """Return the remaining lifetime of the current token."""
        token = self._token or self._fetch_token()
        expires_on = datetime.fromtimestamp(token.expires_on, tz=timezone.utc)
        return expires_on - datetime.now(timezone.utc)

    def renew_credential(self) -> Identity:
        """Build a new credential and fetch a fresh token with it."""
        try:
            self.credential = self._build_credential()
            self.service = BlobServiceClient(self.account_url, credential=self.credential)
            token = self._fetch_token()
        except AuthenticationError as e:
            raise CredentialRenewalError(f"Token renewal failed: {str(e)}")
        identity = self._identity(token)
        logger.debug("azure_token_renewed", expires_on=token.expires_on)
        return identity

    def list_containers(self) -> Iterator[ContainerInfo]:
        """List all containers in the storage account."""
        try:
            self.rate_limiter.acquire()
            for page in self.service.list_containers().by_page():
                for container in page:
                    yield ContainerInfo(name=container.name, provider=self.name)
                self.rate_limiter.acquire()

        except ClientAuthenticationError as e:
            raise AuthenticationError(f"Authentication failed: {e.message}")
        except HttpResponseError as e:
            if e.status_code in THROTTLING_STATUSES:
                raise RateLimitError("Rate limit exceeded")
            raise CloudStorageError(f"Failed to list containers: {e.message}")
        except AzureError as e:
            raise CloudStorageError(f"Azure error listing containers: {str(e)}")

    def list_objects(self, container: str, region: Optional[str] = None) -> Iterator[ObjectRecord]:
        """List blobs in a container with pagination.

        ``region`` is ignored: every container is served by the account endpoint.
        """
        try:
            container_client = self.service.get_container_client(container)
            self.rate_limiter.acquire()
            for page in container_client.list_blobs(results_per_page=5000).by_page():
                for blob in page:
                    last_modified = blob.last_modified
                    if last_modified.tzinfo is None:
                        last_modified = last_modified.replace(tzinfo=timezone.utc)
                    yield ObjectRecord(
                        container=container,
                        key=blob.name,
                        size=int(blob.size or 0),
                        last_modified=last_modified,
                        provider=self.name,
                        storage_class=blob.blob_tier,
                    )
                self.rate_limiter.acquire()

        except ResourceNotFoundError:
            raise ContainerNotFoundError(f"Container not found: {container}")
        except ClientAuthenticationError as e:
            raise AuthenticationError(f"Access denied to container {container}: {e.message}")
        except HttpResponseError as e:
            if e.status_code in THROTTLING_STATUSES:
                raise RateLimitError("Rate limit exceeded")
            raise CloudStorageError(f"Failed to list blobs in {container}: {e.message}")
        except AzureError as e:
            raise CloudStorageError(f"Azure error listing blobs: {str(e)}")
