"""Tencent COS provider implementation."""

from datetime import datetime, timedelta
from typing import Iterator, Optional

from qcloud_cos import CosConfig, CosS3Client
from qcloud_cos.cos_exception import CosClientError, CosServiceError

from retention_audit.config import TencentConfig
from retention_audit.models import ContainerInfo, Identity, ObjectRecord
from retention_audit.providers.base import (
    STATIC_CREDENTIAL_VALIDITY,
    AuthenticationError,
    CloudStorageError,
    ContainerNotFoundError,
    RateLimitError,
    StorageProvider,
    mask_key,
)
from retention_audit.utils.logging import get_logger
from retention_audit.utils.rate_limiter import RateLimiter

logger = get_logger(__name__)


class TencentProvider(StorageProvider):
    """Tencent COS storage provider.

    COS buckets play the role of containers. Credentials are static
    SecretId/SecretKey pairs, so renewal re-creates the clients and
    returns the same identity.
    """

    name = "tencent"

    def __init__(
        self, config: TencentConfig, rate_limiter: Optional[RateLimiter] = None
    ) -> None:
        """Initialize Tencent COS provider.

        Args:
            config: Tencent configuration with credentials.
            rate_limiter: Shared limiter for API calls.
        """
        self.config = config
        self.rate_limiter = rate_limiter or RateLimiter(rate=50.0)
        self._bucket_regions: dict[str, str] = {}
        self._region_clients: dict[str, CosS3Client] = {}
        self.client = self._get_region_client(config.region)
        logger.debug("tencent_provider_initialized", region=config.region)

    def _get_region_client(self, region: str) -> CosS3Client:
        if region not in self._region_clients:
            cos_config = CosConfig(
                Region=region,
                SecretId=self.config.secret_id.get_secret_value(),
                SecretKey=self.config.secret_key.get_secret_value(),
                Scheme=self.config.scheme,
            )
            self._region_clients[region] = CosS3Client(cos_config)
        return self._region_clients[region]

    def _get_client(self, bucket: str, region: Optional[str] = None) -> CosS3Client:
        """Get a CosS3Client for the bucket's region.

        An explicit region wins, then the region cached by list_containers,
        then the configured default.
        """
        if region:
            self._bucket_regions[bucket] = region
        return self._get_region_client(self._bucket_regions.get(bucket, self.config.region))

    def _identity(self) -> Identity:
        return Identity(
            tenant_id=self.name,
            subscription_id=self.config.app_id,
            principal_id=mask_key(self.config.secret_id.get_secret_value()),
        )

    def authenticate(self) -> Identity:
        """Verify the key pair with a service listing call."""
        try:
            self.rate_limiter.acquire()
            self.client.list_buckets()
        except CosServiceError as e:
            if e.get_error_code() in ("AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch"):
                raise AuthenticationError(f"Authentication failed: {e.get_error_msg()}")
            raise CloudStorageError(f"Failed to verify credentials: {e.get_error_msg()}")
        except CosClientError as e:
            raise CloudStorageError(f"Client error verifying credentials: {str(e)}")
        return self._identity()

    def get_credential_validity(self) -> timedelta:
        return STATIC_CREDENTIAL_VALIDITY

    def renew_credential(self) -> Identity:
        self._region_clients.clear()
        self.client = self._get_region_client(self.config.region)
        return self._identity()

    def list_containers(self) -> Iterator[ContainerInfo]:
        """List all accessible buckets."""
        try:
            self.rate_limiter.acquire()
            response = self.client.list_buckets()

            for bucket in response.get("Buckets", {}).get("Bucket", []):
                location = bucket.get("Location")
                if location:
                    self._bucket_regions[bucket["Name"]] = location
                yield ContainerInfo(name=bucket["Name"], provider=self.name, region=location)

        except CosServiceError as e:
            if e.get_error_code() == "AccessDenied":
                raise AuthenticationError(f"Authentication failed: {e.get_error_msg()}")
            raise CloudStorageError(f"Failed to list buckets: {e.get_error_msg()}")
        except CosClientError as e:
            raise CloudStorageError(f"Client error listing buckets: {str(e)}")

    def list_objects(self, container: str, region: Optional[str] = None) -> Iterator[ObjectRecord]:
        """List objects in a bucket with pagination."""
        marker = ""
        has_more = True
        client = self._get_client(container, region)

        try:
            while has_more:
                self.rate_limiter.acquire()
                response = client.list_objects(Bucket=container, Marker=marker, MaxKeys=1000)

                contents = response.get("Contents", [])
                for obj in contents:
                    yield ObjectRecord(
                        container=container,
                        key=obj["Key"],
                        size=int(obj["Size"]),
                        last_modified=datetime.fromisoformat(
                            obj["LastModified"].replace("Z", "+00:00")
                        ),
                        provider=self.name,
                        storage_class=obj.get("StorageClass"),
                    )

                has_more = response.get("IsTruncated") == "true"
                if has_more:
                    # NextMarker is omitted by some endpoints; continue after the last key
                    marker = response.get("NextMarker") or contents[-1]["Key"]

        except CosServiceError as e:
            if e.get_error_code() == "NoSuchBucket":
                raise ContainerNotFoundError(f"Bucket not found: {container}")
            if e.get_error_code() == "AccessDenied":
                raise AuthenticationError(f"Access denied to bucket {container}: {e.get_error_msg()}")
            if e.get_status_code() in (429, 503):
                raise RateLimitError("Rate limit exceeded")
            raise CloudStorageError(f"Failed to list objects in {container}: {e.get_error_msg()}")
        except CosClientError as e:
            raise CloudStorageError(f"Client error listing objects: {str(e)}")
