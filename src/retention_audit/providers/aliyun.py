"""Aliyun OSS provider implementation."""

from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional

import oss2
from oss2.exceptions import (
    NoSuchBucket,
    OssError,
    RequestError,
    ServerError,
)

from retention_audit.config import AliyunConfig
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


def region_endpoint(region: str) -> str:
    """Public endpoint of an OSS region such as ``oss-cn-beijing``."""
    return f"https://{region}.aliyuncs.com"


class AliyunProvider(StorageProvider):
    """Aliyun OSS storage provider."""

    name = "aliyun"

    def __init__(
        self, config: AliyunConfig, rate_limiter: Optional[RateLimiter] = None
    ) -> None:
        """Initialize Aliyun OSS provider.

        Args:
            config: Aliyun configuration with credentials.
            rate_limiter: Shared limiter for API calls.
        """
        self.config = config
        self.rate_limiter = rate_limiter or RateLimiter(rate=50.0)
        self._bucket_endpoints: dict[str, str] = {}
        self._connect()
        logger.debug("aliyun_provider_initialized", endpoint=config.endpoint)

    def _connect(self) -> None:
        self.auth = oss2.Auth(
            self.config.access_key_id.get_secret_value(),
            self.config.access_key_secret.get_secret_value(),
        )
        self.service = oss2.Service(self.auth, self.config.endpoint)

    def _identity(self) -> Identity:
        return Identity(
            tenant_id=self.name,
            subscription_id=self.config.endpoint,
            principal_id=mask_key(self.config.access_key_id.get_secret_value()),
        )

    def authenticate(self) -> Identity:
        """Verify the key pair with a bucket listing call."""
        try:
            self.rate_limiter.acquire()
            self.service.list_buckets(max_keys=1)
        except oss2.exceptions.AccessDenied as e:
            raise AuthenticationError(f"Authentication failed: {str(e)}")
        except (ServerError, RequestError, OssError) as e:
            if getattr(e, "status", None) == 403:
                raise AuthenticationError(f"Authentication failed: {str(e)}")
            raise CloudStorageError(f"Failed to verify credentials: {str(e)}")
        return self._identity()

    def get_credential_validity(self) -> timedelta:
        return STATIC_CREDENTIAL_VALIDITY

    def renew_credential(self) -> Identity:
        self._connect()
        return self._identity()

    def list_containers(self) -> Iterator[ContainerInfo]:
        """List all accessible buckets."""
        try:
            marker = ""
            has_more = True

            while has_more:
                self.rate_limiter.acquire()
                result = self.service.list_buckets(marker=marker)

                for bucket in result.buckets:
                    if bucket.location:
                        self._bucket_endpoints[bucket.name] = region_endpoint(bucket.location)
                    yield ContainerInfo(
                        name=bucket.name, provider=self.name, region=bucket.location
                    )

                has_more = result.is_truncated
                if has_more:
                    marker = result.next_marker

        except oss2.exceptions.AccessDenied as e:
            raise AuthenticationError(f"Authentication failed: {str(e)}")
        except (ServerError, RequestError) as e:
            raise CloudStorageError(f"Failed to list buckets: {str(e)}")
        except OssError as e:
            raise CloudStorageError(f"OSS error listing buckets: {str(e)}")

    def _get_bucket_endpoint(self, bucket: str, region: Optional[str] = None) -> str:
        """Get the correct endpoint for a bucket.

        An explicit region wins, then the location cached by list_containers,
        then the configured default endpoint.
        """
        if region:
            self._bucket_endpoints[bucket] = region_endpoint(region)
        return self._bucket_endpoints.get(bucket, self.config.endpoint)

    def list_objects(self, container: str, region: Optional[str] = None) -> Iterator[ObjectRecord]:
        """List objects in a bucket with pagination."""
        try:
            endpoint = self._get_bucket_endpoint(container, region)
            bucket_obj = oss2.Bucket(self.auth, endpoint, container)
            marker = ""
            has_more = True

            while has_more:
                self.rate_limiter.acquire()
                result = bucket_obj.list_objects(marker=marker, max_keys=1000)

                for obj in result.object_list:
                    yield ObjectRecord(
                        container=container,
                        key=obj.key,
                        size=obj.size,
                        last_modified=datetime.fromtimestamp(obj.last_modified, tz=timezone.utc),
                        provider=self.name,
                        storage_class=obj.storage_class,
                    )

                has_more = result.is_truncated
                if has_more:
                    marker = result.next_marker

        except NoSuchBucket:
            raise ContainerNotFoundError(f"Bucket not found: {container}")
        except oss2.exceptions.AccessDenied as e:
            raise AuthenticationError(f"Access denied to bucket {container}: {str(e)}")
        except ServerError as e:
            if e.status in (429, 503):
                raise RateLimitError("Rate limit exceeded")
            raise CloudStorageError(f"Failed to list objects in {container}: {str(e)}")
        except (RequestError, OssError) as e:
            raise CloudStorageError(f"Error listing objects: {str(e)}")
