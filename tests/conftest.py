"""Pytest configuration and fixtures."""

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Iterator, Optional

import pytest

from retention_audit.models import ContainerInfo, Identity, ObjectRecord
from retention_audit.providers.base import CloudStorageError, StorageProvider

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def pytest_addoption(parser):
    """Add custom command line options for integration tests."""
    parser.addoption(
        "--provider",
        action="store",
        default=None,
        help="Cloud provider for integration tests (azure, tencent or aliyun)",
    )
    parser.addoption(
        "--account",
        action="store",
        default=None,
        help="Storage account identifier for integration tests",
    )
    parser.addoption(
        "--test-container",
        action="store",
        default=None,
        help="Container name for integration tests",
    )


class FakeStorageProvider(StorageProvider):
    """In-memory provider with failure injection."""

    name = "azure"

    def __init__(
        self,
        objects_by_container: dict[str, list[ObjectRecord]],
        failing: Iterable[str] = (),
        identity: Identity = Identity("tenant-1", "sub-1"),
        validity: timedelta = timedelta(hours=1),
        fail_listing_containers: bool = False,
        fail_authentication: bool = False,
        regions: Optional[dict[str, str]] = None,
    ) -> None:
        self.objects_by_container = objects_by_container
        self.failing = set(failing)
        self.identity = identity
        self.validity = validity
        self.fail_listing_containers = fail_listing_containers
        self.fail_authentication = fail_authentication
        self.regions = regions or {}
        self.list_calls: list[str] = []
        self.listed_regions: dict[str, Optional[str]] = {}
        self._lock = threading.Lock()

    def authenticate(self) -> Identity:
        if self.fail_authentication:
            raise CloudStorageError("no credential available")
        return self.identity

    def list_containers(self) -> Iterator[ContainerInfo]:
        if self.fail_listing_containers:
            raise CloudStorageError("service unavailable")
        for name in self.objects_by_container:
            yield ContainerInfo(name=name, provider=self.name, region=self.regions.get(name))

    def list_objects(self, container: str, region: Optional[str] = None) -> Iterator[ObjectRecord]:
        with self._lock:
            self.list_calls.append(container)
            self.listed_regions[container] = region
        if container in self.failing:
            raise CloudStorageError(f"timeout listing {container}")
        yield from self.objects_by_container[container]

    def get_credential_validity(self) -> timedelta:
        return self.validity

    def renew_credential(self) -> Identity:
        return self.identity


def make_objects(
    container: str,
    ages_days: Iterable[int],
    now: datetime = NOW,
    size: int = 1024,
) -> list[ObjectRecord]:
    """Build objects whose ages in whole days are exactly ``ages_days``."""
    return [
        ObjectRecord(
            container=container,
            key=f"blob-{i}",
            size=size,
            last_modified=now - timedelta(days=age, hours=1),
            provider="azure",
        )
        for i, age in enumerate(ages_days)
    ]


@pytest.fixture
def now() -> datetime:
    """Frozen reference time."""
    return NOW


@pytest.fixture
def scenario_objects() -> dict[str, list[ObjectRecord]]:
    """Account with an empty, an all-old and a mixed container."""
    return {
        "empty": [],
        "all-old": make_objects("all-old", [400] * 10),
        "mixed": make_objects("mixed", [10] * 5 + [200] * 5),
    }


@pytest.fixture
def provider_factory() -> Callable[..., Callable[[], FakeStorageProvider]]:
    """Build a zero-argument factory returning a new fake provider per call."""

    def build(
        objects_by_container: dict[str, list[ObjectRecord]],
        **kwargs,
    ) -> Callable[[], FakeStorageProvider]:
        created: list[FakeStorageProvider] = []

        def factory() -> FakeStorageProvider:
            provider = FakeStorageProvider(objects_by_container, **kwargs)
            created.append(provider)
            return provider

        factory.created = created  # type: ignore[attr-defined]
        return factory

    return build


@pytest.fixture
def no_sleep() -> Callable[[float], None]:
    """Sleep replacement that records requested delays."""
    delays: list[float] = []

    def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays  # type: ignore[attr-defined]
    return sleep


@pytest.fixture
def identity() -> Identity:
    return Identity("tenant-1", "sub-1")
