"""Immutable data models for retention audits."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

GIB = 1024**3


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


CSV_COLUMNS = (
    "Container",
    "TotalBlobCount",
    "TotalSizeGB",
    "BlobsToDelete",
    "SizeToDeleteGB",
    "PercentToDelete",
    "EstMonthlySavings",
    "TotalSizeBytes",
    "SizeToDeleteBytes",
)


@dataclass(frozen=True)
class ContainerInfo:
    """A container (bucket) in the storage account."""

    name: str
    provider: str
    region: Optional[str] = None


@dataclass(frozen=True)
class ObjectRecord:
    """Metadata of a single stored object."""

    container: str
    key: str
    size: int
    last_modified: datetime
    provider: str
    storage_class: Optional[str] = None


@dataclass(frozen=True)
class AgeBucket:
    """Inclusive day range used for age distribution reporting."""

    label: str
    min_days: int
    max_days: Optional[int] = None

    def contains(self, age_days: int) -> bool:
        if age_days < self.min_days:
            return False
        return self.max_days is None or age_days <= self.max_days


AGE_BUCKETS: tuple[AgeBucket, ...] = (
    AgeBucket("0-7", 0, 7),
    AgeBucket("8-30", 8, 30),
    AgeBucket("31-60", 31, 60),
    AgeBucket("61-90", 61, 90),
    AgeBucket("91-180", 91, 180),
    AgeBucket("181-365", 181, 365),
    AgeBucket("365+", 366, None),
)


def bucket_for_age(age_days: int) -> AgeBucket:
    """Return the age bucket for an object age in whole days.

    Negative ages (timestamps slightly in the future) land in the first bucket.
    """
    for bucket in AGE_BUCKETS:
        if bucket.contains(max(age_days, 0)):
            return bucket
    raise AssertionError(f"age {age_days} not covered by AGE_BUCKETS")


@dataclass(frozen=True)
class Identity:
    """Account scope a credential resolves to."""

    tenant_id: str
    subscription_id: str
    principal_id: Optional[str] = None

    def same_scope(self, other: "Identity") -> bool:
        """Check whether two identities address the same tenant and subscription."""
        return (
            self.tenant_id == other.tenant_id
            and self.subscription_id == other.subscription_id
        )


@dataclass(frozen=True)
class ContainerResult:
    """Retention impact of a single container."""

    container: str
    total_count: int
    total_size: int
    deletion_count: int
    deletion_size: int
    percent_to_delete: float
    est_monthly_savings: float
    age_distribution: dict[str, int] = field(default_factory=dict)

    @property
    def total_size_gb(self) -> float:
        return self.total_size / GIB

    @property
    def deletion_size_gb(self) -> float:
        return self.deletion_size / GIB

    def to_row(self) -> dict[str, object]:
        """Render the result as a results-file row."""
        return {
            "Container": self.container,
            "TotalBlobCount": self.total_count,
            "TotalSizeGB": round(self.total_size_gb, 2),
            "BlobsToDelete": self.deletion_count,
            "SizeToDeleteGB": round(self.deletion_size_gb, 2),
            "PercentToDelete": round(self.percent_to_delete, 2),
            "EstMonthlySavings": round(self.est_monthly_savings, 2),
            "TotalSizeBytes": self.total_size,
            "SizeToDeleteBytes": self.deletion_size,
        }


def ranking_key(result: ContainerResult) -> tuple[int, str]:
    """Sort key: largest deletion size first, then container name."""
    return (-result.deletion_size, result.container)


@dataclass(frozen=True)
class FailureRecord:
    """A container that could not be audited in this run."""

    container: str
    reason: str
    error_type: str = "Exception"


class ContainerStatus(str, Enum):
    """Lifecycle of a container within one run."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class AuditSummary:
    """Aggregate over every container result present at the end of a run."""

    container_count: int
    total_count: int
    total_size: int
    deletion_count: int
    deletion_size: int
    percent_objects_affected: float
    percent_size_affected: float
    monthly_savings: float
    annual_savings: float
    ranked: tuple[ContainerResult, ...] = ()

    @property
    def total_size_gb(self) -> float:
        return self.total_size / GIB

    @property
    def deletion_size_gb(self) -> float:
        return self.deletion_size / GIB

    def top(self, n: int = 10) -> tuple[ContainerResult, ...]:
        """Return the N containers with the largest deletion size."""
        return self.ranked[:n]

    @staticmethod
    def format_size(size_bytes: float) -> str:
        """Format size in bytes to human-readable format."""
        for unit in ["B", "KB", "MB", "GB", "TB"]:
            if size_bytes < 1024.0:
                return f"{size_bytes:.2f} {unit}"
            size_bytes /= 1024.0
        return f"{size_bytes:.2f} PB"
