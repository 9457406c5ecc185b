"""Data structures shared by the sync engine.

Entity ids, desired states (channels or attributes), per-run outcomes,
progress records and bulk operation handles.
"""

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Union

PRODUCT_GID_PREFIX = "gid://shopify/Product/"
VARIANT_GID_PREFIX = "gid://shopify/ProductVariant/"


def normalize_entity_id(raw: Union[str, int], resource: str = "Product") -> str:
    """Return the fully-qualified global id for a product or variant.

    Bare numeric ids ("123") and fully-qualified ids
    ("gid://shopify/Product/123") are equivalent.

    Args:
        raw: Numeric id, numeric string or global id
        resource: Resource type used when the id is bare

    Returns:
        Global id string

    Raises:
        ValueError: If the id is empty or neither numeric nor a global id
    """
    value = str(raw).strip()
    if not value:
        raise ValueError("entity id is required")
    if value.startswith("gid://"):
        return value
    if value.isdigit():
        return f"gid://shopify/{resource}/{value}"
    raise ValueError(f"Invalid entity id: {value!r}")


def normalize_entity_ids(raw_ids: Iterable[Union[str, int]]) -> List[str]:
    """Normalize a list of ids, dropping duplicates but keeping first-seen order."""
    seen = set()
    result: List[str] = []
    for raw in raw_ids:
        entity_id = normalize_entity_id(raw)
        if entity_id not in seen:
            seen.add(entity_id)
            result.append(entity_id)
    return result


def numeric_id(entity_id: str) -> str:
    """Strip the global id prefix ("gid://shopify/Product/123" -> "123")."""
    return entity_id.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class ChannelSet:
    """Desired publication targets, by human-readable channel name."""

    names: frozenset = field(default_factory=frozenset)

    @classmethod
    def of(cls, names: Iterable[str]) -> "ChannelSet":
        return cls(frozenset(n.strip() for n in names if n and n.strip()))

    def __len__(self) -> int:
        return len(self.names)

    def __iter__(self):
        return iter(sorted(self.names))


ATTRIBUTE_KEYS = ("category", "color", "size", "gender", "age_group")


@dataclass(frozen=True)
class AttributeSet:
    """Marketplace attributes for an entity. Blank values are never sent."""

    category: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    gender: Optional[str] = None
    age_group: Optional[str] = None

    def non_blank(self) -> Dict[str, str]:
        """Return only the attributes that carry a value."""
        values = {}
        for key in ATTRIBUTE_KEYS:
            value = getattr(self, key)
            if value is not None and str(value).strip():
                values[key] = str(value).strip()
        return values

    def is_blank(self) -> bool:
        return not self.non_blank()


# Either one desired state for every entity, or one AttributeSet per entity
DesiredState = Union[ChannelSet, AttributeSet, Mapping[str, AttributeSet]]


@dataclass(frozen=True)
class FailureCount:
    """One line of a failure breakdown."""

    error: str
    count: int


@dataclass(frozen=True)
class BatchOutcome:
    """Result of a bulk run. Every input id is in exactly one of the two lists."""

    succeeded_ids: tuple = ()
    failed_ids: tuple = ()
    failure_reasons: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def success(self) -> bool:
        return not self.failed_ids

    def failure_breakdown(self) -> List[FailureCount]:
        """Failure causes, most frequent first."""
        ordered = sorted(self.failure_reasons.items(), key=lambda item: (-item[1], item[0]))
        return [FailureCount(error=error, count=count) for error, count in ordered]

    @property
    def message(self) -> str:
        if self.success:
            return f"All {len(self.succeeded_ids)} products updated successfully"
        lines = [
            f"Updated {len(self.succeeded_ids)} products, "
            f"{len(self.failed_ids)} products failed",
            "Error summary:",
        ]
        lines.extend(f"- {f.error}: {f.count} products" for f in self.failure_breakdown())
        return "\n".join(lines)

    def with_failures(self, entity_ids: Iterable[str], reason: str) -> "BatchOutcome":
        """Return a copy with extra failed ids (found before any dispatch)."""
        extra = [e for e in entity_ids if e not in self.failed_ids]
        if not extra:
            return self
        reasons = dict(self.failure_reasons)
        reasons[reason] = reasons.get(reason, 0) + len(extra)
        return BatchOutcome(
            succeeded_ids=self.succeeded_ids,
            failed_ids=self.failed_ids + tuple(extra),
            failure_reasons=MappingProxyType(reasons),
        )

    def to_response(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "updatedProducts": list(self.succeeded_ids),
            "failedProducts": list(self.failed_ids),
            "failureSummary": [
                {"error": f.error, "count": f.count} for f in self.failure_breakdown()
            ],
        }


class OutcomeRecorder:
    """Mutable accumulator the orchestrator fills while a run is in flight."""

    def __init__(self) -> None:
        self.succeeded: List[str] = []
        self.failed: List[str] = []
        self.reasons: Counter = Counter()

    def record_success(self, entity_id: str) -> None:
        self.succeeded.append(entity_id)

    def record_failure(self, entity_id: str, reason: str) -> None:
        self.failed.append(entity_id)
        self.reasons[reason or "Unknown error"] += 1

    def freeze(self) -> BatchOutcome:
        return BatchOutcome(
            succeeded_ids=tuple(self.succeeded),
            failed_ids=tuple(self.failed),
            failure_reasons=MappingProxyType(dict(self.reasons)),
        )


@dataclass(frozen=True)
class BatchProgress:
    """Progress record emitted after every chunk."""

    batch_number: int
    total_batches: int
    processed_count: int
    success_count: int
    failure_count: int

    def to_dict(self) -> dict:
        return {
            "batchNumber": self.batch_number,
            "totalBatches": self.total_batches,
            "processedCount": self.processed_count,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
        }


class OperationStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class AsyncOperationHandle:
    """Server-side bulk job. result_url is only set once the job COMPLETED."""

    operation_id: str
    status: OperationStatus = OperationStatus.RUNNING
    result_url: Optional[str] = None
    object_count: Optional[int] = None
    error_code: Optional[str] = None

    def __post_init__(self):
        if not self.operation_id:
            raise ValueError("operation_id is required")
        if self.result_url and self.status != OperationStatus.COMPLETED:
            raise ValueError("result_url is only valid for completed operations")

    @property
    def is_running(self) -> bool:
        return self.status == OperationStatus.RUNNING

    def to_dict(self) -> dict:
        return {
            "operationId": self.operation_id,
            "status": self.status.value,
            "resultUrl": self.result_url,
            "objectCount": self.object_count,
            "errorCode": self.error_code,
        }
