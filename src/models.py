"""
Data models for order reconciliation.

Order is the only persisted entity. The remaining types are the validated
input of the import pipeline (OrderCandidate) and the discriminated results
returned by store operations, so collaborators never deal with raw rows or
raw database values.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from deadline_calculator import calculate_deadline, is_order_late
from exceptions import ValidationError


class OrderStatus(str, Enum):
    """Scan status of an order. Values sort pending before scanned."""
    PENDING = "pending"
    SCANNED = "scanned"


class ScanOutcome(str, Enum):
    """Result of scanning one tracking number."""
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    ALREADY_SCANNED = "already_scanned"
    ERROR = "error"


class ImportOutcome(str, Enum):
    """Classification of one import candidate against storage."""
    INSERTED = "inserted"
    RESTORED = "restored"
    DUPLICATE = "duplicate"
    FAILED = "failed"


class RestoreOutcome(str, Enum):
    RESTORED = "restored"
    NOT_ARCHIVED = "not_archived"
    CONFLICT = "conflict"


class RowErrorKind(str, Enum):
    VALIDATION = "validation"
    DUPLICATE_IN_BATCH = "duplicate_in_batch"
    STORAGE = "storage"


# Descriptive fields overwritten when an archived order is restored by import
DESCRIPTIVE_FIELDS = (
    'order_id',
    'variation_name',
    'receiver_name',
    'buyer_user_name',
    'jumlah',
    'shipping_method',
    'order_creation_date',
)


def _clean(value: Any) -> Optional[str]:
    """Trim a raw cell value; empty values become None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


@dataclass
class Order:
    """
    A tracked shipment order.

    Attributes:
        id: Opaque identifier, stable through archive/restore cycles
        tracking_number: Courier tracking number ("resi"), unique among active orders
        status: PENDING until scanned
        created_at: Insertion time, never changes
        scanned_at: Set iff status is SCANNED
        archived_at: None while the order is active
        order_creation_date: Source-supplied creation time (ISO text), drives the deadline
    """
    id: str
    tracking_number: str
    status: OrderStatus
    created_at: datetime
    order_id: Optional[str] = None
    variation_name: Optional[str] = None
    receiver_name: Optional[str] = None
    buyer_user_name: Optional[str] = None
    jumlah: Optional[str] = None
    shipping_method: Optional[str] = None
    order_creation_date: Optional[str] = None
    scanned_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> 'Order':
        """Build an Order from an orders table row (sqlite3.Row or dict)."""
        return cls(
            id=row['id'],
            tracking_number=row['tracking_number'],
            status=OrderStatus(row['status']),
            created_at=_parse_timestamp(row['created_at']),
            order_id=row['order_id'],
            variation_name=row['variation_name'],
            receiver_name=row['receiver_name'],
            buyer_user_name=row['buyer_user_name'],
            jumlah=row['jumlah'],
            shipping_method=row['shipping_method'],
            order_creation_date=row['order_creation_date'],
            scanned_at=_parse_timestamp(row['scanned_at']),
            archived_at=_parse_timestamp(row['archived_at']),
        )

    @property
    def is_active(self) -> bool:
        return self.archived_at is None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    @property
    def deadline(self) -> Optional[datetime]:
        return calculate_deadline(self.order_creation_date)

    def is_late(self, now: Optional[datetime] = None) -> bool:
        """True when the order is still pending past its shipping deadline."""
        return is_order_late(self.deadline, self.status, now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary with datetime objects as ISO strings."""
        data = asdict(self)
        data['status'] = self.status.value
        for key in ('created_at', 'scanned_at', 'archived_at'):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class OrderCandidate:
    """
    A validated row from an import file.

    All values are trimmed and empty strings become None. The tracking number
    is required.

    Raises:
        ValidationError: If tracking_number is missing or blank
    """
    tracking_number: str
    order_id: Optional[str] = None
    variation_name: Optional[str] = None
    receiver_name: Optional[str] = None
    buyer_user_name: Optional[str] = None
    jumlah: Optional[str] = None
    shipping_method: Optional[str] = None
    order_creation_date: Optional[str] = None

    def __post_init__(self):
        tracking_number = _clean(self.tracking_number)
        if tracking_number is None:
            raise ValidationError("Tracking number is empty")
        self.tracking_number = tracking_number
        for name in DESCRIPTIVE_FIELDS:
            setattr(self, name, _clean(getattr(self, name)))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'OrderCandidate':
        """Build a candidate from a field-name keyed mapping, ignoring unknown keys."""
        return cls(
            tracking_number=data.get('tracking_number'),
            **{name: data.get(name) for name in DESCRIPTIVE_FIELDS},
        )

    def descriptive_values(self) -> Dict[str, Optional[str]]:
        return {name: getattr(self, name) for name in DESCRIPTIVE_FIELDS}


@dataclass
class OrderStats:
    """Counts over active orders. pending is always total - scanned."""
    total: int
    scanned: int

    @property
    def pending(self) -> int:
        return self.total - self.scanned

    def to_dict(self) -> Dict[str, int]:
        return {'total': self.total, 'scanned': self.scanned, 'pending': self.pending}


@dataclass
class ScanResult:
    """Outcome of one scan, with the matched order when there is one."""
    outcome: ScanOutcome
    tracking_number: str
    order: Optional[Order] = None
    message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome == ScanOutcome.SUCCESS

    @property
    def feedback_kind(self) -> str:
        """Feedback level for the scan station: success, warning or error."""
        if self.outcome == ScanOutcome.SUCCESS:
            return 'success'
        if self.outcome == ScanOutcome.ALREADY_SCANNED:
            return 'warning'
        return 'error'


@dataclass
class ImportResult:
    outcome: ImportOutcome
    tracking_number: str
    order: Optional[Order] = None
    error: Optional[str] = None


@dataclass
class RowError:
    """
    A row that could not be imported.

    Attributes:
        tracking_number: Tracking number of the row, None if it was empty
        reason: Human-readable message
        kind: Validation, in-batch duplicate, or storage failure
        row: Spreadsheet row number (header is row 1), None for storage errors
             on candidates that did not come from a file
    """
    tracking_number: Optional[str]
    reason: str
    kind: RowErrorKind
    row: Optional[int] = None


@dataclass
class ImportSummary:
    """Aggregated result of importing a batch of candidates."""
    inserted_count: int = 0
    restored_count: int = 0
    duplicates: List[str] = field(default_factory=list)
    errors: List[RowError] = field(default_factory=list)

    def record(self, result: ImportResult, row: Optional[int] = None):
        """Fold one candidate's result into the summary."""
        if result.outcome == ImportOutcome.INSERTED:
            self.inserted_count += 1
        elif result.outcome == ImportOutcome.RESTORED:
            self.restored_count += 1
        elif result.outcome == ImportOutcome.DUPLICATE:
            self.duplicates.append(result.tracking_number)
        else:
            self.errors.append(RowError(
                tracking_number=result.tracking_number,
                reason=result.error or "Unknown storage error",
                kind=RowErrorKind.STORAGE,
                row=row,
            ))

    @property
    def imported_count(self) -> int:
        return self.inserted_count + self.restored_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            'inserted_count': self.inserted_count,
            'restored_count': self.restored_count,
            'duplicates': list(self.duplicates),
            'errors': [
                {'tracking_number': e.tracking_number, 'reason': e.reason,
                 'kind': e.kind.value, 'row': e.row}
                for e in self.errors
            ],
        }
