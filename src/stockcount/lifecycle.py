"""Cycle count lifecycle: scheduling, counting, review and approval.

A count moves through the following statuses::

    pending --start--> in_progress --complete--> pending_approval --approve--> completed
       ^                    |                          |
       +------reject--------+--------------------------+
    pending / in_progress --cancel--> cancelled

Every transition re-reads the count, checks the status (and optionally the
caller's last-seen version) and commits the new status together with its
side effects in a single transaction. The ``version`` column is bumped by
SQLAlchemy on every status write, so two operators racing on the same count
cannot both succeed.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from .config import settings
from .database.crud import (
    add_count_item as insert_count_item,
    adjust_inventory,
    count_cycle_counts_by_status,
    create_cycle_count,
    generate_count_number,
    get_count_item,
    get_cycle_count,
    get_location,
    get_product,
    list_count_items_by_status,
    list_inventory_records,
    lock_cycle_count_status,
    snapshot_quantity,
)
from .database.models import CountStatus, CountType, CycleCount, CycleCountItem
from .exceptions import (
    ConcurrentModificationError,
    DependencyFailure,
    InvalidStateError,
    InventoryAdjustmentError,
    NotFoundError,
    ValidationError,
)
from .selection import SelectionRule, select_records
from .utils import normalize_scan_token
from .variance import VarianceSummary, summarize, uncounted_items

logger = logging.getLogger(__name__)

# event -> (statuses the event is allowed from, resulting status)
TRANSITIONS: dict[str, tuple[frozenset[str], CountStatus]] = {
    "start": (frozenset({CountStatus.PENDING.value}), CountStatus.IN_PROGRESS),
    "complete": (frozenset({CountStatus.IN_PROGRESS.value}), CountStatus.PENDING_APPROVAL),
    "approve": (frozenset({CountStatus.PENDING_APPROVAL.value}), CountStatus.COMPLETED),
    "reject": (frozenset({CountStatus.PENDING_APPROVAL.value}), CountStatus.PENDING),
    "cancel": (
        frozenset({CountStatus.PENDING.value, CountStatus.IN_PROGRESS.value}),
        CountStatus.CANCELLED,
    ),
}

COUNT_NUMBER_ATTEMPTS = 3


@dataclass(frozen=True)
class AppliedAdjustment:
    """One inventory change issued while approving a count."""

    item_id: int
    product_id: int
    location_id: int
    sublocation_id: Optional[int]
    delta: int
    qty_before: int
    qty_after: int
    transaction_id: int


@dataclass
class ApprovalResult:
    count: CycleCount
    applied_adjustments: list[AppliedAdjustment] = field(default_factory=list)
    summary: VarianceSummary = field(default_factory=VarianceSummary)

    @property
    def adjustment_count(self) -> int:
        return len(self.applied_adjustments)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def next_status(current: str, event: str) -> Optional[CountStatus]:
    """Return the status ``event`` leads to from ``current``, or None if not allowed."""
    allowed, target = TRANSITIONS[event]
    if current not in allowed:
        return None
    return target


def _check_transition(count: CycleCount, event: str, expected_version: Optional[int]) -> CountStatus:
    if expected_version is not None and count.version != expected_version:
        raise ConcurrentModificationError(count.count_number, count.status, event)
    target = next_status(count.status, event)
    if target is None:
        raise InvalidStateError(count.count_number, count.status, event, TRANSITIONS[event][0])
    return target


async def _commit_transition(session: AsyncSession, count_number: str, status: str, event: str) -> None:
    try:
        await session.commit()
    except StaleDataError as e:
        await session.rollback()
        raise ConcurrentModificationError(count_number, status, event) from e


async def get_count(session: AsyncSession, count_id: int) -> CycleCount:
    """Load a count with its items, raising NotFoundError if it does not exist."""
    count = await get_cycle_count(session, count_id)
    if count is None:
        raise NotFoundError("Cycle count", count_id)
    return count


# ===== Scheduling =====


async def schedule_count(
    session: AsyncSession,
    count_type: str,
    location_id: Optional[int] = None,
    scheduled_date: Optional[date] = None,
    assigned_to: Optional[str] = None,
    blind_count: bool = False,
    notes: Optional[str] = None,
    selection: Optional[SelectionRule] = None,
    created_by: Optional[str] = None,
) -> CycleCount:
    """Create a pending count and snapshot its items from current inventory.

    Expected quantities are copied once, here, and never re-synced; the
    count measures drift against the stock level at scheduling time.

    Args:
        session: Database session
        count_type: "cycle", "full" or "spot"
        location_id: Location to count; may only be omitted for full counts
        scheduled_date: Optional planned date
        assigned_to: Optional counter user identifier
        blind_count: Hide expected quantities from the counter
        notes: Optional free text
        selection: Which products to include (defaults to all)
        created_by: Acting user

    Returns:
        The new count with one item per selected stock position

    Raises:
        ValidationError: Unknown count type, missing location, bad selection
        NotFoundError: The location does not exist
    """
    try:
        count_type_value = CountType(count_type).value
    except ValueError:
        raise ValidationError(f"Unknown count type '{count_type}'", field="count_type")

    if location_id is None and count_type_value != CountType.FULL.value:
        raise ValidationError("A location is required unless this is a full count", field="location_id")
    if location_id is not None and await get_location(session, location_id) is None:
        raise NotFoundError("Location", location_id)

    selection = selection or SelectionRule()
    if selection.sample_size is None:
        selection = replace(selection, sample_size=settings.default_random_sample_size)
    records = await list_inventory_records(session, location_id)
    chosen = select_records(selection, records)
    items = [
        {
            "product_id": record.product_id,
            "location_id": record.location_id,
            "sublocation_id": record.sublocation_id,
            "expected_qty": record.qty_on_hand,
        }
        for record in chosen
    ]
    if not items:
        logger.warning(f"Scheduling {count_type_value} count with no items (location_id={location_id})")

    attempt = 0
    while True:
        attempt += 1
        count_number = await generate_count_number(session, settings.count_number_prefix)
        try:
            count = await create_cycle_count(
                session,
                count_number=count_number,
                count_type=count_type_value,
                items=items,
                location_id=location_id,
                scheduled_date=scheduled_date,
                assigned_to=assigned_to,
                blind_count=blind_count,
                notes=notes,
                created_by=created_by,
            )
        except IntegrityError:
            await session.rollback()
            if attempt == COUNT_NUMBER_ATTEMPTS:
                raise
            logger.warning(f"Count number {count_number} was taken, retrying")
            continue
        logger.info(f"Scheduled cycle count {count.count_number} by {created_by or 'anonymous'}")
        return count


async def add_item_to_count(
    session: AsyncSession,
    count_id: int,
    product_id: int,
    sublocation_id: Optional[int] = None,
    location_id: Optional[int] = None,
) -> CycleCountItem:
    """Add a product position to a count that has not started yet.

    The expected quantity is snapshotted now. ``location_id`` defaults to
    the count's location and is required for full counts.
    """
    count = await get_count(session, count_id)
    if count.status != CountStatus.PENDING.value:
        raise InvalidStateError(count.count_number, count.status, "add items to", [CountStatus.PENDING.value])

    location_id = location_id or count.location_id
    if location_id is None:
        raise ValidationError("A location is required to add items to a full count", field="location_id")
    if await get_product(session, product_id) is None:
        raise NotFoundError("Product", product_id)

    expected_qty = await snapshot_quantity(session, product_id, location_id, sublocation_id)
    return await insert_count_item(
        session,
        count_id=count_id,
        product_id=product_id,
        location_id=location_id,
        expected_qty=expected_qty,
        sublocation_id=sublocation_id,
    )


# ===== Transitions =====


async def start_count(
    session: AsyncSession, count_id: int, expected_version: Optional[int] = None
) -> CycleCount:
    """Move a pending count to in_progress."""
    count = await get_count(session, count_id)
    target = _check_transition(count, "start", expected_version)
    count_number, status = count.count_number, count.status

    count.status = target.value
    count.started_at = _now()
    await _commit_transition(session, count_number, status, "start")
    logger.info(f"Started cycle count {count_number}")
    return await get_count(session, count_id)


async def complete_count(
    session: AsyncSession,
    count_id: int,
    force_if_incomplete: bool = False,
    expected_version: Optional[int] = None,
) -> CycleCount:
    """Submit an in-progress count for approval.

    At least one item must be counted. If some items are still uncounted
    the caller must pass ``force_if_incomplete`` after confirming with the
    operator; a warning is logged in that case.
    """
    count = await get_count(session, count_id)
    target = _check_transition(count, "complete", expected_version)
    count_number, status = count.count_number, count.status

    remaining = uncounted_items(count.items)
    if len(remaining) == len(count.items):
        raise ValidationError(
            f"Cycle count {count_number} has no counted items", field="items"
        )
    if remaining and not force_if_incomplete:
        raise ValidationError(
            f"{len(remaining)} of {len(count.items)} items in {count_number} have not been counted",
            field="force_if_incomplete",
        )
    if remaining:
        logger.warning(f"Completing cycle count {count_number} with {len(remaining)} uncounted items")

    count.status = target.value
    count.completed_at = _now()
    await _commit_transition(session, count_number, status, "complete")
    logger.info(f"Cycle count {count_number} submitted for approval")
    return await get_count(session, count_id)


async def reject_count(
    session: AsyncSession, count_id: int, expected_version: Optional[int] = None
) -> CycleCount:
    """Send a count back for a full recount.

    Every recorded quantity, note and counter stamp is wiped and the count
    returns to pending. This is a reset, not a partial undo.
    """
    count = await get_count(session, count_id)
    target = _check_transition(count, "reject", expected_version)
    count_number, status = count.count_number, count.status

    for item in count.items:
        item.counted_qty = None
        item.notes = None
        item.counted_by = None
        item.counted_at = None
        item.adjustment_approved = False
    count.status = target.value
    count.completed_at = None
    await _commit_transition(session, count_number, status, "reject")
    logger.info(f"Rejected cycle count {count_number}; {len(count.items)} items reset for recount")
    return await get_count(session, count_id)


async def cancel_count(
    session: AsyncSession, count_id: int, expected_version: Optional[int] = None
) -> CycleCount:
    """Cancel a count that has not been submitted. Inventory is untouched."""
    count = await get_count(session, count_id)
    target = _check_transition(count, "cancel", expected_version)
    count_number, status = count.count_number, count.status

    count.status = target.value
    await _commit_transition(session, count_number, status, "cancel")
    logger.info(f"Cancelled cycle count {count_number}")
    return await get_count(session, count_id)


# ===== Counting =====


async def record_count(
    session: AsyncSession,
    item_id: int,
    counted_qty: int,
    counted_by: str,
    notes: Optional[str] = None,
) -> CycleCountItem:
    """Record (or overwrite) the physical quantity for one item.

    Args:
        session: Database session
        item_id: ID of the count item
        counted_qty: Non-negative physical quantity
        counted_by: Acting user
        notes: None keeps existing notes, "" clears them, other text replaces them

    Returns:
        The updated item

    Raises:
        ValidationError: Quantity is negative or not an integer
        NotFoundError: The item does not exist
        InvalidStateError: The parent count is not in progress
    """
    if isinstance(counted_qty, bool) or not isinstance(counted_qty, int):
        raise ValidationError("Counted quantity must be a whole number", field="counted_qty")
    if counted_qty < 0:
        raise ValidationError("Counted quantity cannot be negative", field="counted_qty")

    item = await get_count_item(session, item_id)
    if item is None:
        raise NotFoundError("Count item", item_id)
    count = item.count
    # Held until commit; a racing transition cannot slip between check and write
    status = await lock_cycle_count_status(session, item.count_id)
    if status != CountStatus.IN_PROGRESS.value:
        raise InvalidStateError(
            count.count_number, status or count.status, "record counts on", [CountStatus.IN_PROGRESS.value]
        )

    item.counted_qty = counted_qty
    item.counted_by = counted_by
    item.counted_at = _now()
    if notes is not None:
        item.notes = notes or None
    await session.commit()
    logger.info(f"Recorded {counted_qty} for item {item_id} on {count.count_number}")
    return await get_count_item(session, item_id)  # type: ignore[return-value]


def find_item_by_scan(items: Iterable[CycleCountItem], token: str) -> Optional[CycleCountItem]:
    """Return the first item whose product SKU or barcode matches a scanned token."""
    scanned = normalize_scan_token(token)
    if not scanned:
        return None
    for item in items:
        product = item.product
        if normalize_scan_token(product.sku) == scanned:
            return item
        if product.barcode and normalize_scan_token(product.barcode) == scanned:
            return item
    return None


async def find_count_item_by_scan(
    session: AsyncSession, count_id: int, token: str
) -> Optional[CycleCountItem]:
    count = await get_count(session, count_id)
    return find_item_by_scan(count.items, token)


async def get_count_summary(session: AsyncSession, count_id: int) -> VarianceSummary:
    count = await get_count(session, count_id)
    return summarize(count.items)


# ===== Statistics =====

# Counts whose items feed the cross-count accuracy figures
CLOSED_STATUSES = (CountStatus.COMPLETED.value, CountStatus.CANCELLED.value)


@dataclass(frozen=True)
class CountStatistics:
    """Status tallies across counts plus the variance summary of closed counts.

    ``in_progress`` includes counts awaiting approval and ``completed``
    includes cancelled counts.
    """

    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    summary: VarianceSummary = field(default_factory=VarianceSummary)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status_counts": {
                "pending": self.pending,
                "in_progress": self.in_progress,
                "completed": self.completed,
            },
            "counted_items": self.summary.counted_items,
            "items_with_variance": self.summary.items_with_variance,
            "total_positive_variance": self.summary.total_positive_variance,
            "total_negative_variance": self.summary.total_negative_variance,
            "net_variance_cost": str(self.summary.net_variance_cost),
            "accuracy_rate": self.summary.accuracy_display,
        }


async def get_count_statistics(session: AsyncSession, location_id: Optional[int] = None) -> CountStatistics:
    """Tally counts by status and summarize the items of completed and cancelled counts."""
    by_status = await count_cycle_counts_by_status(session, location_id)
    closed_items = await list_count_items_by_status(session, CLOSED_STATUSES, location_id)
    return CountStatistics(
        pending=by_status.get(CountStatus.PENDING.value, 0),
        in_progress=(
            by_status.get(CountStatus.IN_PROGRESS.value, 0)
            + by_status.get(CountStatus.PENDING_APPROVAL.value, 0)
        ),
        completed=sum(by_status.get(status, 0) for status in CLOSED_STATUSES),
        summary=summarize(closed_items),
    )


# ===== Approval =====


async def approve_count(
    session: AsyncSession,
    count_id: int,
    approved_item_ids: Iterable[int],
    approved_by: str,
    expected_version: Optional[int] = None,
) -> ApprovalResult:
    """Complete a count, adjusting inventory for the approved variance items.

    Each approved item with a non-zero variance produces one adjustment of
    ``variance`` units at the item's position. Unapproved items keep their
    counted quantity on record but move no stock. The adjustments and the
    status change commit together: if any adjustment fails, nothing is
    applied and the count stays pending_approval.

    Args:
        session: Database session
        count_id: ID of the count
        approved_item_ids: Items whose variance should be applied (may be empty)
        approved_by: Acting user
        expected_version: Version the caller last saw, if it wants a stale check

    Returns:
        ApprovalResult with the completed count, the applied adjustments and
        the variance summary

    Raises:
        ValidationError: No approver, or ids that do not belong to the count
        InvalidStateError: The count is not pending approval
        DependencyFailure: The inventory store rejected an adjustment
    """
    if not approved_by:
        raise ValidationError("An approver is required", field="approved_by")

    count = await get_count(session, count_id)
    target = _check_transition(count, "approve", expected_version)
    count_number, status = count.count_number, count.status

    approved_ids = set(approved_item_ids)
    foreign_ids = approved_ids - {item.id for item in count.items}
    if foreign_ids:
        raise ValidationError(
            f"Items {sorted(foreign_ids)} do not belong to cycle count {count_number}",
            field="approved_item_ids",
        )

    summary = summarize(count.items)
    to_apply: Sequence[CycleCountItem] = [
        item for item in count.items if item.id in approved_ids and item.variance not in (None, 0)
    ]

    applied: list[AppliedAdjustment] = []
    current_item_id: Optional[int] = None
    try:
        for item in to_apply:
            current_item_id = item.id
            transaction = await adjust_inventory(
                session,
                product_id=item.product_id,
                location_id=item.location_id,
                delta=item.variance,
                sublocation_id=item.sublocation_id,
                transaction_type="cycle_count",
                reference_type="cycle_count",
                reference_id=count_number,
                reason=f"Cycle count adjustment: expected {item.expected_qty}, counted {item.counted_qty}",
                notes=item.notes,
                performed_by=approved_by,
            )
            item.adjustment_approved = True
            applied.append(
                AppliedAdjustment(
                    item_id=item.id,
                    product_id=item.product_id,
                    location_id=item.location_id,
                    sublocation_id=item.sublocation_id,
                    delta=transaction.qty_change,
                    qty_before=transaction.qty_before,
                    qty_after=transaction.qty_after,
                    transaction_id=transaction.id,
                )
            )

        count.status = target.value
        count.approved_at = _now()
        count.approved_by = approved_by
        current_item_id = None
        await session.commit()
    except InventoryAdjustmentError as e:
        await session.rollback()
        logger.error(f"Approval of cycle count {count_number} aborted: {e}")
        raise DependencyFailure(
            f"Inventory adjustment failed, no changes were applied: {e.reason}",
            item_id=current_item_id,
        ) from e
    except StaleDataError as e:
        await session.rollback()
        raise ConcurrentModificationError(count_number, status, "approve") from e
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Approval of cycle count {count_number} failed in the data store: {e}")
        raise DependencyFailure(
            "Inventory store error, no changes were applied", item_id=current_item_id
        ) from e

    logger.info(
        f"Approved cycle count {count_number} by {approved_by}: "
        f"{len(applied)} adjustments, net variance cost {summary.net_variance_cost}"
    )
    return ApprovalResult(
        count=await get_count(session, count_id),
        applied_adjustments=applied,
        summary=summary,
    )
