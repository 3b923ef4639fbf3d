"""Data-store access for locations, products, inventory and cycle counts."""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..exceptions import InventoryAdjustmentError
from .models import (
    CycleCount,
    CycleCountItem,
    InventoryRecord,
    InventoryTransaction,
    Location,
    Product,
    Sublocation,
)

logger = logging.getLogger(__name__)


# ===== Location Operations =====


async def create_location(session: AsyncSession, name: str) -> Location:
    """Create a new warehouse location.

    Args:
        session: Database session
        name: Display name of the location (e.g., "Main Warehouse")

    Returns:
        The created location
    """
    location = Location(name=name)
    session.add(location)
    await session.commit()
    await session.refresh(location)
    logger.info(f"Created location: {location.name} (id={location.id})")
    return location


async def get_location(session: AsyncSession, location_id: int) -> Optional[Location]:
    result = await session.execute(select(Location).where(Location.id == location_id))
    return result.scalar_one_or_none()


async def list_locations(session: AsyncSession) -> list[Location]:
    """List all locations ordered by name."""
    result = await session.execute(select(Location).order_by(Location.name))
    return list(result.scalars().all())


async def create_sublocation(
    session: AsyncSession, location_id: int, code: str, name: Optional[str] = None
) -> Sublocation:
    """Create a bin/shelf inside a location.

    Args:
        session: Database session
        location_id: ID of the parent location
        code: Short code printed on the bin label (e.g., "A-01-03")
        name: Optional human-readable name

    Returns:
        The created sublocation
    """
    sublocation = Sublocation(location_id=location_id, code=code, name=name)
    session.add(sublocation)
    await session.commit()
    await session.refresh(sublocation)
    logger.info(f"Created sublocation: {sublocation.code} (id={sublocation.id}, location_id={location_id})")
    return sublocation


# ===== Product Catalog =====


async def create_product(
    session: AsyncSession,
    sku: str,
    name: str,
    unit_cost: Decimal | float | int = 0,
    barcode: Optional[str] = None,
    abc_class: Optional[str] = None,
) -> Product:
    """Create a catalog product.

    Args:
        session: Database session
        sku: Unique stock keeping unit
        name: Product name
        unit_cost: Cost of one unit, used to value variances
        barcode: Optional scannable barcode
        abc_class: Optional ABC value tier ("A", "B" or "C")

    Returns:
        The created product
    """
    product = Product(
        sku=sku,
        name=name,
        unit_cost=Decimal(str(unit_cost)),
        barcode=barcode,
        abc_class=abc_class.upper() if abc_class else None,
    )
    session.add(product)
    await session.commit()
    await session.refresh(product)
    logger.info(f"Created product: {product.sku} (id={product.id})")
    return product


async def get_product(session: AsyncSession, product_id: int) -> Optional[Product]:
    result = await session.execute(select(Product).where(Product.id == product_id))
    return result.scalar_one_or_none()


async def lookup_product(session: AsyncSession, sku_or_barcode: str) -> Optional[Product]:
    """Find a product by SKU or barcode, case-insensitively.

    SKU matches take precedence over barcode matches.
    """
    token = sku_or_barcode.strip().lower()
    if not token:
        return None
    result = await session.execute(
        select(Product).where(func.lower(Product.sku) == token).order_by(Product.id).limit(1)
    )
    product = result.scalar_one_or_none()
    if product:
        return product
    result = await session.execute(
        select(Product).where(func.lower(Product.barcode) == token).order_by(Product.id).limit(1)
    )
    return result.scalar_one_or_none()


# ===== Inventory Store =====


def _position_filter(product_id: int, location_id: int, sublocation_id: Optional[int]) -> list[Any]:
    conditions = [
        InventoryRecord.product_id == product_id,
        InventoryRecord.location_id == location_id,
    ]
    if sublocation_id is None:
        conditions.append(InventoryRecord.sublocation_id.is_(None))
    else:
        conditions.append(InventoryRecord.sublocation_id == sublocation_id)
    return conditions


async def get_inventory_record(
    session: AsyncSession,
    product_id: int,
    location_id: int,
    sublocation_id: Optional[int] = None,
) -> Optional[InventoryRecord]:
    result = await session.execute(
        select(InventoryRecord)
        .where(*_position_filter(product_id, location_id, sublocation_id))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def set_inventory_quantity(
    session: AsyncSession,
    product_id: int,
    location_id: int,
    qty_on_hand: int,
    sublocation_id: Optional[int] = None,
    qty_reserved: int = 0,
) -> InventoryRecord:
    """Create or overwrite the stock record for one product position.

    Used for receiving and seeding; counted corrections go through
    ``adjust_inventory`` so they are logged.
    """
    record = await get_inventory_record(session, product_id, location_id, sublocation_id)
    if record is None:
        record = InventoryRecord(
            product_id=product_id,
            location_id=location_id,
            sublocation_id=sublocation_id,
        )
        session.add(record)
    record.qty_on_hand = qty_on_hand
    record.qty_reserved = qty_reserved
    await session.commit()
    await session.refresh(record)
    return record


async def snapshot_quantity(
    session: AsyncSession,
    product_id: int,
    location_id: int,
    sublocation_id: Optional[int] = None,
) -> int:
    """Return the current on-hand quantity for a product position (0 if none)."""
    record = await get_inventory_record(session, product_id, location_id, sublocation_id)
    return record.qty_on_hand if record else 0


async def list_inventory_records(
    session: AsyncSession, location_id: Optional[int] = None
) -> list[InventoryRecord]:
    """List stock records with their products, optionally for one location.

    Args:
        session: Database session
        location_id: Restrict to this location; None lists every location

    Returns:
        Records ordered by location, product and sublocation
    """
    query = select(InventoryRecord).options(selectinload(InventoryRecord.product))
    if location_id is not None:
        query = query.where(InventoryRecord.location_id == location_id)
    query = query.order_by(
        InventoryRecord.location_id, InventoryRecord.product_id, InventoryRecord.sublocation_id
    )
    result = await session.execute(query)
    return list(result.scalars().all())


async def adjust_inventory(
    session: AsyncSession,
    product_id: int,
    location_id: int,
    delta: int,
    sublocation_id: Optional[int] = None,
    transaction_type: str = "adjust",
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    performed_by: Optional[str] = None,
) -> InventoryTransaction:
    """Apply a quantity change to one product position and log it.

    The change is flushed but not committed; the caller owns the
    transaction so several adjustments can succeed or fail together.

    Raises:
        InventoryAdjustmentError: If the position has no stock record for a
            decrease, or the change would take on-hand below zero.
    """
    record = await get_inventory_record(session, product_id, location_id, sublocation_id)
    if record is None:
        if delta < 0:
            raise InventoryAdjustmentError(product_id, location_id, delta, "no stock record at this position")
        record = InventoryRecord(
            product_id=product_id,
            location_id=location_id,
            sublocation_id=sublocation_id,
            qty_on_hand=0,
            qty_reserved=0,
        )
        session.add(record)

    qty_before = record.qty_on_hand or 0
    qty_after = qty_before + delta
    if qty_after < 0:
        raise InventoryAdjustmentError(
            product_id, location_id, delta, f"on-hand would drop to {qty_after}"
        )

    record.qty_on_hand = qty_after
    transaction = InventoryTransaction(
        product_id=product_id,
        location_id=location_id,
        sublocation_id=sublocation_id,
        transaction_type=transaction_type,
        qty_before=qty_before,
        qty_change=delta,
        qty_after=qty_after,
        reference_type=reference_type,
        reference_id=reference_id,
        reason=reason,
        notes=notes,
        performed_by=performed_by,
    )
    session.add(transaction)
    await session.flush()
    logger.info(
        f"Adjusted product {product_id} at location {location_id}: {qty_before} -> {qty_after}"
    )
    return transaction


async def list_inventory_transactions(
    session: AsyncSession,
    reference_id: Optional[str] = None,
    product_id: Optional[int] = None,
    limit: int = 100,
) -> list[InventoryTransaction]:
    """List inventory transactions, newest first."""
    query = select(InventoryTransaction)
    if reference_id is not None:
        query = query.where(InventoryTransaction.reference_id == reference_id)
    if product_id is not None:
        query = query.where(InventoryTransaction.product_id == product_id)
    query = query.order_by(InventoryTransaction.id.desc()).limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())


# ===== Cycle Count Operations =====


def _count_load_options() -> list[Any]:
    return [
        selectinload(CycleCount.items).selectinload(CycleCountItem.product),
        selectinload(CycleCount.items).selectinload(CycleCountItem.sublocation),
        selectinload(CycleCount.location),
    ]


async def generate_count_number(
    session: AsyncSession, prefix: str = "CC", year: Optional[int] = None
) -> str:
    """Return the next count number, e.g. "CC-2026-00042".

    Sequences restart every year and continue after the highest number
    already issued for that year.
    """
    year = year or datetime.now(timezone.utc).year
    year_prefix = f"{prefix}-{year}-"
    result = await session.execute(
        select(CycleCount.count_number)
        .where(CycleCount.count_number.like(f"{year_prefix}%"))
        .order_by(CycleCount.count_number.desc())
        .limit(1)
    )
    last_number = result.scalar_one_or_none()

    next_sequence = 1
    if last_number:
        try:
            next_sequence = int(last_number[len(year_prefix):]) + 1
        except ValueError:
            logger.warning(f"Ignoring malformed count number {last_number}")
    return f"{year_prefix}{next_sequence:05d}"


async def create_cycle_count(
    session: AsyncSession,
    count_number: str,
    count_type: str,
    items: list[dict[str, Any]],
    location_id: Optional[int] = None,
    scheduled_date: Optional[date] = None,
    assigned_to: Optional[str] = None,
    blind_count: bool = False,
    notes: Optional[str] = None,
    created_by: Optional[str] = None,
) -> CycleCount:
    """Insert a cycle count together with its items in one commit.

    Args:
        session: Database session
        count_number: Unique human-readable number
        count_type: "cycle", "full" or "spot"
        items: Item column values (product_id, location_id, sublocation_id, expected_qty)
        location_id: Location in scope, None for a full count of all locations
        scheduled_date: Optional date the count is planned for
        assigned_to: Optional counter user identifier
        blind_count: Hide expected quantities from the counter
        notes: Optional free text
        created_by: User who scheduled the count

    Returns:
        The created count with items loaded
    """
    count = CycleCount(
        count_number=count_number,
        count_type=count_type,
        location_id=location_id,
        scheduled_date=scheduled_date,
        assigned_to=assigned_to,
        blind_count=blind_count,
        notes=notes,
        created_by=created_by,
        status="pending",
    )
    count.items = [CycleCountItem(**values) for values in items]
    session.add(count)
    await session.commit()
    logger.info(f"Created cycle count {count_number} (id={count.id}, items={len(items)})")
    return await get_cycle_count(session, count.id)  # type: ignore[return-value]


async def get_cycle_count(session: AsyncSession, count_id: int) -> Optional[CycleCount]:
    """Get a cycle count with items, products, sublocations and location loaded.

    Always reloads from the database so callers never act on a stale status.
    """
    result = await session.execute(
        select(CycleCount)
        .where(CycleCount.id == count_id)
        .options(*_count_load_options())
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_cycle_counts(
    session: AsyncSession,
    location_id: Optional[int] = None,
    status: Optional[str] = None,
    count_type: Optional[str] = None,
    assigned_to: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[CycleCount], int]:
    """List cycle counts with optional filtering and pagination.

    Args:
        session: Database session
        location_id: Only counts scoped to this location
        status: Only counts in this status
        count_type: Only counts of this type
        assigned_to: Only counts assigned to this user
        start_date: Scheduled on or after this date
        end_date: Scheduled on or before this date
        limit: Maximum number of counts to return
        offset: Number of counts to skip

    Returns:
        Tuple of (counts, newest first, total count matching filters)
    """
    base_filter = select(CycleCount)

    if location_id is not None:
        base_filter = base_filter.where(CycleCount.location_id == location_id)
    if status:
        base_filter = base_filter.where(CycleCount.status == status)
    if count_type:
        base_filter = base_filter.where(CycleCount.count_type == count_type)
    if assigned_to:
        base_filter = base_filter.where(CycleCount.assigned_to == assigned_to)
    if start_date:
        base_filter = base_filter.where(CycleCount.scheduled_date >= start_date)
    if end_date:
        base_filter = base_filter.where(CycleCount.scheduled_date <= end_date)

    count_q = select(func.count()).select_from(base_filter.subquery())
    total = (await session.execute(count_q)).scalar() or 0

    query = (
        base_filter.options(*_count_load_options())
        .order_by(CycleCount.created_at.desc(), CycleCount.id.desc())
        .limit(limit)
        .offset(offset)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(query)
    return list(result.scalars().all()), total


async def get_count_item(session: AsyncSession, item_id: int) -> Optional[CycleCountItem]:
    """Get a count item with its product, sublocation and parent count loaded.

    The parent count is refreshed together with its items, so a count object
    another caller already holds keeps a loaded item list.
    """
    result = await session.execute(
        select(CycleCountItem)
        .where(CycleCountItem.id == item_id)
        .options(
            selectinload(CycleCountItem.product),
            selectinload(CycleCountItem.sublocation),
            selectinload(CycleCountItem.count)
            .selectinload(CycleCount.items)
            .selectinload(CycleCountItem.product),
            selectinload(CycleCountItem.count)
            .selectinload(CycleCount.items)
            .selectinload(CycleCountItem.sublocation),
            selectinload(CycleCountItem.count).selectinload(CycleCount.location),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def add_count_item(
    session: AsyncSession,
    count_id: int,
    product_id: int,
    location_id: int,
    expected_qty: int,
    sublocation_id: Optional[int] = None,
) -> CycleCountItem:
    """Insert one item into an existing count."""
    item = CycleCountItem(
        count_id=count_id,
        product_id=product_id,
        location_id=location_id,
        sublocation_id=sublocation_id,
        expected_qty=expected_qty,
    )
    session.add(item)
    await session.commit()
    logger.info(f"Added product {product_id} to cycle count id={count_id} (expected={expected_qty})")
    return await get_count_item(session, item.id)  # type: ignore[return-value]


async def list_count_variances(session: AsyncSession, count_id: int) -> list[CycleCountItem]:
    """List counted items of a count whose variance is non-zero.

    The variance is evaluated in SQL from counted and expected quantities.
    """
    result = await session.execute(
        select(CycleCountItem)
        .where(
            CycleCountItem.count_id == count_id,
            CycleCountItem.counted_qty.isnot(None),
            CycleCountItem.variance != 0,
        )
        .options(selectinload(CycleCountItem.product), selectinload(CycleCountItem.sublocation))
        .order_by(func.abs(CycleCountItem.variance).desc(), CycleCountItem.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def lock_cycle_count_status(session: AsyncSession, count_id: int) -> Optional[str]:
    """Read a count's status while holding a row lock until the transaction ends.

    Recording against a count takes this lock so that a concurrent status
    change either waits for the record to commit or is seen by it.
    """
    result = await session.execute(
        select(CycleCount.status).where(CycleCount.id == count_id).with_for_update()
    )
    return result.scalar_one_or_none()


# ===== Count Statistics =====


async def count_cycle_counts_by_status(
    session: AsyncSession, location_id: Optional[int] = None
) -> dict[str, int]:
    """Return the number of counts per status, optionally for one location."""
    query = select(CycleCount.status, func.count(CycleCount.id)).group_by(CycleCount.status)
    if location_id is not None:
        query = query.where(CycleCount.location_id == location_id)
    result = await session.execute(query)
    return {status: total for status, total in result.all()}


async def list_count_items_by_status(
    session: AsyncSession,
    statuses: Sequence[str],
    location_id: Optional[int] = None,
) -> list[CycleCountItem]:
    """List the items of every count in the given statuses, with products loaded."""
    query = (
        select(CycleCountItem)
        .join(CycleCount, CycleCountItem.count_id == CycleCount.id)
        .where(CycleCount.status.in_(list(statuses)))
        .options(selectinload(CycleCountItem.product))
        .order_by(CycleCountItem.id)
    )
    if location_id is not None:
        query = query.where(CycleCount.location_id == location_id)
    result = await session.execute(query)
    return list(result.scalars().all())
