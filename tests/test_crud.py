"""Tests for database CRUD operations."""

from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from stockcount.database.crud import (
    adjust_inventory,
    count_cycle_counts_by_status,
    create_cycle_count,
    create_product,
    generate_count_number,
    get_inventory_record,
    list_count_items_by_status,
    list_count_variances,
    list_cycle_counts,
    list_inventory_records,
    list_locations,
    lock_cycle_count_status,
    lookup_product,
    snapshot_quantity,
)
from stockcount.exceptions import InventoryAdjustmentError
from stockcount.lifecycle import cancel_count, record_count, schedule_count, start_count


class TestLocationsAndProducts:
    """Tests for location and product operations."""

    @pytest.mark.asyncio
    async def test_list_locations_sorted(self, db_session: AsyncSession, warehouse: SimpleNamespace) -> None:
        locations = await list_locations(db_session)

        assert [loc.name for loc in locations] == ["Main Warehouse", "Overflow"]

    @pytest.mark.asyncio
    async def test_product_abc_class_upper(self, db_session: AsyncSession, warehouse: SimpleNamespace) -> None:
        assert warehouse.widget.abc_class == "A"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "token,sku",
        [("WID-001", "WID-001"), ("wid-001", "WID-001"), ("0123456789012", "WID-001"), ("cbl-xyz", "CAB-003")],
    )
    async def test_lookup_product(
        self, db_session: AsyncSession, warehouse: SimpleNamespace, token: str, sku: str
    ) -> None:
        product = await lookup_product(db_session, token)

        assert product is not None
        assert product.sku == sku

    @pytest.mark.asyncio
    async def test_lookup_product_miss(self, db_session: AsyncSession, warehouse: SimpleNamespace) -> None:
        assert await lookup_product(db_session, "missing") is None
        assert await lookup_product(db_session, "   ") is None

    @pytest.mark.asyncio
    async def test_lookup_product_skus_differing_in_case(
        self, db_session: AsyncSession, warehouse: SimpleNamespace
    ) -> None:
        first = await create_product(db_session, "abc-1", "Lower")
        await create_product(db_session, "ABC-1", "Upper")

        product = await lookup_product(db_session, "ABC-1")

        assert product is not None
        assert product.id == first.id


class TestInventoryStore:
    """Tests for inventory records and adjustments."""

    @pytest.mark.asyncio
    async def test_snapshot_quantity(self, db_session: AsyncSession, warehouse: SimpleNamespace) -> None:
        assert await snapshot_quantity(
            db_session, warehouse.widget.id, warehouse.main.id, warehouse.bin_a.id
        ) == 100
        # The bin record is distinct from the location-level position
        assert await snapshot_quantity(db_session, warehouse.widget.id, warehouse.main.id) == 0

    @pytest.mark.asyncio
    async def test_list_inventory_records(self, db_session: AsyncSession, warehouse: SimpleNamespace) -> None:
        everything = await list_inventory_records(db_session)
        main_only = await list_inventory_records(db_session, warehouse.main.id)

        assert len(everything) == 4
        assert [r.product.sku for r in main_only] == ["WID-001", "GAD-002", "CAB-003"]

    @pytest.mark.asyncio
    async def test_adjust_logs_transaction(self, db_session: AsyncSession, warehouse: SimpleNamespace) -> None:
        transaction = await adjust_inventory(
            db_session,
            warehouse.gadget.id,
            warehouse.main.id,
            -4,
            reference_id="CC-2026-00001",
            performed_by="manager",
        )
        await db_session.commit()

        assert transaction.id is not None
        assert (transaction.qty_before, transaction.qty_change, transaction.qty_after) == (50, -4, 46)
        record = await get_inventory_record(db_session, warehouse.gadget.id, warehouse.main.id)
        assert record is not None
        assert record.qty_on_hand == 46

    @pytest.mark.asyncio
    async def test_adjust_creates_missing_position_for_increase(
        self, db_session: AsyncSession, warehouse: SimpleNamespace
    ) -> None:
        transaction = await adjust_inventory(db_session, warehouse.cable.id, warehouse.overflow.id, 6)
        await db_session.commit()

        assert transaction.qty_before == 0
        assert await snapshot_quantity(db_session, warehouse.cable.id, warehouse.overflow.id) == 6

    @pytest.mark.asyncio
    async def test_adjust_cannot_go_negative(self, db_session: AsyncSession, warehouse: SimpleNamespace) -> None:
        widget_id, overflow_id = warehouse.widget.id, warehouse.overflow.id

        with pytest.raises(InventoryAdjustmentError) as exc_info:
            await adjust_inventory(db_session, widget_id, overflow_id, -8)

        assert exc_info.value.delta == -8
        await db_session.rollback()
        assert await snapshot_quantity(db_session, widget_id, overflow_id) == 7

    @pytest.mark.asyncio
    async def test_adjust_missing_position_decrease(
        self, db_session: AsyncSession, warehouse: SimpleNamespace
    ) -> None:
        with pytest.raises(InventoryAdjustmentError):
            await adjust_inventory(db_session, warehouse.cable.id, warehouse.overflow.id, -1)


class TestCycleCountQueries:
    """Tests for cycle count persistence."""

    @pytest.mark.asyncio
    async def test_generate_count_number(self, db_session: AsyncSession, warehouse: SimpleNamespace) -> None:
        assert await generate_count_number(db_session, "CC", 2026) == "CC-2026-00001"

        await create_cycle_count(db_session, "CC-2026-00041", "cycle", [], location_id=warehouse.main.id)

        assert await generate_count_number(db_session, "CC", 2026) == "CC-2026-00042"
        assert await generate_count_number(db_session, "CC", 2027) == "CC-2027-00001"
        assert await generate_count_number(db_session, "SC", 2026) == "SC-2026-00001"

    @pytest.mark.asyncio
    async def test_list_cycle_counts_filters(self, db_session: AsyncSession, warehouse: SimpleNamespace) -> None:
        await schedule_count(
            db_session, "cycle", location_id=warehouse.main.id, assigned_to="alice",
            scheduled_date=date(2026, 11, 2),
        )
        await schedule_count(
            db_session, "spot", location_id=warehouse.overflow.id, scheduled_date=date(2026, 12, 1)
        )
        await schedule_count(db_session, "full")

        counts, total = await list_cycle_counts(db_session)
        assert total == 3
        assert len(counts) == 3

        by_location, total = await list_cycle_counts(db_session, location_id=warehouse.overflow.id)
        assert total == 1
        assert by_location[0].count_type == "spot"

        assigned, total = await list_cycle_counts(db_session, assigned_to="alice")
        assert total == 1
        assert assigned[0].location_id == warehouse.main.id

        dated, total = await list_cycle_counts(
            db_session, start_date=date(2026, 11, 15), end_date=date(2026, 12, 31)
        )
        assert [c.count_type for c in dated] == ["spot"]

        full, total = await list_cycle_counts(db_session, count_type="full", status="pending")
        assert total == 1
        assert full[0].location_id is None

    @pytest.mark.asyncio
    async def test_list_cycle_counts_paginates(self, db_session: AsyncSession, warehouse: SimpleNamespace) -> None:
        for _ in range(3):
            await schedule_count(db_session, "cycle", location_id=warehouse.main.id)

        page, total = await list_cycle_counts(db_session, limit=2, offset=0)
        rest, _ = await list_cycle_counts(db_session, limit=2, offset=2)

        assert total == 3
        assert len(page) == 2
        assert len(rest) == 1
        # Newest first
        assert page[0].count_number.endswith("-00003")

    @pytest.mark.asyncio
    async def test_list_count_variances(self, db_session: AsyncSession, in_progress_count, warehouse: SimpleNamespace) -> None:
        by_product = {item.product_id: item for item in in_progress_count.items}
        await record_count(db_session, by_product[warehouse.widget.id].id, 95, "alice")
        await record_count(db_session, by_product[warehouse.gadget.id].id, 50, "alice")
        await record_count(db_session, by_product[warehouse.cable.id].id, 31, "alice")

        variances = await list_count_variances(db_session, in_progress_count.id)

        assert [item.product_id for item in variances] == [warehouse.cable.id, warehouse.widget.id]
        assert [item.variance for item in variances] == [11, -5]

    @pytest.mark.asyncio
    async def test_lock_cycle_count_status(self, db_session: AsyncSession, in_progress_count) -> None:
        assert await lock_cycle_count_status(db_session, in_progress_count.id) == "in_progress"
        assert await lock_cycle_count_status(db_session, 9999) is None


class TestCountStatistics:
    """Tests for cross-count status tallies."""

    @pytest.mark.asyncio
    async def test_count_cycle_counts_by_status(self, db_session: AsyncSession, warehouse: SimpleNamespace) -> None:
        started = await schedule_count(db_session, "cycle", location_id=warehouse.main.id)
        await start_count(db_session, started.id)
        dropped = await schedule_count(db_session, "spot", location_id=warehouse.overflow.id)
        await cancel_count(db_session, dropped.id)
        await schedule_count(db_session, "cycle", location_id=warehouse.main.id)

        assert await count_cycle_counts_by_status(db_session) == {
            "in_progress": 1,
            "cancelled": 1,
            "pending": 1,
        }
        assert await count_cycle_counts_by_status(db_session, location_id=warehouse.overflow.id) == {
            "cancelled": 1
        }

    @pytest.mark.asyncio
    async def test_list_count_items_by_status(self, db_session: AsyncSession, warehouse: SimpleNamespace) -> None:
        main_count = await schedule_count(db_session, "cycle", location_id=warehouse.main.id)
        await cancel_count(db_session, main_count.id)
        await schedule_count(db_session, "cycle", location_id=warehouse.overflow.id)

        items = await list_count_items_by_status(db_session, ["cancelled"])

        assert {item.product.sku for item in items} == {"WID-001", "GAD-002", "CAB-003"}
        assert await list_count_items_by_status(db_session, ["cancelled"], location_id=warehouse.overflow.id) == []
