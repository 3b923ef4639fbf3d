"""FastMCP server exposing the cycle count lifecycle as agent tools."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from .database.crud import list_cycle_counts
from .database.engine import AsyncSessionLocal, close_db, init_db
from .database.models import CountStatus, CycleCount, CycleCountItem
from .exceptions import CycleCountError
from .lifecycle import (
    approve_count,
    cancel_count,
    complete_count,
    find_item_by_scan,
    get_count,
    get_count_statistics,
    record_count,
    reject_count,
    schedule_count,
    start_count,
)
from .selection import SelectionRule
from .utils import parse_schedule_date
from .variance import summarize, variance_items

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: Any) -> AsyncGenerator[None, None]:
    """Manage database lifecycle during server startup and shutdown."""
    logger.info("Starting cycle count MCP server...")
    try:
        await init_db()
        logger.info("Database initialized successfully")
        yield
    finally:
        logger.info("Shutting down server...")
        await close_db()
        logger.info("Server shutdown complete")


mcp = FastMCP(name="stockcount", lifespan=lifespan)


def _hides_expected(count: CycleCount) -> bool:
    return count.blind_count and count.status in (CountStatus.PENDING.value, CountStatus.IN_PROGRESS.value)


def _item_view(item: CycleCountItem, hide_expected: bool) -> dict[str, Any]:
    view: dict[str, Any] = {
        "id": item.id,
        "sku": item.product.sku,
        "name": item.product.name,
        "sublocation": item.sublocation.code if item.sublocation else None,
        "counted_qty": item.counted_qty,
        "notes": item.notes,
    }
    if not hide_expected:
        view["expected_qty"] = item.expected_qty
        view["variance"] = item.variance
    return view


def _count_view(count: CycleCount, include_items: bool = False) -> dict[str, Any]:
    hide = _hides_expected(count)
    summary = summarize(count.items)
    view: dict[str, Any] = {
        "id": count.id,
        "count_number": count.count_number,
        "count_type": count.count_type,
        "status": count.status,
        "location": count.location.name if count.location else "All Locations",
        "scheduled_date": count.scheduled_date.isoformat() if count.scheduled_date else None,
        "assigned_to": count.assigned_to,
        "blind_count": count.blind_count,
        "version": count.version,
        "progress": f"{summary.counted_items}/{summary.total_items}",
    }
    if not hide:
        view["items_with_variance"] = summary.items_with_variance
        view["accuracy_rate"] = summary.accuracy_display
        view["net_variance_cost"] = str(summary.net_variance_cost)
    if include_items:
        view["items"] = [_item_view(item, hide) for item in count.items]
    return view


async def schedule_cycle_count(
    count_type: str,
    location_id: Optional[int] = None,
    scheduled_date: str = "",
    assigned_to: str = "",
    blind_count: bool = False,
    notes: str = "",
    selection: str = "all",
    sample_size: Optional[int] = None,
    product_ids: Optional[list[int]] = None,
    abc_class: str = "all",
    acting_user: str = "",
) -> dict[str, Any]:
    """Schedule a new inventory count.

    Args:
        count_type: "cycle", "full" (may span all locations) or "spot"
        location_id: Location to count; leave empty only for full counts
        scheduled_date: When to count, e.g. "2026-11-02", "tomorrow", "in 3 days"
        assigned_to: User who will perform the count
        blind_count: Hide expected quantities from the counter
        notes: Free-text notes
        selection: "all", "random", "specific" or "abc"
        sample_size: Number of products for a random selection (defaults to the configured size)
        product_ids: Products for a specific selection
        abc_class: "A", "B", "C" or "all" for an ABC selection
        acting_user: Who is scheduling the count

    Returns:
        Dictionary with status, message and the new count
    """
    parsed_date = parse_schedule_date(scheduled_date) if scheduled_date else None
    if scheduled_date and parsed_date is None:
        raise ToolError(f"Could not understand the date '{scheduled_date}'")
    rule = SelectionRule(
        mode=selection,
        sample_size=sample_size,
        product_ids=product_ids or [],
        abc_class=abc_class,
    )
    try:
        async with AsyncSessionLocal() as session:
            count = await schedule_count(
                session,
                count_type=count_type,
                location_id=location_id,
                scheduled_date=parsed_date,
                assigned_to=assigned_to or None,
                blind_count=blind_count,
                notes=notes or None,
                selection=rule,
                created_by=acting_user or None,
            )
            return {
                "status": "success",
                "message": f"Scheduled {count.count_number} with {len(count.items)} items",
                "cycle_count": _count_view(count),
            }
    except CycleCountError as e:
        raise ToolError(e.message)
    except Exception as e:
        logger.exception("Error scheduling cycle count")
        raise ToolError(f"Failed to schedule cycle count: {str(e)}")


async def start_cycle_count(count_id: int) -> dict[str, Any]:
    """Start a pending count so items can be recorded.

    Args:
        count_id: ID of the cycle count

    Returns:
        Dictionary with status, message and the count with its items
    """
    try:
        async with AsyncSessionLocal() as session:
            count = await start_count(session, count_id)
            return {
                "status": "success",
                "message": f"Started {count.count_number}",
                "cycle_count": _count_view(count, include_items=True),
            }
    except CycleCountError as e:
        raise ToolError(e.message)
    except Exception as e:
        logger.exception("Error starting cycle count")
        raise ToolError(f"Failed to start cycle count: {str(e)}")


async def scan_item(count_id: int, code: str) -> dict[str, Any]:
    """Find which item of a count a scanned SKU or barcode belongs to.

    Args:
        count_id: ID of the cycle count
        code: Scanned SKU or barcode (case-insensitive)

    Returns:
        Dictionary with found flag and the matching item
    """
    try:
        async with AsyncSessionLocal() as session:
            count = await get_count(session, count_id)
            item = find_item_by_scan(count.items, code)
            if item is None:
                return {"status": "not_found", "message": f"Product not found: {code}"}
            return {"status": "success", "item": _item_view(item, _hides_expected(count))}
    except CycleCountError as e:
        raise ToolError(e.message)
    except Exception as e:
        logger.exception("Error scanning item")
        raise ToolError(f"Failed to look up scanned code: {str(e)}")


async def record_item_count(
    item_id: int,
    counted_qty: int,
    counted_by: str,
    notes: Optional[str] = None,
) -> dict[str, Any]:
    """Record the physical quantity counted for one item.

    Re-recording the same item overwrites the previous value.

    Args:
        item_id: ID of the count item
        counted_qty: Quantity found on the shelf (0 or more)
        counted_by: Who counted it
        notes: Optional notes ("" clears existing notes)

    Returns:
        Dictionary with status and the updated item
    """
    try:
        async with AsyncSessionLocal() as session:
            item = await record_count(session, item_id, counted_qty, counted_by, notes)
            return {
                "status": "success",
                "message": f"Recorded {counted_qty} x {item.product.sku}",
                "item": _item_view(item, _hides_expected(item.count)),
            }
    except CycleCountError as e:
        raise ToolError(e.message)
    except Exception as e:
        logger.exception("Error recording count")
        raise ToolError(f"Failed to record count: {str(e)}")


async def complete_cycle_count(count_id: int, force_if_incomplete: bool = False) -> dict[str, Any]:
    """Submit a count for approval.

    Args:
        count_id: ID of the cycle count
        force_if_incomplete: Confirm submitting while some items are uncounted

    Returns:
        Dictionary with status, message and the count summary
    """
    try:
        async with AsyncSessionLocal() as session:
            count = await complete_count(session, count_id, force_if_incomplete=force_if_incomplete)
            return {
                "status": "success",
                "message": f"{count.count_number} is awaiting approval",
                "cycle_count": _count_view(count),
            }
    except CycleCountError as e:
        raise ToolError(e.message)
    except Exception as e:
        logger.exception("Error completing cycle count")
        raise ToolError(f"Failed to complete cycle count: {str(e)}")


async def reject_cycle_count(count_id: int) -> dict[str, Any]:
    """Reject a submitted count; every recorded quantity is cleared for a full recount.

    Args:
        count_id: ID of the cycle count

    Returns:
        Dictionary with status and message
    """
    try:
        async with AsyncSessionLocal() as session:
            count = await reject_count(session, count_id)
            return {
                "status": "success",
                "message": f"{count.count_number} rejected; all counts cleared for recount",
                "cycle_count": _count_view(count),
            }
    except CycleCountError as e:
        raise ToolError(e.message)
    except Exception as e:
        logger.exception("Error rejecting cycle count")
        raise ToolError(f"Failed to reject cycle count: {str(e)}")


async def cancel_cycle_count(count_id: int) -> dict[str, Any]:
    """Cancel a count that has not been submitted.

    Args:
        count_id: ID of the cycle count

    Returns:
        Dictionary with status and message
    """
    try:
        async with AsyncSessionLocal() as session:
            count = await cancel_count(session, count_id)
            return {"status": "success", "message": f"Cancelled {count.count_number}"}
    except CycleCountError as e:
        raise ToolError(e.message)
    except Exception as e:
        logger.exception("Error cancelling cycle count")
        raise ToolError(f"Failed to cancel cycle count: {str(e)}")


async def review_variances(count_id: int) -> dict[str, Any]:
    """List the variance items of a submitted count for approval review.

    Args:
        count_id: ID of the cycle count

    Returns:
        Dictionary with variance items (largest drift first) and summary
    """
    try:
        async with AsyncSessionLocal() as session:
            count = await get_count(session, count_id)
            if _hides_expected(count):
                raise ToolError("Variances are hidden until a blind count is submitted")
            summary = summarize(count.items)
            return {
                "status": "success",
                "summary": summary.to_dict(),
                "variances": [_item_view(item, False) for item in variance_items(count.items)],
            }
    except ToolError:
        raise
    except CycleCountError as e:
        raise ToolError(e.message)
    except Exception as e:
        logger.exception("Error reviewing variances")
        raise ToolError(f"Failed to review variances: {str(e)}")


async def approve_cycle_count(
    count_id: int,
    approved_by: str,
    approved_item_ids: Optional[list[int]] = None,
    approve_all: bool = False,
) -> dict[str, Any]:
    """Approve a submitted count and adjust inventory for approved variances.

    Args:
        count_id: ID of the cycle count
        approved_by: Who approves the count
        approved_item_ids: Variance items whose adjustment should be applied
        approve_all: Apply every variance item instead of listing ids

    Returns:
        Dictionary with status, message and the applied adjustments
    """
    try:
        async with AsyncSessionLocal() as session:
            item_ids = approved_item_ids or []
            if approve_all:
                count = await get_count(session, count_id)
                item_ids = [item.id for item in variance_items(count.items)]
            result = await approve_count(session, count_id, item_ids, approved_by)
            return {
                "status": "success",
                "message": (
                    f"Approved {result.count.count_number}: "
                    f"{result.adjustment_count} inventory adjustment(s) applied"
                ),
                "net_variance_cost": str(result.summary.net_variance_cost),
                "adjustments": [
                    {"item_id": adj.item_id, "product_id": adj.product_id, "delta": adj.delta}
                    for adj in result.applied_adjustments
                ],
            }
    except CycleCountError as e:
        raise ToolError(e.message)
    except Exception as e:
        logger.exception("Error approving cycle count")
        raise ToolError(f"Failed to approve cycle count: {str(e)}")


async def list_counts(
    status: Optional[str] = None,
    location_id: Optional[int] = None,
    assigned_to: Optional[str] = None,
) -> dict[str, Any]:
    """List cycle counts, newest first.

    Args:
        status: Optional status filter ("pending", "in_progress", "pending_approval", ...)
        location_id: Optional location filter
        assigned_to: Optional counter filter

    Returns:
        Dictionary with the matching counts
    """
    try:
        async with AsyncSessionLocal() as session:
            counts, total = await list_cycle_counts(
                session, location_id=location_id, status=status, assigned_to=assigned_to
            )
            return {
                "status": "success",
                "total": total,
                "cycle_counts": [_count_view(count) for count in counts],
            }
    except Exception as e:
        logger.exception("Error listing cycle counts")
        raise ToolError(f"Failed to list cycle counts: {str(e)}")


async def count_statistics(location_id: Optional[int] = None) -> dict[str, Any]:
    """Show how many counts are pending, in progress and completed, and overall accuracy.

    Accuracy and variance totals cover the items of completed and cancelled counts.

    Args:
        location_id: Optional location filter

    Returns:
        Dictionary with status counts and variance totals
    """
    try:
        async with AsyncSessionLocal() as session:
            stats = await get_count_statistics(session, location_id)
            return {"status": "success", **stats.to_dict()}
    except Exception as e:
        logger.exception("Error computing count statistics")
        raise ToolError(f"Failed to compute count statistics: {str(e)}")


for _tool in (
    schedule_cycle_count,
    start_cycle_count,
    scan_item,
    record_item_count,
    complete_cycle_count,
    reject_cycle_count,
    cancel_cycle_count,
    review_variances,
    approve_cycle_count,
    list_counts,
    count_statistics,
):
    mcp.tool(_tool)


def main() -> None:
    """Entry point for the MCP server."""
    logger.info("Initializing cycle count MCP server")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
