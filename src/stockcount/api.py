"""FastAPI REST API for warehouse cycle counts."""

import logging
import os
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Annotated, Any, Literal, Optional

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

# Load environment variables from .env file (find it relative to this file)
_env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(_env_path)

from .database.crud import (  # noqa: E402
    create_location,
    create_product,
    create_sublocation,
    get_location,
    list_count_variances,
    list_cycle_counts,
    list_inventory_transactions,
    list_locations,
    lookup_product,
    set_inventory_quantity,
)
from .database.engine import AsyncSessionLocal, close_db, init_db  # noqa: E402
from .database.models import CountStatus, CycleCount, CycleCountItem  # noqa: E402
from .exceptions import (  # noqa: E402
    CycleCountError,
    DependencyFailure,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from .lifecycle import (  # noqa: E402
    add_item_to_count,
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
from .selection import SelectionRule  # noqa: E402
from .variance import summarize  # noqa: E402

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"

# Statuses in which a blind count hides expected quantities from counters
BLIND_STATUSES = {CountStatus.PENDING.value, CountStatus.IN_PROGRESS.value}


# Pydantic models for API
class LocationCreate(BaseModel):
    name: str = Field(..., min_length=1, description="Name of the location")


class SublocationCreate(BaseModel):
    code: str = Field(..., min_length=1, description="Bin/shelf code")
    name: Optional[str] = None


class ProductCreate(BaseModel):
    sku: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    unit_cost: Decimal = Field(Decimal("0"), ge=0)
    barcode: Optional[str] = None
    abc_class: Optional[Literal["A", "B", "C"]] = None


class InventorySet(BaseModel):
    product_id: int
    location_id: int
    sublocation_id: Optional[int] = None
    qty_on_hand: int = Field(..., ge=0)
    qty_reserved: int = Field(0, ge=0)


class CountSchedule(BaseModel):
    count_type: Literal["cycle", "full", "spot"]
    location_id: Optional[int] = Field(None, description="Required unless count_type is full")
    scheduled_date: Optional[date] = None
    assigned_to: Optional[str] = None
    blind_count: bool = False
    notes: Optional[str] = None
    selection: Literal["all", "random", "specific", "abc"] = "all"
    sample_size: Optional[int] = Field(None, ge=1, description="Defaults to the configured random sample size")
    product_ids: list[int] = Field(default_factory=list)
    abc_class: Literal["A", "B", "C", "all"] = "all"


class CountItemAdd(BaseModel):
    product_id: int
    sublocation_id: Optional[int] = None
    location_id: Optional[int] = None


class CountRecord(BaseModel):
    counted_qty: int
    notes: Optional[str] = None


class Transition(BaseModel):
    expected_version: Optional[int] = None


class CountComplete(Transition):
    force_if_incomplete: bool = False


class CountApprove(Transition):
    approved_item_ids: list[int] = Field(default_factory=list)


def _money(value: Optional[Decimal]) -> str:
    return str(value if value is not None else Decimal("0"))


def _serialize_item(item: CycleCountItem, hide_expected: bool = False) -> dict[str, Any]:
    """Render a count item, withholding expected quantities on blind counts."""
    data: dict[str, Any] = {
        "id": item.id,
        "product": {
            "id": item.product.id,
            "sku": item.product.sku,
            "name": item.product.name,
            "barcode": item.product.barcode,
            "unit_cost": _money(item.product.unit_cost),
        },
        "location_id": item.location_id,
        "sublocation": (
            {"id": item.sublocation.id, "code": item.sublocation.code, "name": item.sublocation.name}
            if item.sublocation
            else None
        ),
        "counted_qty": item.counted_qty,
        "notes": item.notes,
        "counted_by": item.counted_by,
        "counted_at": item.counted_at.isoformat() if item.counted_at else None,
        "adjustment_approved": item.adjustment_approved,
    }
    if not hide_expected:
        data["expected_qty"] = item.expected_qty
        data["variance"] = item.variance
        data["variance_percent"] = item.variance_percent
    return data


def _serialize_count(count: CycleCount, include_items: bool = True) -> dict[str, Any]:
    hide_expected = count.blind_count and count.status in BLIND_STATUSES
    data: dict[str, Any] = {
        "id": count.id,
        "count_number": count.count_number,
        "count_type": count.count_type,
        "status": count.status,
        "location": {"id": count.location.id, "name": count.location.name} if count.location else None,
        "scheduled_date": count.scheduled_date.isoformat() if count.scheduled_date else None,
        "assigned_to": count.assigned_to,
        "blind_count": count.blind_count,
        "notes": count.notes,
        "created_by": count.created_by,
        "created_at": count.created_at.isoformat() if count.created_at else None,
        "started_at": count.started_at.isoformat() if count.started_at else None,
        "completed_at": count.completed_at.isoformat() if count.completed_at else None,
        "approved_at": count.approved_at.isoformat() if count.approved_at else None,
        "approved_by": count.approved_by,
        "version": count.version,
    }
    summary = summarize(count.items).to_dict()
    if hide_expected:
        summary = {key: summary[key] for key in ("total_items", "counted_items", "progress_percent")}
    data["summary"] = summary
    if include_items:
        data["items"] = [_serialize_item(item, hide_expected) for item in count.items]
    return data


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage database lifecycle."""
    logger.info("Starting Cycle Count API...")
    await init_db()
    logger.info("Database initialized")
    yield
    logger.info("Shutting down...")
    await close_db()


# Create FastAPI app
app = FastAPI(
    title="Cycle Count API",
    description="REST API for scheduling, recording and approving warehouse cycle counts",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration from environment
_cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
ALLOWED_ORIGINS = [origin.strip() for origin in _cors_origins.split(",") if origin.strip()]

_is_production = os.getenv("ENV", "development").lower() in ("production", "prod")
if _is_production and "*" in ALLOWED_ORIGINS:
    raise ValueError("CORS_ORIGINS cannot be '*' in production when credentials are enabled")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Rate limiting
limiter = Limiter(key_func=get_remote_address, default_limits=["120/minute"])
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return JSON 429 with Retry-After header."""
    retry_after = exc.detail.split(" ")[-1] if exc.detail else "60"
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded"},
        headers={"Retry-After": retry_after},
    )


@app.exception_handler(CycleCountError)
async def cycle_count_error_handler(request: Request, exc: CycleCountError) -> JSONResponse:
    """Map lifecycle errors to HTTP responses the UI can show directly."""
    if isinstance(exc, NotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, InvalidStateError):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, ValidationError):
        status_code = 422
    elif isinstance(exc, DependencyFailure):
        status_code = status.HTTP_502_BAD_GATEWAY
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})


@app.get("/health")
async def health_check():
    """Health check endpoint - verifies DB connectivity."""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "dependencies": {"database": "healthy"},
        }
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "dependencies": {"database": "unhealthy"},
            },
        )


# Versioned endpoints, mounted at both /api and /api/v1
api_router = APIRouter()


async def get_acting_user(
    x_acting_user: Annotated[str | None, Header()] = None,
) -> str:
    """Identity of the caller, supplied by the fronting session layer."""
    if x_acting_user and x_acting_user.strip():
        return x_acting_user.strip()
    return ANONYMOUS


# ===== Locations & Catalog =====


@api_router.get("/locations")
async def get_all_locations():
    """List all warehouse locations."""
    async with AsyncSessionLocal() as session:
        locations = await list_locations(session)
        return {
            "count": len(locations),
            "locations": [{"id": loc.id, "name": loc.name} for loc in locations],
        }


@api_router.post("/locations", status_code=status.HTTP_201_CREATED)
async def create_new_location(location: LocationCreate):
    """Create a warehouse location."""
    async with AsyncSessionLocal() as session:
        try:
            new_location = await create_location(session, location.name.strip())
        except IntegrityError:
            await session.rollback()
            raise HTTPException(status_code=400, detail=f"Location '{location.name}' already exists")
        return {"id": new_location.id, "name": new_location.name}


@api_router.post("/locations/{location_id}/sublocations", status_code=status.HTTP_201_CREATED)
async def create_new_sublocation(location_id: int, sublocation: SublocationCreate):
    """Create a bin/shelf inside a location."""
    async with AsyncSessionLocal() as session:
        if await get_location(session, location_id) is None:
            raise HTTPException(status_code=404, detail=f"Location {location_id} not found")
        try:
            new_sub = await create_sublocation(session, location_id, sublocation.code.strip(), sublocation.name)
        except IntegrityError:
            await session.rollback()
            raise HTTPException(status_code=400, detail=f"Sublocation '{sublocation.code}' already exists")
        return {"id": new_sub.id, "location_id": location_id, "code": new_sub.code, "name": new_sub.name}


@api_router.post("/products", status_code=status.HTTP_201_CREATED)
async def create_new_product(product: ProductCreate):
    """Add a product to the catalog."""
    async with AsyncSessionLocal() as session:
        try:
            new_product = await create_product(
                session,
                sku=product.sku.strip(),
                name=product.name,
                unit_cost=product.unit_cost,
                barcode=product.barcode,
                abc_class=product.abc_class,
            )
        except IntegrityError:
            await session.rollback()
            raise HTTPException(status_code=400, detail=f"SKU '{product.sku}' already exists")
        return {
            "id": new_product.id,
            "sku": new_product.sku,
            "name": new_product.name,
            "barcode": new_product.barcode,
            "unit_cost": _money(new_product.unit_cost),
            "abc_class": new_product.abc_class,
        }


@api_router.get("/products/lookup")
async def lookup_product_by_code(code: str = Query(..., min_length=1, description="SKU or barcode")):
    """Find a product by SKU or barcode."""
    async with AsyncSessionLocal() as session:
        product = await lookup_product(session, code)
        if not product:
            raise HTTPException(status_code=404, detail=f"Product not found: {code}")
        return {
            "id": product.id,
            "sku": product.sku,
            "name": product.name,
            "barcode": product.barcode,
            "unit_cost": _money(product.unit_cost),
        }


# ===== Inventory =====


@api_router.put("/inventory")
async def set_inventory(record: InventorySet):
    """Set the on-hand quantity of a product position (receiving, seeding)."""
    async with AsyncSessionLocal() as session:
        try:
            saved = await set_inventory_quantity(
                session,
                product_id=record.product_id,
                location_id=record.location_id,
                qty_on_hand=record.qty_on_hand,
                sublocation_id=record.sublocation_id,
                qty_reserved=record.qty_reserved,
            )
        except IntegrityError:
            await session.rollback()
            raise HTTPException(status_code=400, detail="Unknown product, location or sublocation")
        return {
            "id": saved.id,
            "product_id": saved.product_id,
            "location_id": saved.location_id,
            "sublocation_id": saved.sublocation_id,
            "qty_on_hand": saved.qty_on_hand,
            "qty_reserved": saved.qty_reserved,
        }


@api_router.get("/inventory/transactions")
async def get_inventory_transactions(
    reference_id: Optional[str] = Query(None, description="e.g. a cycle count number"),
    product_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=500),
):
    """List inventory transactions, newest first."""
    async with AsyncSessionLocal() as session:
        transactions = await list_inventory_transactions(
            session, reference_id=reference_id, product_id=product_id, limit=limit
        )
        return {
            "count": len(transactions),
            "transactions": [
                {
                    "id": txn.id,
                    "product_id": txn.product_id,
                    "location_id": txn.location_id,
                    "sublocation_id": txn.sublocation_id,
                    "transaction_type": txn.transaction_type,
                    "qty_before": txn.qty_before,
                    "qty_change": txn.qty_change,
                    "qty_after": txn.qty_after,
                    "reference_type": txn.reference_type,
                    "reference_id": txn.reference_id,
                    "reason": txn.reason,
                    "performed_by": txn.performed_by,
                }
                for txn in transactions
            ],
        }


# ===== Cycle Counts =====


@api_router.get("/cycle-counts")
async def get_cycle_counts(
    location_id: Optional[int] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    count_type: Optional[str] = Query(None),
    assigned_to: Optional[str] = Query(None),
    start_date: Optional[date] = Query(None, description="Scheduled on or after"),
    end_date: Optional[date] = Query(None, description="Scheduled on or before"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """List cycle counts with optional filters."""
    async with AsyncSessionLocal() as session:
        counts, total = await list_cycle_counts(
            session,
            location_id=location_id,
            status=status_filter,
            count_type=count_type,
            assigned_to=assigned_to,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
        )
        return {
            "count": len(counts),
            "total": total,
            "cycle_counts": [_serialize_count(count, include_items=False) for count in counts],
        }


@api_router.post("/cycle-counts", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def schedule_new_count(
    request: Request,
    body: CountSchedule,
    acting_user: Annotated[str, Depends(get_acting_user)],
):
    """Schedule a count and snapshot its items from current inventory."""
    selection = SelectionRule(
        mode=body.selection,
        sample_size=body.sample_size,
        product_ids=body.product_ids,
        abc_class=body.abc_class,
    )
    async with AsyncSessionLocal() as session:
        count = await schedule_count(
            session,
            count_type=body.count_type,
            location_id=body.location_id,
            scheduled_date=body.scheduled_date,
            assigned_to=body.assigned_to,
            blind_count=body.blind_count,
            notes=body.notes,
            selection=selection,
            created_by=acting_user,
        )
        return _serialize_count(count)


@api_router.get("/cycle-counts/stats")
async def get_count_stats(location_id: Optional[int] = Query(None)):
    """Counts per status tab and accuracy across completed and cancelled counts."""
    async with AsyncSessionLocal() as session:
        stats = await get_count_statistics(session, location_id)
        return stats.to_dict()


@api_router.get("/cycle-counts/{count_id}")
async def get_single_count(count_id: int):
    """Get a count with its items and a freshly computed variance summary."""
    async with AsyncSessionLocal() as session:
        return _serialize_count(await get_count(session, count_id))


@api_router.post("/cycle-counts/{count_id}/items", status_code=status.HTTP_201_CREATED)
async def add_count_item_endpoint(count_id: int, body: CountItemAdd):
    """Add a product position to a pending count."""
    async with AsyncSessionLocal() as session:
        item = await add_item_to_count(
            session,
            count_id=count_id,
            product_id=body.product_id,
            sublocation_id=body.sublocation_id,
            location_id=body.location_id,
        )
        return _serialize_item(item, hide_expected=item.count.blind_count)


@api_router.post("/cycle-counts/{count_id}/start")
async def start_count_endpoint(count_id: int, body: Optional[Transition] = None):
    async with AsyncSessionLocal() as session:
        count = await start_count(session, count_id, expected_version=body.expected_version if body else None)
        return _serialize_count(count)


@api_router.post("/cycle-counts/{count_id}/complete")
async def complete_count_endpoint(count_id: int, body: Optional[CountComplete] = None):
    """Submit a count for approval; uncounted items need force_if_incomplete."""
    body = body or CountComplete()
    async with AsyncSessionLocal() as session:
        count = await complete_count(
            session,
            count_id,
            force_if_incomplete=body.force_if_incomplete,
            expected_version=body.expected_version,
        )
        return _serialize_count(count)


@api_router.post("/cycle-counts/{count_id}/reject")
async def reject_count_endpoint(count_id: int, body: Optional[Transition] = None):
    """Wipe all recorded counts and send the count back to pending."""
    async with AsyncSessionLocal() as session:
        count = await reject_count(session, count_id, expected_version=body.expected_version if body else None)
        return _serialize_count(count)


@api_router.post("/cycle-counts/{count_id}/cancel")
async def cancel_count_endpoint(count_id: int, body: Optional[Transition] = None):
    async with AsyncSessionLocal() as session:
        count = await cancel_count(session, count_id, expected_version=body.expected_version if body else None)
        return _serialize_count(count)


@api_router.post("/cycle-counts/{count_id}/approve")
@limiter.limit("10/minute")
async def approve_count_endpoint(
    request: Request,
    count_id: int,
    body: CountApprove,
    acting_user: Annotated[str, Depends(get_acting_user)],
):
    """Complete a count and apply the approved variance adjustments."""
    if acting_user == ANONYMOUS:
        raise HTTPException(status_code=401, detail="Approving a count requires an identified user")
    async with AsyncSessionLocal() as session:
        result = await approve_count(
            session,
            count_id,
            approved_item_ids=body.approved_item_ids,
            approved_by=acting_user,
            expected_version=body.expected_version,
        )
        return {
            "status": "success",
            "message": f"Count approved! {result.adjustment_count} inventory adjustment(s) applied.",
            "cycle_count": _serialize_count(result.count),
            "applied_adjustments": [
                {
                    "item_id": adj.item_id,
                    "product_id": adj.product_id,
                    "location_id": adj.location_id,
                    "sublocation_id": adj.sublocation_id,
                    "delta": adj.delta,
                    "qty_before": adj.qty_before,
                    "qty_after": adj.qty_after,
                    "transaction_id": adj.transaction_id,
                }
                for adj in result.applied_adjustments
            ],
            "net_variance_cost": _money(result.summary.net_variance_cost),
        }


@api_router.get("/cycle-counts/{count_id}/variances")
async def get_count_variances(count_id: int):
    """List counted items whose quantity differs from the snapshot."""
    async with AsyncSessionLocal() as session:
        count = await get_count(session, count_id)
        if count.blind_count and count.status in BLIND_STATUSES:
            raise HTTPException(status_code=403, detail="Variances are hidden until a blind count is submitted")
        items = await list_count_variances(session, count_id)
        return {
            "count": len(items),
            "items": [_serialize_item(item) for item in items],
        }


@api_router.get("/cycle-counts/{count_id}/scan")
async def scan_count_item(count_id: int, code: str = Query(..., min_length=1, description="Scanned SKU or barcode")):
    """Find the item a scanned SKU/barcode belongs to."""
    async with AsyncSessionLocal() as session:
        count = await get_count(session, count_id)
        item = find_item_by_scan(count.items, code)
        if item is None:
            return {"found": False, "message": f"Product not found: {code}"}
        hide = count.blind_count and count.status in BLIND_STATUSES
        return {"found": True, "item": _serialize_item(item, hide_expected=hide)}


@api_router.put("/cycle-count-items/{item_id}")
async def record_item_count(
    item_id: int,
    body: CountRecord,
    acting_user: Annotated[str, Depends(get_acting_user)],
):
    """Record or overwrite the counted quantity for one item (auto-save friendly)."""
    async with AsyncSessionLocal() as session:
        item = await record_count(
            session,
            item_id,
            counted_qty=body.counted_qty,
            counted_by=acting_user,
            notes=body.notes,
        )
        return _serialize_item(item, hide_expected=item.count.blind_count)


app.include_router(api_router, prefix="/api/v1")
app.include_router(api_router, prefix="/api")


def run_api():
    """Run the FastAPI server."""
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)  # nosec B104


if __name__ == "__main__":
    run_api()
