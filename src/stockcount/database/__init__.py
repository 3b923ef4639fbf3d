"""Database package initialization."""

from .crud import (
    add_count_item,
    adjust_inventory,
    count_cycle_counts_by_status,
    create_cycle_count,
    create_location,
    create_product,
    create_sublocation,
    generate_count_number,
    get_count_item,
    get_cycle_count,
    get_inventory_record,
    get_location,
    get_product,
    list_count_items_by_status,
    list_count_variances,
    list_cycle_counts,
    list_inventory_records,
    list_inventory_transactions,
    list_locations,
    lock_cycle_count_status,
    lookup_product,
    set_inventory_quantity,
    snapshot_quantity,
)
from .engine import AsyncSessionLocal, close_db, get_session, init_db
from .models import (
    Base,
    CountStatus,
    CountType,
    CycleCount,
    CycleCountItem,
    InventoryRecord,
    InventoryTransaction,
    Location,
    Product,
    Sublocation,
)

__all__ = [
    # Models
    "Base",
    "CountStatus",
    "CountType",
    "CycleCount",
    "CycleCountItem",
    "InventoryRecord",
    "InventoryTransaction",
    "Location",
    "Product",
    "Sublocation",
    # Engine
    "AsyncSessionLocal",
    "init_db",
    "close_db",
    "get_session",
    # CRUD - Locations
    "create_location",
    "create_sublocation",
    "get_location",
    "list_locations",
    # CRUD - Products
    "create_product",
    "get_product",
    "lookup_product",
    # CRUD - Inventory
    "adjust_inventory",
    "get_inventory_record",
    "list_inventory_records",
    "list_inventory_transactions",
    "set_inventory_quantity",
    "snapshot_quantity",
    # CRUD - Cycle counts
    "add_count_item",
    "create_cycle_count",
    "generate_count_number",
    "get_count_item",
    "get_cycle_count",
    "list_count_variances",
    "list_cycle_counts",
    "lock_cycle_count_status",
    # CRUD - Statistics
    "count_cycle_counts_by_status",
    "list_count_items_by_status",
]
