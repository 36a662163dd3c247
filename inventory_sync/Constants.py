# Constants.py
# Description: Constants shared by the local store, the remote client and the sync engine
#
# Imports
from enum import Enum
#
# 3rd-Party Imports
#
# Local Imports
#
########################################################################################################################
#
# Functions:

class EntityType(str, Enum):
    CATEGORIES = "categories"
    INVENTORY_ITEMS = "inventory_items"
    CUSTOMERS = "customers"
    ORDERS = "orders"


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    CONFLICT = "conflict"


class ConflictResolution(str, Enum):
    SERVER_WINS = "server_wins"
    CLIENT_WINS = "client_wins"
    NEWEST_WINS = "newest_wins"


# Referenced entities come before the entities that reference them.
SYNC_ENTITY_ORDER = [
    EntityType.CATEGORIES,
    EntityType.INVENTORY_ITEMS,
    EntityType.CUSTOMERS,
    EntityType.ORDERS,
]

# --- Remote endpoints ---
ENTITY_ENDPOINTS = {
    EntityType.CATEGORIES: "/categories",
    EntityType.INVENTORY_ITEMS: "/inventory",
    EntityType.CUSTOMERS: "/customers",
    EntityType.ORDERS: "/orders",
}

# --- Payload ("merge") fields per entity ---
# Copied from a remote payload when the remote wins, and sent on push.
MERGE_FIELDS = {
    EntityType.CATEGORIES: ["name", "description", "color"],
    EntityType.INVENTORY_ITEMS: ["name", "description", "category_id", "quantity", "unit_price",
                                 "location", "barcode", "image_uri", "minimum_stock"],
    EntityType.CUSTOMERS: ["name", "email", "phone", "address"],
    EntityType.ORDERS: ["order_number", "customer_id", "customer_name", "items", "total_amount",
                        "status", "order_date", "expected_delivery_date", "notes"],
}

REQUIRED_FIELDS = {
    EntityType.CATEGORIES: ["name"],
    EntityType.INVENTORY_ITEMS: ["name"],
    EntityType.CUSTOMERS: ["name"],
    EntityType.ORDERS: ["order_number", "customer_name", "order_date"],
}

FIELD_DEFAULTS = {
    EntityType.CATEGORIES: {"color": "#6B7280"},
    EntityType.INVENTORY_ITEMS: {"quantity": 0, "unit_price": 0.0},
    EntityType.CUSTOMERS: {},
    EntityType.ORDERS: {"items": [], "total_amount": 0.0, "status": "pending"},
}

# Stored as JSON text in SQLite
JSON_FIELDS = {
    EntityType.ORDERS: ["items"],
}

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")

DEFAULT_CATEGORIES = [
    {"name": "Electronics", "description": "Electronic devices and components", "color": "#4F46E5"},
    {"name": "Office Supplies", "description": "Office and stationery items", "color": "#059669"},
    {"name": "Tools", "description": "Hand tools and equipment", "color": "#DC2626"},
    {"name": "Furniture", "description": "Office and home furniture", "color": "#7C2D12"},
    {"name": "Other", "description": "Miscellaneous items", "color": "#6B7280"},
]

# --- Sync defaults ---
SYNC_BATCH_SIZE = 100
DEFAULT_SYNC_INTERVAL_MINUTES = 30
DEFAULT_REQUEST_TIMEOUT = 30.0
EPOCH_TIMESTAMP = "1970-01-01T00:00:00.000Z"

# app_settings keys
SETTING_SYNC_CONFIG = "sync_config"
SETTING_LAST_SYNC_TIME = "last_sync_time"

#
# End of Constants.py
########################################################################################################################
