"""
Database Module
"""
from .connection import (
    init_database,
    close_database,
    create_tables,
    get_db,
    get_engine,
    get_session_factory,
    check_database_health,
)
from .models import (
    Base,
    EntityKind,
    RunStatus,
    RunTrigger,
    Tenant,
    Customer,
    Product,
    Order,
    OrderLine,
    SyncRun,
)

__all__ = [
    "init_database",
    "close_database",
    "create_tables",
    "get_db",
    "get_engine",
    "get_session_factory",
    "check_database_health",
    "Base",
    "EntityKind",
    "RunStatus",
    "RunTrigger",
    "Tenant",
    "Customer",
    "Product",
    "Order",
    "OrderLine",
    "SyncRun",
]
