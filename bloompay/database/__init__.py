"""Database package for bloompay."""
from .connection import close_db, create_engine, create_session_factory, init_db
from .models import (
    Account,
    Base,
    Flower,
    Order,
    OrderItem,
    Transaction,
)

__all__ = [
    "Account",
    "Base",
    "Flower",
    "Order",
    "OrderItem",
    "Transaction",
    "close_db",
    "create_engine",
    "create_session_factory",
    "init_db",
]
