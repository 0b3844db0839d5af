"""Services package"""

from .discount_engine import (
    available_instruments,
    compute_discount,
    explain_invalid,
    is_valid,
    resolve,
)
from .instrument_store import InMemoryInstrumentStore

__all__ = [
    "available_instruments",
    "compute_discount",
    "explain_invalid",
    "is_valid",
    "resolve",
    "InMemoryInstrumentStore",
]
