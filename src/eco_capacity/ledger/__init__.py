"""Occupancy ledgers (in-memory and SQL) and the admission controller."""

from eco_capacity.ledger.admission import AdmissionController
from eco_capacity.ledger.base import ALLOWED_TRANSITIONS, OccupancyLedger, SiteDirectory
from eco_capacity.ledger.memory import MemoryLedger
from eco_capacity.ledger.sql import SqlLedger, create_ledger_engine

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AdmissionController",
    "MemoryLedger",
    "OccupancyLedger",
    "SiteDirectory",
    "SqlLedger",
    "create_ledger_engine",
]
