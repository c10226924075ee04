"""Eco Capacity - dynamic capacity and admission control for eco-tourism sites.

Architecture::

    datasources/   External weather provider (Open-Meteo current conditions)
    weather/       Weather cache (memory / Redis) and the aggregator
    indicators.py  Measured ecological strain, latest-wins per site
    store.py       JSON envelope store with TTL (readings, config, audit log)
    policy/        Policy configuration, capacity engine, adjustment audit
    ledger/        Occupancy ledger backends and the admission controller
    monitor.py     Periodic weather sweep (APScheduler) + on-demand trigger
    broadcast.py   Publish-only real-time channel (in-process or Redis pub/sub)
    flows/         Prefect flow wrapping the sweep for deployments
    services/      HTTP client with retry, service container (wiring)
    cli.py         argparse entry point (eco-capacity)

Data flow: monitor → aggregator → policy engine → admission → ledger → broadcast

Extension points:
  - New weather provider:  datasources/__init__.py
  - New ledger backend:    ledger/base.py (OccupancyLedger protocol)
"""

__version__ = "0.1.0"

from eco_capacity.config import Settings
from eco_capacity.schemas import (
    AlertLevel,
    BookingStatus,
    DynamicCapacityResult,
    SensitivityLevel,
    Site,
)

__all__ = [
    "AlertLevel",
    "BookingStatus",
    "DynamicCapacityResult",
    "SensitivityLevel",
    "Settings",
    "Site",
    "__version__",
]
