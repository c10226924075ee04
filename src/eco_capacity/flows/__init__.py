"""
Prefect flows.

Flows:
- sweep: refresh weather for all sites, recompute capacities, broadcast

Usage (local):
    python -m eco_capacity.flows.sweep

Usage (Prefect):
    prefect server start  # Optional, for dashboard
    python -m eco_capacity.flows.sweep --serve
"""
