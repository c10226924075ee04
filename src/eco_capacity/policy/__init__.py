"""Sensitivity policies, overrides, the capacity engine and its audit trail."""

from eco_capacity.policy.audit import AdjustmentLog, AlertSink
from eco_capacity.policy.config import DEFAULT_POLICIES, PolicyConfigService
from eco_capacity.policy.engine import CapacityPolicyEngine, adjusted_capacity

__all__ = [
    "DEFAULT_POLICIES",
    "AdjustmentLog",
    "AlertSink",
    "CapacityPolicyEngine",
    "PolicyConfigService",
    "adjusted_capacity",
]
