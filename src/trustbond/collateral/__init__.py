"""Collateral subpackage."""

from trustbond.collateral.monitor import CollateralCheck, CollateralMonitor

__all__ = ["CollateralCheck", "CollateralMonitor"]
