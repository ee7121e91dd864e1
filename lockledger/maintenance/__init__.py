"""Cluster-wide maintenance that runs on one instance at a time.

Usage:
    from lockledger.maintenance import LeasedMaintenance

    maintenance = LeasedMaintenance.from_settings(service, {"purge": purge_expired})
    report = await maintenance.run_cycle()
"""

from lockledger.maintenance.runner import CycleReport, LeasedMaintenance, MaintenanceJob

__all__ = [
    "CycleReport",
    "LeasedMaintenance",
    "MaintenanceJob",
]
