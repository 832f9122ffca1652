"""Background maintenance scheduling."""

from metasearch.scheduling.scheduler import MaintenanceScheduler

__all__ = ["MaintenanceScheduler"]
