"""Background rebuild workers."""

from jobcost.workers.rebuild_worker import RebuildWorker, ScanResult, WorkerLevel, default_worker_levels
from jobcost.workers.scheduler import WorkerScheduler

__all__ = ["RebuildWorker", "ScanResult", "WorkerLevel", "WorkerScheduler", "default_worker_levels"]
