from .health import HealthSupervisor
from .retention import RetentionSupervisor
from .scheduler import PeriodicTicker, Scheduler

__all__ = ["HealthSupervisor", "RetentionSupervisor", "PeriodicTicker", "Scheduler"]
