from .activity import ActivityClock, ActivityState
from .monitor import HealthMonitor

__all__ = ["ActivityClock", "ActivityState", "HealthMonitor"]
