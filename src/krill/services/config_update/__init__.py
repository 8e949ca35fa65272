from .merge import deep_merge
from .orchestrator import ConfigUpdateOrchestrator, ConfigUpdateResult, ConfigUpdateState

__all__ = ["deep_merge", "ConfigUpdateOrchestrator", "ConfigUpdateResult", "ConfigUpdateState"]
