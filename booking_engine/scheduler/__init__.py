# Re-export the scheduling components
from .availability import AvailabilityIndex
from .conflicts import ConflictDetector, ConflictReason
from .leave import LeaveWorkflow
from .ledger import HourLedger
from .locks import KeyedLock
from .matching import MatchingEngine
from .orchestrator import Compensation, Scheduler

__all__ = [
    "AvailabilityIndex",
    "Compensation",
    "ConflictDetector",
    "ConflictReason",
    "HourLedger",
    "KeyedLock",
    "LeaveWorkflow",
    "MatchingEngine",
    "Scheduler",
]
