from .service import BatchResult, ConversionService
from .models import BatchConfiguration, ConversionItem, ItemStatus, VideoJob, VideoJobConfiguration
from .planner import PlanError
from .tracker import InvalidTransitionError, ItemTracker

__all__ = [
    "BatchConfiguration",
    "BatchResult",
    "ConversionItem",
    "ConversionService",
    "InvalidTransitionError",
    "ItemStatus",
    "ItemTracker",
    "PlanError",
    "VideoJob",
    "VideoJobConfiguration",
]
