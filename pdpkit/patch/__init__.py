"""
Patch application, revert and reapply.
"""

from pdpkit.patch.applier import RETRY_SCHEDULE, PatchApplier
from pdpkit.patch.engine import PatchEngine, get_patch_engine

__all__ = [
    "PatchEngine",
    "get_patch_engine",
    "PatchApplier",
    "RETRY_SCHEDULE",
]
