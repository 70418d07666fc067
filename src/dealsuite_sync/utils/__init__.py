"""
Utility modules for the Dealsuite sync.

This package contains terminal presentation helpers used by the CLI
scripts.

Author: Leonardo Pacciani-Mori
License: MIT
"""

from dealsuite_sync.utils.progress import (
    StageStatus,
    StageState,
    RunTracker,
    ProgressDisplay,
    follow_run,
    build_result_table,
)

__all__ = [
    "StageStatus",
    "StageState",
    "RunTracker",
    "ProgressDisplay",
    "follow_run",
    "build_result_table",
]
