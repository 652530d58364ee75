"""
Agent History - a local checkpoint engine for autonomous coding agents.

This package snapshots a project's working directory into a git-compatible
object store and provides:
- Change detection against the last checkpoint
- Checkpoint creation with a fixed agent identity
- History listing and commit inspection
- Restoring the working directory to any prior checkpoint
"""

__version__ = "0.1.0"
__author__ = "Agent History Team"

__all__ = [
    "__version__",
]
