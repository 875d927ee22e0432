"""
Orchestration package for running one migration task.

The orchestrator sequences the task steps on a worker thread:
sign in → metadata downloads → export/import → output files → sign out.
The report module writes the output files and the run summary.
"""

from .migration_orchestrator import MigrationOrchestrator, TaskAbortedError
from .migration_report import MigrationReport

__all__ = [
    'MigrationOrchestrator',
    'MigrationReport',
    'TaskAbortedError'
]
