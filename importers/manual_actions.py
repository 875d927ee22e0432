"""
Manual action tracker for site imports.

Collects follow-up steps that the tool could not carry out itself, such as
moving content that was published into the default project.
"""

import logging
from typing import List, Optional, Tuple

from models import ManualAction


class ManualActionTracker:
    """Append-only list of manual follow-up steps."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger('tableau_site_migrator.importers.manual_actions')
        self._actions: List[ManualAction] = []

    def add(self, content_kind: str, name: str, project_name: str, action: str) -> ManualAction:
        """
        Record a manual step.

        Args:
            content_kind: ``workbook``, ``datasource`` or ``project``
            name: Name of the affected content
            project_name: Project the content was meant for
            action: What a person needs to do
        """
        entry = ManualAction(content_kind, name, project_name, action)
        self._actions.append(entry)
        self.logger.debug(f"Manual action recorded: {content_kind} '{name}' -> {action}")
        return entry

    @property
    def actions(self) -> Tuple[ManualAction, ...]:
        return tuple(self._actions)

    def __len__(self) -> int:
        return len(self._actions)


__all__ = ['ManualActionTracker']
