"""
Content filters for export.

Both filters are pure: the input sequence is never modified and a new list
is returned. A missing or empty filter value means "no filter" and passes
everything through, which is different from a filter value that matches
nothing.
"""

from typing import List, Optional, Sequence, TypeVar

from logger import TaskStatusLogs
from models import ContentItem, FilterCriteria

C = TypeVar('C', bound=ContentItem)


def filter_by_project(
    items: Sequence[C],
    project_id: Optional[str],
    status_log: Optional[TaskStatusLogs] = None,
    label: str = "content"
) -> List[C]:
    """
    Keep items that belong to a project.

    Args:
        items: Items to filter
        project_id: Project id to keep; None or empty keeps everything
        status_log: Optional log for the after-filter count
        label: Content label used in the log line

    Returns:
        New list, in input order
    """
    if not project_id:
        result = list(items)
    else:
        result = [item for item in items if item.project_id == project_id]

    if status_log is not None:
        status_log.add_status(f"Download {label} count after projects filter: {len(result)}")
    return result


def filter_by_tag(
    items: Sequence[C],
    tag: Optional[str],
    status_log: Optional[TaskStatusLogs] = None,
    label: str = "content"
) -> List[C]:
    """
    Keep items carrying a tag (case-sensitive exact match).

    Args:
        items: Items to filter
        tag: Tag to require; None or empty keeps everything
        status_log: Optional log for the after-filter count
        label: Content label used in the log line

    Returns:
        New list, in input order
    """
    if not tag:
        result = list(items)
    else:
        result = [item for item in items if item.has_tag(tag)]

    if status_log is not None:
        status_log.add_status(f"Download {label} count after tags filter: {len(result)}")
    return result


def apply_filters(
    items: Sequence[C],
    criteria: FilterCriteria,
    status_log: Optional[TaskStatusLogs] = None,
    label: str = "content"
) -> List[C]:
    """Project filter then tag filter, logging counts before and after."""
    if status_log is not None:
        status_log.add_status(f"Download {label} count before filters: {len(items)}")
    result = filter_by_project(items, criteria.project_id, status_log, label)
    return filter_by_tag(result, criteria.tag, status_log, label)


__all__ = ['apply_filters', 'filter_by_project', 'filter_by_tag']
