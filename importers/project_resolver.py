"""
Project resolution for uploads.

Maps the project directory names found in an import source to projects on
the target site, creating missing projects or falling back to the default
project according to an UploadBehaviorProjects policy.
"""

import logging
from typing import Dict, List, Optional, Sequence

from fetchers.api_fetcher import ApiFetcher
from fetchers.base_fetcher import FetcherError
from logger import TaskStatusLogs
from models import ContentKind, Project, UploadBehaviorProjects
from server_client import ServerRequestError
from .manual_actions import ManualActionTracker

DEFAULT_PROJECT_NAME = "Default"


class ProjectResolver:
    """Resolves project names to site projects, deciding once per missing name."""

    def __init__(
        self,
        fetcher: ApiFetcher,
        projects: Sequence[Project],
        behavior: UploadBehaviorProjects,
        manual_actions: ManualActionTracker,
        status_log: TaskStatusLogs,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the resolver.

        Args:
            fetcher: Used to create projects on the site
            projects: Projects already on the site
            behavior: What to do about project names the site lacks
            manual_actions: Receives follow-up steps for content put in the default project
            status_log: Task status/error log
            logger: Optional logger instance
        """
        self.fetcher = fetcher
        self.projects: List[Project] = list(projects)
        self.behavior = behavior
        self.manual_actions = manual_actions
        self.status_log = status_log
        self.logger = logger or logging.getLogger('tableau_site_migrator.importers.projects')
        self._decisions: Dict[str, Optional[Project]] = {}

    @property
    def default_project(self) -> Optional[Project]:
        return self.find(DEFAULT_PROJECT_NAME, case_sensitive=False)

    def find(self, name: str, case_sensitive: bool = True) -> Optional[Project]:
        for project in self.projects:
            if project.name == name:
                return project
        if not case_sensitive:
            lowered = name.lower()
            for project in self.projects:
                if project.name.lower() == lowered:
                    return project
        return None

    def resolve(self, project_name: str, content_kind: ContentKind, item_name: str) -> Optional[Project]:
        """
        Target project for one uploaded file.

        Args:
            project_name: Directory name of the file's project; empty for the default project
            content_kind: Kind of content being uploaded
            item_name: Name of the content, for manual action entries

        Returns:
            The project to publish into, or None if the file must be skipped
        """
        if not project_name:
            return self.default_project

        project = self.find(project_name)
        if project is not None:
            return project

        if project_name not in self._decisions:
            self._decisions[project_name] = self._decide(project_name)
        decision = self._decisions[project_name]

        if decision is not None and decision.name != project_name:
            self.manual_actions.add(
                content_kind.value, item_name, project_name,
                f"Published into project '{decision.name}' because project '{project_name}' "
                f"does not exist. Move it to the intended project."
            )
        return decision

    def _decide(self, project_name: str) -> Optional[Project]:
        if self.behavior.attempt_create:
            try:
                project = self.fetcher.create_project(project_name)
            except (ServerRequestError, FetcherError) as e:
                self.status_log.add_error(f"Unable to create project '{project_name}': {e}")
            else:
                self.projects.append(project)
                return project

        if self.behavior.use_default_if_missing:
            default = self.default_project
            if default is not None:
                self.status_log.add_status(
                    f"Project '{project_name}' not found, using '{default.name}' instead"
                )
                return default
            self.status_log.add_error("Default project not found on site")

        self.status_log.add_error(f"No target project for '{project_name}', content will be skipped")
        return None


__all__ = ['DEFAULT_PROJECT_NAME', 'ProjectResolver']
