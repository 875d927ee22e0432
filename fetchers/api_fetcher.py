"""List downloads for every collection the migration works with."""

import logging
from typing import List, Optional

from converters.xml_records import (
    build_create_project_request,
    iter_records,
    parse_connection,
    parse_datasource,
    parse_group,
    parse_project,
    parse_site_info,
    parse_user,
    parse_workbook,
)
from logger import TaskStatusLogs
from models import (
    Connection,
    ContentItem,
    ContentKind,
    Datasource,
    Group,
    Project,
    SiteInfo,
    User,
    Workbook,
)
from server_client import ServerClient, ServerRequestError
from .base_fetcher import FetcherError, PaginatedFetcher


class ApiFetcher:
    """Fetches site metadata collections via the REST API."""

    def __init__(
        self,
        client: ServerClient,
        status_log: TaskStatusLogs,
        page_size: Optional[int] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize API fetcher.

        Args:
            client: Signed-in server client
            status_log: Task status/error log
            page_size: Items per page for list requests
            logger: Logger instance (optional)
        """
        self.client = client
        self.status_log = status_log
        self.logger = logger or logging.getLogger('tableau_site_migrator.fetcher.api')
        self.pager = PaginatedFetcher(client, status_log, page_size, logger=self.logger)

    def fetch_projects(self) -> List[Project]:
        projects = self.pager.fetch_all('projects-list', 'project', parse_project)
        self.status_log.add_status(f"Projects downloaded: {len(projects)}")
        for project in projects:
            self.status_log.add_status(f"project: {project.name}/{project.id}", -1)
        return projects

    def fetch_users(self) -> List[User]:
        users = self.pager.fetch_all('users-list', 'user', parse_user)
        self.status_log.add_status(f"Users downloaded: {len(users)}")
        for user in users:
            self.status_log.add_status(f"user: {user.name}/{user.site_role}/{user.id}", -1)
        return users

    def fetch_groups(self, include_members: bool = True) -> List[Group]:
        """
        Download all groups and, optionally, the users of each group.

        A failure while listing one group's members is logged and the
        group is kept with whatever members were retrieved.
        """
        groups = self.pager.fetch_all('groups-list', 'group', parse_group)
        self.status_log.add_status(f"Groups downloaded: {len(groups)}")

        if include_members:
            for group in groups:
                members = self.pager.fetch_all(
                    'group-members', 'user', parse_user, GroupId=group.id
                )
                group.add_users(members)
                self.status_log.add_status(f"group: {group.name}, members: {len(members)}", -1)

        return groups

    def fetch_datasources(self) -> List[Datasource]:
        datasources = self.pager.fetch_all('datasources-list', 'datasource', parse_datasource)
        self.status_log.add_status(f"Datasources downloaded: {len(datasources)}")
        return datasources

    def fetch_workbooks(self, user_id: Optional[str] = None) -> List[Workbook]:
        """Workbooks visible to a user; defaults to the signed-in user."""
        workbooks = self.pager.fetch_all(
            'workbooks-list', 'workbook', parse_workbook,
            UserId=user_id or self.client.user_id
        )
        self.status_log.add_status(f"Workbooks downloaded: {len(workbooks)}")
        return workbooks

    def fetch_connections(self, item: ContentItem) -> List[Connection]:
        """
        Download the connections of a workbook or data source.

        Raises:
            FetcherError: If the request fails
        """
        if item.kind is ContentKind.WORKBOOK:
            url = self.client.urls.build(
                'workbook-connections', SiteId=self.client.site_id, WorkbookId=item.id
            )
        else:
            url = self.client.urls.build(
                'datasource-connections', SiteId=self.client.site_id, DatasourceId=item.id
            )

        try:
            document = self.client.get_xml(url)
        except ServerRequestError as e:
            raise FetcherError(f"Connections download failed for {item.kind.value} '{item.name}': {e}") from e

        return [parse_connection(node) for node in iter_records(document, 'connection')]

    def fetch_site_info(self) -> Optional[SiteInfo]:
        url = self.client.urls.build('site-info', SiteId=self.client.site_id)
        document = self.client.get_xml(url)
        nodes = iter_records(document, 'site')
        if not nodes:
            self.status_log.add_error("Site info response contained no site element")
            return None
        return parse_site_info(nodes[0])

    def create_project(self, name: str, description: str = '') -> Project:
        """
        Create a project on the site.

        Raises:
            ServerRequestError: If the server rejects the request
            FetcherError: If the response does not describe a project
        """
        url = self.client.urls.build('project-create', SiteId=self.client.site_id)
        document = self.client.post_xml(url, build_create_project_request(name, description))
        nodes = iter_records(document, 'project')
        if not nodes:
            raise FetcherError(f"Create project '{name}' returned no project")
        project = parse_project(nodes[0])
        self.status_log.add_status(f"Created project: {project.name}/{project.id}")
        return project


__all__ = ['ApiFetcher']
