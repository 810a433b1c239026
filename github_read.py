import logging
from typing import List

from github import Github

logger = logging.getLogger(__name__)


def make_github(token: str) -> Github:
    token = (token or "").strip()
    if not token:
        raise RuntimeError("GITHUB_TOKEN missing")
    return Github(token, per_page=100)


def find_project(gh: Github, owner: str, project_id: str):
    """
    Look up the organization project whose URL ends in /<project_id>.
    Raises RuntimeError when it is not there, the bot has nothing to do then.
    """
    org = gh.get_organization(owner)
    for project in org.get_projects():
        logger.debug("Found project %s", project.html_url)
        if project.html_url.endswith("/" + str(project_id)):
            return project
    raise RuntimeError("Missing retro project")


def get_action_texts(project, column_name: str) -> List[str]:
    column = next((c for c in project.get_columns() if c.name == column_name), None)
    if column is None:
        raise LookupError(f"Column {column_name!r} not found in project {project.html_url}")
    # issue and PR cards carry no note
    return [card.note or "" for card in column.get_cards()]
