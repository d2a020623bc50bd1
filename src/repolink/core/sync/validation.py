"""
Syntax checks for project ids and GitHub names.

Project ids are the backend join key and must be URL-safe slugs. GitHub
repository, owner and branch names follow the conventions GitHub and git
enforce, so the CLI can reject a bad link before it is ever stored.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from repolink.core.sync.exceptions import ValidationError
from repolink.core.sync.models import CanonicalProject

logger = logging.getLogger(__name__)

# Placeholder id written while a repository import is in progress; never synced.
SENTINEL_PROJECT_ID = "github.com"

PROJECT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
REPO_NAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,100}$")
OWNER_PATTERN = re.compile(r"^[A-Za-z0-9](?:-?[A-Za-z0-9]){0,38}$")
_BRANCH_FORBIDDEN = re.compile(r"[\s~^:?*\[\\]|\.\.|@\{|//")


def is_sentinel(project_id: str) -> bool:
    """Check whether an id is the import placeholder."""
    return project_id == SENTINEL_PROJECT_ID


def validate_project_id(project_id: str) -> str:
    """
    Validate a project id for use as a backend join key.

    Args:
        project_id: Candidate id

    Returns:
        The id, unchanged

    Raises:
        ValidationError: If the id is the sentinel or contains characters
            outside ``[A-Za-z0-9_-]``
    """
    if is_sentinel(project_id):
        raise ValidationError(project_id, "import placeholder is never synced")
    if not PROJECT_ID_PATTERN.match(project_id):
        raise ValidationError(project_id, "only letters, digits, '_' and '-' are allowed")
    return project_id


def is_valid_project_id(project_id: str) -> bool:
    try:
        validate_project_id(project_id)
    except ValidationError:
        return False
    return True


def filter_syncable(projects: Iterable[CanonicalProject]) -> list[CanonicalProject]:
    """
    Drop projects whose remote id may not be sent to the backend.

    Invalid entries are logged and skipped; this never raises.
    """
    kept: list[CanonicalProject] = []
    for project in projects:
        try:
            validate_project_id(project.remote_id)
        except ValidationError as e:
            logger.warning("Skipping project %s from sync: %s", project.id, e.reason)
            continue
        kept.append(project)
    return kept


def is_valid_repo_name(name: str) -> bool:
    """GitHub repository name: 1-100 of ``[A-Za-z0-9._-]``, not ``.`` or ``..``."""
    return bool(REPO_NAME_PATTERN.match(name)) and name not in (".", "..")


def is_valid_owner(owner: str) -> bool:
    """GitHub user/org login: alphanumeric with single inner hyphens, max 39 chars."""
    return bool(OWNER_PATTERN.match(owner))


def is_valid_branch_name(branch: str) -> bool:
    """Subset of ``git check-ref-format`` rules relevant to user input."""
    if not branch or branch.startswith(("-", "/")) or branch.endswith(("/", ".", ".lock")):
        return False
    return _BRANCH_FORBIDDEN.search(branch) is None


__all__ = [
    "SENTINEL_PROJECT_ID",
    "filter_syncable",
    "is_sentinel",
    "is_valid_branch_name",
    "is_valid_owner",
    "is_valid_project_id",
    "is_valid_repo_name",
    "validate_project_id",
]
