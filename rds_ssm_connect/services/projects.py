"""
Project definitions and AWS profile discovery.

Project definitions are read from a JSON file keyed by project key; AWS
profiles come from the section headers of the AWS config file.
"""

import json
import os
from typing import Dict, List, Optional

from pydantic import ValidationError as SchemaError

from rds_ssm_connect.core.config import settings
from rds_ssm_connect.core.exceptions import UnknownProjectError
from rds_ssm_connect.core.logging import get_logger
from rds_ssm_connect.schemas.project import ProjectDefinition, ProjectSummary

logger = get_logger("projects")


def load_project_configs(config_path: Optional[str] = None) -> Dict[str, ProjectDefinition]:
    """
    Load all project definitions.

    Args:
        config_path: Path to projects.json (defaults to settings.PROJECTS_CONFIG_PATH)

    Returns:
        Mapping of project key to definition; empty if the file does not exist.
        Entries that fail validation are skipped with a warning.
    """
    path = config_path or settings.PROJECTS_CONFIG_PATH
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError:
        logger.debug(f"No project config at {path}")
        return {}

    projects: Dict[str, ProjectDefinition] = {}
    for key, entry in raw.items():
        try:
            projects[key] = ProjectDefinition.model_validate(entry)
        except SchemaError as e:
            logger.warning(f"Skipping invalid project '{key}': {e.error_count()} error(s)")
    return projects


def get_project(project_key: str, config_path: Optional[str] = None) -> ProjectDefinition:
    projects = load_project_configs(config_path)
    if project_key not in projects:
        raise UnknownProjectError(project_key)
    return projects[project_key]


def list_available_projects(config_path: Optional[str] = None) -> List[ProjectSummary]:
    return [
        ProjectSummary(key=key, name=project.name)
        for key, project in load_project_configs(config_path).items()
    ]


def read_aws_profiles(aws_config_path: Optional[str] = None) -> List[str]:
    """Return profile names from bracketed section headers, ``profile `` prefix stripped."""
    path = aws_config_path or os.path.expanduser(settings.AWS_CONFIG_PATH)
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except FileNotFoundError:
        logger.warning(f"AWS config not found at {path}")
        return []

    profiles = []
    for line in content.splitlines():
        line = line.strip()
        if not (line.startswith("[") and line.endswith("]")):
            continue
        name = line[1:-1].strip()
        if name.startswith("profile "):
            name = name[len("profile "):].strip()
        if name:
            profiles.append(name)
    return profiles


def list_profiles_for_project(
    project_key: str,
    config_path: Optional[str] = None,
    aws_config_path: Optional[str] = None,
) -> List[str]:
    project = get_project(project_key, config_path)
    profiles = read_aws_profiles(aws_config_path)
    if project.profile_filter:
        profiles = [p for p in profiles if project.profile_filter in p]
    return profiles


def get_local_port(profile: str, project: ProjectDefinition) -> str:
    """
    Pick the fixed local port for a profile.

    The longest environment suffix the profile name ends with wins, so
    ``myproj-perf-dev`` maps to ``perf-dev`` rather than ``dev``.
    Falls back to the project's default port.
    """
    suffixes = sorted(project.env_port_mapping, key=len, reverse=True)
    for suffix in suffixes:
        if profile.endswith(suffix):
            return project.env_port_mapping[suffix]

    logger.info(
        f"No port mapping for environment {profile}, "
        f"defaulting to {project.default_port}"
    )
    return project.default_port
