import json

import pytest
from conftest import PROJECT_ENTRY, make_project

from rds_ssm_connect.core.exceptions import UnknownProjectError
from rds_ssm_connect.services.projects import (
    get_local_port,
    get_project,
    list_available_projects,
    list_profiles_for_project,
    load_project_configs,
    read_aws_profiles,
)

AWS_CONFIG = """
[default]
region = us-east-2

[profile core-dev]
region = us-east-2

[profile core-perf-dev]
[profile billing-prod]
not a header
[ profile spaced-dev ]
[]
"""


@pytest.fixture
def aws_config(tmp_path):
    path = tmp_path / "config"
    path.write_text(AWS_CONFIG)
    return str(path)


def test_longest_suffix_wins():
    project = make_project(envPortMapping={"dev": "5433", "perf-dev": "5440"})
    assert get_local_port("myproj-perf-dev", project) == "5440"
    assert get_local_port("myproj-dev", project) == "5433"


def test_unmatched_profile_falls_back_to_default_port(project):
    assert get_local_port("core-staging", project) == "5432"


def test_integer_ports_are_normalized_to_strings():
    project = make_project(envPortMapping={"dev": 5433}, defaultPort=5432)
    assert project.env_port_mapping == {"dev": "5433"}
    assert project.default_port == "5432"


def test_project_definition_is_immutable(project):
    with pytest.raises(Exception):
        project.region = "eu-west-1"


def test_engine_default_port():
    assert make_project().engine_default_port == 5432
    assert make_project(engine="mysql").engine_default_port == 3306


def test_missing_config_file_means_no_projects(tmp_path):
    assert load_project_configs(str(tmp_path / "missing.json")) == {}


def test_invalid_entries_are_skipped(tmp_path):
    path = tmp_path / "projects.json"
    broken = {**PROJECT_ENTRY, "region": "nowhere"}
    path.write_text(json.dumps({"core": PROJECT_ENTRY, "broken": broken}))

    projects = load_project_configs(str(path))

    assert list(projects) == ["core"]
    assert projects["core"].secret_prefix == "rds/core"


def test_list_available_projects(projects_file):
    summaries = list_available_projects(projects_file)
    assert [(s.key, s.name) for s in summaries] == [("core", "Core Platform")]


def test_get_project_unknown_key(projects_file):
    with pytest.raises(UnknownProjectError):
        get_project("nope", projects_file)


def test_read_aws_profiles(aws_config):
    assert read_aws_profiles(aws_config) == [
        "default",
        "core-dev",
        "core-perf-dev",
        "billing-prod",
        "spaced-dev",
    ]


def test_read_aws_profiles_missing_file(tmp_path):
    assert read_aws_profiles(str(tmp_path / "nope")) == []


def test_profiles_filtered_by_project(tmp_path, aws_config):
    path = tmp_path / "projects.json"
    path.write_text(json.dumps({"core": {**PROJECT_ENTRY, "profileFilter": "core"}}))

    assert list_profiles_for_project("core", str(path), aws_config) == [
        "core-dev",
        "core-perf-dev",
    ]


def test_profiles_unfiltered_without_profile_filter(projects_file, aws_config):
    assert len(list_profiles_for_project("core", projects_file, aws_config)) == 5
