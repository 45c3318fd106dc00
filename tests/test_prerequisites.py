import os
import stat

import pytest

from rds_ssm_connect.services.prerequisites import (
    Prerequisite,
    _first_token,
    check_prerequisites,
)

pytestmark = pytest.mark.skipif(os.name == "nt", reason="uses shell scripts as fake tools")


def _fake_tool(tmp_path, name: str, output: str, exit_code: int = 0) -> str:
    path = tmp_path / name
    path.write_text(f"#!/bin/sh\necho '{output}'\nexit {exit_code}\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return str(path)


def test_first_token_extracts_aws_cli_version():
    assert _first_token("aws-cli/2.15.0 Python/3.11.6 Darwin/23.0.0") == "aws-cli/2.15.0"
    assert _first_token("") == ""


@pytest.mark.asyncio
async def test_installed_and_missing_tools(tmp_path):
    vault = _fake_tool(tmp_path, "aws-vault", "v7.2.0")
    aws = _fake_tool(tmp_path, "aws", "aws-cli/2.15.0 Python/3.11.6 Linux/6.1")

    result = await check_prerequisites([
        Prerequisite("aws-vault", vault, "https://github.com/99designs/aws-vault#installing"),
        Prerequisite("AWS CLI", aws, "https://docs.aws.amazon.com/cli/", parse_version=_first_token),
        Prerequisite("Session Manager Plugin", str(tmp_path / "missing"), "https://docs.aws.amazon.com/"),
    ])

    by_name = {p.name: p for p in result.prerequisites}
    assert not result.all_installed
    assert by_name["aws-vault"].version == "v7.2.0"
    assert by_name["AWS CLI"].version == "aws-cli/2.15.0"
    assert not by_name["Session Manager Plugin"].installed
    assert by_name["Session Manager Plugin"].version is None


@pytest.mark.asyncio
async def test_failing_version_command_counts_as_missing(tmp_path):
    broken = _fake_tool(tmp_path, "aws-vault", "boom", exit_code=1)

    result = await check_prerequisites([Prerequisite("aws-vault", broken, "https://example.invalid")])

    assert not result.all_installed
    assert not result.prerequisites[0].installed
