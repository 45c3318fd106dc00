import asyncio
import json
from typing import Dict, List, Optional, Sequence

import pytest

from rds_ssm_connect.schemas.project import ProjectDefinition
from rds_ssm_connect.services.aws.command_runner import CommandRunner
from rds_ssm_connect.services.tunnels.schemas import SessionOutcome

PROJECT_ENTRY = {
    "name": "Core Platform",
    "region": "us-east-2",
    "database": "core",
    "secretPrefix": "rds/core",
    "rdsType": "cluster",
    "rdsPattern": "core-db",
    "envPortMapping": {"dev": "5433", "perf-dev": "5440", "prod": "5434"},
    "defaultPort": "5432",
}


JUMP_HOST = "i-0123456789abcdef0"
REPLACEMENT_HOST = "i-0fedcba9876543210"
ENDPOINT = "core-db.cluster-abc123.us-east-2.rds.amazonaws.com"


async def wait_until(predicate, timeout=2.0):
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")


def make_project(**overrides) -> ProjectDefinition:
    entry = {**PROJECT_ENTRY, **overrides}
    return ProjectDefinition.model_validate(entry)


@pytest.fixture
def project() -> ProjectDefinition:
    return make_project()


@pytest.fixture
def projects_file(tmp_path):
    path = tmp_path / "projects.json"
    path.write_text(json.dumps({"core": PROJECT_ENTRY}))
    return str(path)


class FakeRunner(CommandRunner):
    """
    CommandRunner that answers from a script instead of spawning aws-vault.

    ``responses`` maps an AWS CLI subcommand (e.g. "describe-instances")
    to a list of outputs returned in order; the last one repeats.
    """

    def __init__(self, responses: Optional[Dict[str, List[Optional[str]]]] = None):
        super().__init__(identity_wrapper="aws-vault", aws_cli="aws", timeout=5)
        self.responses = {k: list(v) for k, v in (responses or {}).items()}
        self.calls: List[List[str]] = []

    async def run(self, profile: str, args: Sequence[str], sensitive: bool = False):
        self.build_argv(profile, args)
        self.calls.append(list(args))
        queue = self.responses.get(args[1])
        if not queue:
            return None
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]

    def calls_for(self, subcommand: str) -> List[List[str]]:
        return [c for c in self.calls if c[1] == subcommand]


class FakeResolver:
    def __init__(self, jump_hosts: Optional[List] = None, replacement: Optional[str] = REPLACEMENT_HOST):
        self.runner = CommandRunner(identity_wrapper="aws-vault", aws_cli="aws")
        self.jump_hosts = list(jump_hosts or [JUMP_HOST])
        self.replacement = replacement
        self.block_replacement = False
        self.waiting_for_replacement = False
        self.find_calls = 0
        self.terminated: List[str] = []
        self.credentials_gate: Optional[asyncio.Event] = None

    async def get_credentials(self, profile, project):
        if self.credentials_gate is not None:
            await self.credentials_gate.wait()
        return "admin", "s3cret"

    async def find_jump_host(self, profile, region, pattern="*bastion*"):
        self.find_calls += 1
        result = self.jump_hosts.pop(0) if len(self.jump_hosts) > 1 else self.jump_hosts[0]
        if isinstance(result, Exception):
            raise result
        return result

    async def get_database_endpoint(self, profile, project):
        return ENDPOINT

    async def get_database_port(self, profile, project):
        return 5432

    async def terminate_jump_host(self, profile, instance_id, region):
        self.terminated.append(instance_id)

    async def wait_for_replacement_jump_host(self, profile, old_instance_id, region, max_attempts,
                                             poll_interval, pattern="*bastion*", agent_max_attempts=None,
                                             agent_poll_interval=None, stop=None):
        if self.block_replacement:
            self.waiting_for_replacement = True
            await stop.wait(3600)
            return None
        return self.replacement


class FakeHandle:
    def __init__(self, argv):
        self.argv = argv
        self.killed = False
        self.exited = asyncio.Event()

    def arg(self, flag):
        return self.argv[self.argv.index(flag) + 1]


class FakeProcessManager:
    """Hands out scripted exits; once the script runs out, forwarding stays up until killed."""

    def __init__(self, outcomes: Optional[List[SessionOutcome]] = None):
        self.outcomes = list(outcomes or [])
        self.spawned: List[FakeHandle] = []
        self.spawn_gate: Optional[asyncio.Event] = None

    async def spawn(self, argv):
        if self.spawn_gate is not None:
            await self.spawn_gate.wait()
        handle = FakeHandle(argv)
        self.spawned.append(handle)
        return handle

    async def monitor(self, handle):
        if self.outcomes:
            return self.outcomes.pop(0)
        await handle.exited.wait()
        return SessionOutcome(returncode=-15, established=True)

    async def kill_tree(self, handle):
        handle.killed = True
        handle.exited.set()

    def get_tracked_processes(self):
        return [h for h in self.spawned if not h.killed]
