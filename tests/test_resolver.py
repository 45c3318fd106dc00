import json

import pytest
from conftest import ENDPOINT, JUMP_HOST, REPLACEMENT_HOST, FakeRunner, make_project

from rds_ssm_connect.core.exceptions import ResolutionError, ValidationError
from rds_ssm_connect.core.utils import StopSignal
from rds_ssm_connect.services.aws.resolver import InfrastructureResolver


def make_resolver(responses) -> InfrastructureResolver:
    return InfrastructureResolver(FakeRunner(responses), agent_stabilization_seconds=0)


@pytest.mark.asyncio
async def test_find_jump_host(project):
    resolver = make_resolver({"describe-instances": [JUMP_HOST]})

    assert await resolver.find_jump_host("core-dev", "us-east-2") == JUMP_HOST

    args = resolver.runner.calls[0]
    assert "Name=tag:Name,Values=*bastion*" in args
    assert "Name=instance-state-name,Values=running" in args


@pytest.mark.asyncio
async def test_find_jump_host_none_sentinel_is_resolution_error():
    resolver = make_resolver({"describe-instances": ["None"]})

    with pytest.raises(ResolutionError) as exc:
        await resolver.find_jump_host("core-dev", "us-east-2")
    assert exc.value.what == "jump host"


@pytest.mark.asyncio
async def test_find_jump_host_rejects_malformed_instance_id():
    resolver = make_resolver({"describe-instances": ["i-NOTHEX"]})

    with pytest.raises(ValidationError):
        await resolver.find_jump_host("core-dev", "us-east-2")


@pytest.mark.asyncio
async def test_cluster_endpoint_and_port(project):
    resolver = make_resolver({"describe-db-clusters": [ENDPOINT, "5432"]})

    assert await resolver.get_database_endpoint("core-dev", project) == ENDPOINT
    assert await resolver.get_database_port("core-dev", project) == 5432

    query = resolver.runner.calls[0][resolver.runner.calls[0].index("--query") + 1]
    assert "contains(DBClusterIdentifier, 'core-db')" in query
    assert "Status=='available'" in query


@pytest.mark.asyncio
async def test_instance_endpoint_uses_instance_query():
    project = make_project(rdsType="instance")
    resolver = make_resolver({"describe-db-instances": [ENDPOINT]})

    assert await resolver.get_database_endpoint("core-dev", project) == ENDPOINT

    query = resolver.runner.calls[0][resolver.runner.calls[0].index("--query") + 1]
    assert "DBInstanceStatus=='available'" in query
    assert query.endswith("Endpoint.Address | [0]")


@pytest.mark.asyncio
async def test_missing_endpoint_is_resolution_error(project):
    resolver = make_resolver({"describe-db-clusters": ["None"]})

    with pytest.raises(ResolutionError):
        await resolver.get_database_endpoint("core-dev", project)


@pytest.mark.asyncio
async def test_port_falls_back_to_engine_default():
    resolver = make_resolver({})

    assert await resolver.get_database_port("core-dev", make_project(engine="mysql")) == 3306


@pytest.mark.asyncio
async def test_get_credentials(project):
    resolver = make_resolver({
        "list-secrets": ["rds/core/master"],
        "get-secret-value": [json.dumps({"username": "admin", "password": "s3cret"})],
    })

    assert await resolver.get_credentials("core-dev", project) == ("admin", "s3cret")
    assert resolver.runner.calls_for("get-secret-value")[0][-3] == "SecretString"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "secret_value",
    ["not json", json.dumps(["admin"]), json.dumps({"username": "admin"})],
)
async def test_malformed_credentials_are_resolution_errors(project, secret_value):
    resolver = make_resolver({
        "list-secrets": ["rds/core/master"],
        "get-secret-value": [secret_value],
    })

    with pytest.raises(ResolutionError):
        await resolver.get_credentials("core-dev", project)


@pytest.mark.asyncio
async def test_missing_secret_is_resolution_error(project):
    resolver = make_resolver({"list-secrets": ["None"]})

    with pytest.raises(ResolutionError):
        await resolver.get_credentials("core-dev", project)


@pytest.mark.asyncio
async def test_wait_for_agent_ready_polls_until_online():
    resolver = make_resolver({
        "describe-instance-information": ["ConnectionLost", "ConnectionLost", "Online"],
    })

    ready = await resolver.wait_for_agent_ready(
        "core-dev", REPLACEMENT_HOST, "us-east-2", max_attempts=5, poll_interval=0
    )

    assert ready
    assert len(resolver.runner.calls_for("describe-instance-information")) == 3


@pytest.mark.asyncio
async def test_wait_for_agent_ready_gives_up():
    resolver = make_resolver({"describe-instance-information": ["ConnectionLost"]})

    assert not await resolver.wait_for_agent_ready(
        "core-dev", REPLACEMENT_HOST, "us-east-2", max_attempts=3, poll_interval=0
    )


@pytest.mark.asyncio
async def test_wait_for_replacement_ignores_old_instance():
    resolver = make_resolver({
        "describe-instances": [JUMP_HOST, "None", REPLACEMENT_HOST],
        "describe-instance-information": ["Online"],
    })

    new_id = await resolver.wait_for_replacement_jump_host(
        "core-dev", JUMP_HOST, "us-east-2",
        max_attempts=5, poll_interval=0, agent_max_attempts=2, agent_poll_interval=0,
    )

    assert new_id == REPLACEMENT_HOST
    assert len(resolver.runner.calls_for("describe-instances")) == 3


@pytest.mark.asyncio
async def test_wait_for_replacement_exhausts_attempts():
    resolver = make_resolver({"describe-instances": [JUMP_HOST]})

    new_id = await resolver.wait_for_replacement_jump_host(
        "core-dev", JUMP_HOST, "us-east-2", max_attempts=3, poll_interval=0
    )

    assert new_id is None
    assert len(resolver.runner.calls_for("describe-instances")) == 3


@pytest.mark.asyncio
async def test_wait_for_replacement_stops_on_signal():
    resolver = make_resolver({"describe-instances": [JUMP_HOST]})
    stop = StopSignal()
    stop.set()

    new_id = await resolver.wait_for_replacement_jump_host(
        "core-dev", JUMP_HOST, "us-east-2", max_attempts=20, poll_interval=60, stop=stop
    )

    assert new_id is None
    assert len(resolver.runner.calls_for("describe-instances")) == 1


@pytest.mark.asyncio
async def test_terminate_jump_host():
    resolver = make_resolver({"terminate-instances": ["TERMINATINGINSTANCES"]})

    await resolver.terminate_jump_host("core-dev", JUMP_HOST, "us-east-2")

    args = resolver.runner.calls_for("terminate-instances")[0]
    assert args[args.index("--instance-ids") + 1] == JUMP_HOST
