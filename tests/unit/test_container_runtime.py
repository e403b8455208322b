# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Unit tests for ContainerRuntime and the engine error translation,
with the docker client replaced by mocks.
"""
from unittest.mock import MagicMock

import pytest
import requests
from docker import errors as docker_errors

from midday_devnet.errors import AlreadyExists, EngineUnreachable, NotFound, OperationFailed
from midday_devnet.MANAGERS.container_runtime import ContainerRuntime, ContainerStatus
from midday_devnet.MANAGERS.engine import EngineClient
from midday_devnet.MODELS.cluster_spec import ServiceSpec, VolumeMount


def _api_error(status_code, message="engine said no"):
    return docker_errors.APIError(message, response=MagicMock(status_code=status_code))


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def runtime(client):
    return ContainerRuntime(EngineClient(client=client))


class TestEngineClient:
    """Tests for EngineClient error translation."""

    @pytest.mark.asyncio
    async def test_returns_result(self, client):
        engine = EngineClient(client=client)
        assert await engine.run("ping", "engine", lambda c: c is client) is True

    @pytest.mark.asyncio
    async def test_not_found(self, client):
        def fn(c):
            raise docker_errors.NotFound("No such container: x")

        with pytest.raises(NotFound) as info:
            await EngineClient(client=client).run("start container", "x", fn)
        assert isinstance(info.value.cause, docker_errors.NotFound)

    @pytest.mark.asyncio
    async def test_conflict_on_create(self, client):
        """Test that a 409 while creating means the name is taken."""
        def fn(c):
            raise _api_error(409, "Conflict. The container name is already in use")

        with pytest.raises(AlreadyExists):
            await EngineClient(client=client).run("create container", "dev-node", fn)

    @pytest.mark.asyncio
    async def test_conflict_elsewhere_is_operation_failure(self, client):
        def fn(c):
            raise _api_error(409, "removal already in progress")

        with pytest.raises(OperationFailed):
            await EngineClient(client=client).run("remove container", "dev-node", fn)

    @pytest.mark.asyncio
    async def test_server_error(self, client):
        def fn(c):
            raise _api_error(500)

        with pytest.raises(OperationFailed, match="start container dev-node"):
            await EngineClient(client=client).run("start container", "dev-node", fn)

    @pytest.mark.asyncio
    async def test_connection_error(self, client):
        def fn(c):
            raise requests.exceptions.ConnectionError("socket closed")

        with pytest.raises(EngineUnreachable):
            await EngineClient(client=client).run("ping", "engine", fn)

    def test_connect_failure(self, monkeypatch):
        """Test that a missing engine is reported on first use."""
        def from_env(**kwargs):
            raise docker_errors.DockerException("Error while fetching server API version")

        monkeypatch.setattr("midday_devnet.MANAGERS.engine.docker.from_env", from_env)
        with pytest.raises(EngineUnreachable, match="Cannot connect"):
            EngineClient().client

    def test_close(self, client):
        engine = EngineClient(client=client)
        engine.close()
        client.close.assert_called_once()


class TestContainerRuntime:
    """Tests for ContainerRuntime."""

    @pytest.mark.asyncio
    async def test_create_container(self, runtime, client):
        client.containers.create.return_value = MagicMock(id="abc123def456")
        service = ServiceSpec(
            name="proof-server",
            image="bricktowers/proof-server:7.0.0",
            ports={6300: 16300},
            environment={"HOME": "/root"},
            volumes=[VolumeMount(source="/data/zk", target="/root/.cache/midnight/zk-params", read_only=True)],
        )

        container_id = await runtime.create_container(
            "dev-proof-server", service, network="dev-network", labels={"io.midday.devnet.cluster": "dev"},
        )

        assert container_id == "abc123def456"
        kwargs = client.containers.create.call_args.kwargs
        assert kwargs["name"] == "dev-proof-server"
        assert kwargs["image"] == "bricktowers/proof-server:7.0.0"
        assert kwargs["ports"] == {"6300/tcp": 16300}
        assert kwargs["volumes"] == {"/data/zk": {"bind": "/root/.cache/midnight/zk-params", "mode": "ro"}}
        assert kwargs["network"] == "dev-network"
        assert kwargs["labels"] == {"io.midday.devnet.cluster": "dev"}
        assert kwargs["command"] is None

    @pytest.mark.asyncio
    async def test_ensure_image_pulls_when_missing(self, runtime, client):
        client.images.get.side_effect = docker_errors.ImageNotFound("missing")
        await runtime.ensure_image("midday-faucet:latest")
        client.images.pull.assert_called_once_with("midday-faucet:latest")

    @pytest.mark.asyncio
    async def test_ensure_image_present(self, runtime, client):
        await runtime.ensure_image("midday-faucet:latest")
        client.images.pull.assert_not_called()

    @pytest.mark.asyncio
    async def test_stop_running_container(self, runtime, client):
        container = client.containers.get.return_value
        container.status = "running"
        await runtime.stop("dev-node")
        container.stop.assert_called_once_with(timeout=10)

    @pytest.mark.asyncio
    async def test_stop_exited_container_is_noop(self, runtime, client):
        container = client.containers.get.return_value
        container.status = "exited"
        await runtime.stop("dev-node")
        container.stop.assert_not_called()

    @pytest.mark.asyncio
    async def test_remove_missing_container(self, runtime, client):
        client.containers.get.side_effect = docker_errors.NotFound("No such container")
        with pytest.raises(NotFound):
            await runtime.remove("dev-node", force=True)

    @pytest.mark.asyncio
    async def test_remove_forces_and_drops_volumes(self, runtime, client):
        await runtime.remove("dev-node", force=True)
        client.containers.get.return_value.remove.assert_called_once_with(force=True, v=True)

    @pytest.mark.asyncio
    async def test_inspect(self, runtime, client):
        client.containers.get.return_value.attrs = {
            "Id": "abc",
            "Name": "/dev-node",
            "State": {"Status": "running", "Running": True, "ExitCode": 0, "Health": {"Status": "starting"}},
            "Config": {"Labels": {"io.midday.devnet.service": "node"}},
        }
        status = await runtime.inspect("dev-node")
        assert status == ContainerStatus(
            id="abc", name="dev-node", status="running", running=True, health="starting",
            exit_code=0, labels={"io.midday.devnet.service": "node"},
        )

    @pytest.mark.asyncio
    async def test_logs(self, runtime, client):
        client.containers.get.return_value.logs.return_value = b"line one\nline two\n"
        assert await runtime.logs("dev-node") == ["line one", "line two"]

    @pytest.mark.asyncio
    async def test_stream_logs_splits_chunks(self, runtime, client):
        client.containers.get.return_value.logs.return_value = iter([b"Idle (0 ", b"peers)\nBest: #1\n", b"tail"])
        lines = [line async for line in runtime.stream_logs("dev-node")]
        assert lines == ["Idle (0 peers)", "Best: #1", "tail"]

    @pytest.mark.asyncio
    async def test_list_containers_by_label(self, runtime, client):
        client.containers.list.return_value = [MagicMock(attrs={"Id": "1", "Name": "/dev-node", "State": {}})]
        result = await runtime.list_containers({"io.midday.devnet.cluster": "dev"})
        assert [status.name for status in result] == ["dev-node"]
        client.containers.list.assert_called_once_with(
            all=True, filters={"label": ["io.midday.devnet.cluster=dev"]},
        )
