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
Unit tests for the network manager.
"""
from unittest.mock import MagicMock

import pytest
from docker import errors as docker_errors

from midday_devnet.errors import AlreadyExists, OperationFailed
from midday_devnet.MANAGERS.engine import EngineClient
from midday_devnet.MANAGERS.network_manager import NetworkManager


def _network(name, network_id="n1"):
    network = MagicMock(id=network_id)
    network.name = name
    return network


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def manager(client):
    return NetworkManager(EngineClient(client=client))


class TestNetworkManager:
    """Tests for NetworkManager."""

    @pytest.mark.asyncio
    async def test_create(self, manager, client):
        """Test that a bridge network is created with the given labels."""
        client.networks.list.return_value = []
        client.networks.create.return_value = _network("dev-network", "net123")

        network_id = await manager.create("dev-network", {"io.midday.devnet.cluster": "dev"})

        assert network_id == "net123"
        client.networks.create.assert_called_once_with(
            "dev-network", driver="bridge", labels={"io.midday.devnet.cluster": "dev"},
        )

    @pytest.mark.asyncio
    async def test_create_existing(self, manager, client):
        client.networks.list.return_value = [_network("dev-network")]
        with pytest.raises(AlreadyExists):
            await manager.create("dev-network")
        client.networks.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_race_loser_rolls_back(self, manager, client):
        """Test that a network created alongside a same-named one is removed again."""
        ours = _network("dev-network", "net-b")
        client.networks.list.side_effect = [
            [],
            [_network("dev-network", "net-a"), ours],
        ]
        client.networks.create.return_value = ours

        with pytest.raises(AlreadyExists):
            await manager.create("dev-network")
        ours.remove.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_create_race_winner_keeps_network(self, manager, client):
        ours = _network("dev-network", "net-a")
        client.networks.list.side_effect = [
            [],
            [ours, _network("dev-network", "net-b"), _network("dev-network-old", "net-0")],
        ]
        client.networks.create.return_value = ours

        assert await manager.create("dev-network") == "net-a"
        ours.remove.assert_not_called()

    @pytest.mark.asyncio
    async def test_exists_requires_exact_name(self, manager, client):
        """Test that a network whose name merely contains the query does not count."""
        client.networks.list.return_value = [_network("dev-network-old")]
        assert await manager.exists("dev-network") is False
        client.networks.list.return_value = [_network("dev-network-old"), _network("dev-network")]
        assert await manager.exists("dev-network") is True

    @pytest.mark.asyncio
    async def test_remove(self, manager, client):
        await manager.remove("net123")
        client.networks.get.assert_called_once_with("net123")
        client.networks.get.return_value.remove.assert_called_once()

    @pytest.mark.asyncio
    async def test_remove_missing_network(self, manager, client):
        client.networks.get.side_effect = docker_errors.NotFound("network net123 not found")
        await manager.remove("net123")

    @pytest.mark.asyncio
    async def test_remove_in_use(self, manager, client):
        """Test that a network with attached containers cannot be removed."""
        client.networks.get.return_value.remove.side_effect = docker_errors.APIError(
            "network has active endpoints", response=MagicMock(status_code=403),
        )
        with pytest.raises(OperationFailed):
            await manager.remove("net123")
