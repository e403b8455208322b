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
Network management for clusters: one isolated bridge network per cluster.
"""
import logging
from typing import Dict, Optional

from ..errors import AlreadyExists, NotFound
from .engine import EngineClient

logger = logging.getLogger(__name__)


class NetworkManager:
    """
    Creates and removes the virtual networks cluster containers join.
    Containers on the same network reach each other by container name.
    """
    def __init__(self, engine: Optional[EngineClient] = None, driver: str = "bridge"):
        """
        Initializes the network manager.

        :param engine: Shared engine connection; a default one is created if omitted.
        :param driver: Network driver to use.
        """
        self.engine = engine or EngineClient()
        self.driver = driver

    async def exists(self, name: str) -> bool:
        """
        Checks whether a network with exactly this name exists.
        """
        def _exists(client):
            # The engine's name filter also matches substrings
            return any(net.name == name for net in client.networks.list(names=[name]))

        return await self.engine.run("list networks", name, _exists)

    async def create(self, name: str, labels: Optional[Dict[str, str]] = None) -> str:
        """
        Creates a network.

        :param name: Network name.
        :param labels: Labels to set on the network.
        :return: Engine-assigned network id.
        :raises AlreadyExists: If a network with that name is already present.
        """
        def _create(client):
            if any(net.name == name for net in client.networks.list(names=[name])):
                raise AlreadyExists(f"Network '{name}' already exists")
            network = client.networks.create(
                name, driver=self.driver, labels=dict(labels or {}),
            )
            # The engine may accept a second network with the same name when two
            # creators race; the lowest id is kept and every other one removed.
            same_name = [net.id for net in client.networks.list(names=[name]) if net.name == name]
            if len(same_name) > 1 and network.id != min(same_name):
                network.remove()
                raise AlreadyExists(f"Network '{name}' already exists")
            return network.id

        network_id = await self.engine.run("create network", name, _create)
        logger.info("Created network %s", name)
        return network_id

    async def remove(self, network_id: str) -> None:
        """
        Removes a network. A network that no longer exists is not an error.
        """
        try:
            await self.engine.run("remove network", network_id,
                                  lambda client: client.networks.get(network_id).remove())
        except NotFound:
            logger.debug("Network %s already removed", network_id)
            return
        logger.info("Removed network %s", network_id)
