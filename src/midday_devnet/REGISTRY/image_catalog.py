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
Static catalog of the images that make up a devnet.

Maps each service role to its image reference, internal port, default host
port, dependencies, readiness probe and environment.
"""
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

from ..errors import ConfigError
from ..MODELS.cluster_spec import (
    GraphQLProbeSpec,
    HttpProbeSpec,
    ProbeSpec,
    ServiceRole,
    TcpProbeSpec,
)

# Indexer secret used by the upstream docker-compose setup. Local use only.
DEV_INDEXER_SECRET = "303132333435363738393031323334353637383930313233343536373839303132"

NODE_PORT = 9944
INDEXER_PORT = 8088
PROOF_SERVER_PORT = 6300
FAUCET_PORT = 3001
FEE_RELAY_PORT = 3002

EnvBuilder = Callable[[str, Dict[str, str]], Dict[str, str]]


def _node_env(cluster_name: str, options: Dict[str, str]) -> Dict[str, str]:
    return {"CFG_PRESET": options.get("cfg_preset", "dev")}


def _indexer_env(cluster_name: str, options: Dict[str, str]) -> Dict[str, str]:
    level = options.get("log_level", "info")
    targets = [
        "indexer", "chain_indexer", "indexer_api", "wallet_indexer",
        "indexer_common", "fastrace_opentelemetry",
    ]
    rust_log = ",".join(f"{target}={level}" for target in targets) + f",{level}"
    return {
        "RUST_LOG": rust_log,
        "APP__INFRA__SECRET": DEV_INDEXER_SECRET,
        "APP__INFRA__NODE__URL": f"ws://{cluster_name}-node:{NODE_PORT}",
    }


def _proof_server_env(cluster_name: str, options: Dict[str, str]) -> Dict[str, str]:
    return {"HOME": "/root"}


def _internal_urls(cluster_name: str, options: Dict[str, str]) -> Dict[str, str]:
    return {
        "NETWORK_ID": options.get("network_id", "undeployed"),
        "INDEXER_URL": f"http://{cluster_name}-indexer:{INDEXER_PORT}/api/v3/graphql",
        "INDEXER_WS_URL": f"ws://{cluster_name}-indexer:{INDEXER_PORT}/api/v3/graphql/ws",
        "NODE_URL": f"ws://{cluster_name}-node:{NODE_PORT}",
        "PROOF_SERVER_URL": f"http://{cluster_name}-proof-server:{PROOF_SERVER_PORT}",
    }


def _faucet_env(cluster_name: str, options: Dict[str, str]) -> Dict[str, str]:
    env = _internal_urls(cluster_name, options)
    env["FAUCET_PORT"] = str(FAUCET_PORT)
    return env


def _fee_relay_env(cluster_name: str, options: Dict[str, str]) -> Dict[str, str]:
    env = _internal_urls(cluster_name, options)
    env["FEE_RELAY_PORT"] = str(FEE_RELAY_PORT)
    return env


@dataclass(frozen=True)
class CatalogEntry:
    """
    Defaults for one service role.
    """
    role: ServiceRole
    image: str
    container_port: int
    host_port: int
    probe: ProbeSpec
    depends_on: Tuple[ServiceRole, ...] = ()
    env_builder: EnvBuilder = field(default=lambda cluster_name, options: {})

    def environment(self, cluster_name: str, options: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        return self.env_builder(cluster_name, options or {})


class ImageCatalog:
    """
    Lookup table from service role to catalog entry.
    """
    def __init__(self, entries: Optional[Dict[ServiceRole, CatalogEntry]] = None):
        """
        Initializes the catalog.

        :param entries: Entries to use instead of the built-in defaults.
        """
        self._entries = dict(DEFAULT_ENTRIES if entries is None else entries)

    def get(self, role) -> CatalogEntry:
        """
        Returns the entry for a role.

        :param role: A ServiceRole or its string value.
        :return: The catalog entry.
        :raises ConfigError: If no image is registered for the role.
        """
        try:
            key = ServiceRole(role)
            return self._entries[key]
        except (ValueError, KeyError):
            raise ConfigError(f"No image registered for service '{role}'") from None

    def image(self, role) -> str:
        return self.get(role).image

    def roles(self) -> Tuple[ServiceRole, ...]:
        return tuple(self._entries)

    def with_image(self, role, image: str) -> "ImageCatalog":
        """
        Returns a copy of the catalog with one image reference replaced.
        """
        entry = self.get(role)
        entries = dict(self._entries)
        entries[entry.role] = CatalogEntry(
            role=entry.role,
            image=image,
            container_port=entry.container_port,
            host_port=entry.host_port,
            probe=entry.probe,
            depends_on=entry.depends_on,
            env_builder=entry.env_builder,
        )
        return ImageCatalog(entries)


DEFAULT_ENTRIES: Dict[ServiceRole, CatalogEntry] = {
    ServiceRole.NODE: CatalogEntry(
        role=ServiceRole.NODE,
        image="midnightntwrk/midnight-node:0.20.1",
        container_port=NODE_PORT,
        host_port=NODE_PORT,
        probe=HttpProbeSpec(port=NODE_PORT, path="/health", timeout=90.0),
        env_builder=_node_env,
    ),
    ServiceRole.INDEXER: CatalogEntry(
        role=ServiceRole.INDEXER,
        image="midnightntwrk/indexer-standalone:3.0.0",
        container_port=INDEXER_PORT,
        host_port=INDEXER_PORT,
        probe=GraphQLProbeSpec(port=INDEXER_PORT, timeout=120.0),
        depends_on=(ServiceRole.NODE,),
        env_builder=_indexer_env,
    ),
    ServiceRole.PROOF_SERVER: CatalogEntry(
        role=ServiceRole.PROOF_SERVER,
        image="bricktowers/proof-server:7.0.0",
        container_port=PROOF_SERVER_PORT,
        host_port=PROOF_SERVER_PORT,
        probe=TcpProbeSpec(port=PROOF_SERVER_PORT, timeout=60.0, attempt_timeout=2.0),
        env_builder=_proof_server_env,
    ),
    ServiceRole.FAUCET: CatalogEntry(
        role=ServiceRole.FAUCET,
        image="midday-faucet:latest",
        container_port=FAUCET_PORT,
        host_port=FAUCET_PORT,
        probe=TcpProbeSpec(port=FAUCET_PORT, timeout=60.0, attempt_timeout=2.0),
        depends_on=(ServiceRole.NODE, ServiceRole.INDEXER, ServiceRole.PROOF_SERVER),
        env_builder=_faucet_env,
    ),
    ServiceRole.FEE_RELAY: CatalogEntry(
        role=ServiceRole.FEE_RELAY,
        image="midday-fee-relay:latest",
        container_port=FEE_RELAY_PORT,
        host_port=FEE_RELAY_PORT,
        probe=HttpProbeSpec(port=FEE_RELAY_PORT, path="/health", timeout=60.0),
        depends_on=(ServiceRole.NODE, ServiceRole.INDEXER, ServiceRole.PROOF_SERVER),
        env_builder=_fee_relay_env,
    ),
}
