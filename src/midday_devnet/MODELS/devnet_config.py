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
User-facing devnet configuration with defaults for every service.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..REGISTRY.image_catalog import ImageCatalog
from .cluster_spec import BackoffPolicy, ClusterSpec, ServiceRole, ServiceSpec, VolumeMount, check_name

DEFAULT_CLUSTER_NAME = "midday-devnet"


class NodeConfig(BaseModel):
    """
    Options for the blockchain node container.
    """
    image: Optional[str] = None
    port: Optional[int] = None
    cfg_preset: str = "dev"


class IndexerConfig(BaseModel):
    """
    Options for the indexer container.
    """
    image: Optional[str] = None
    port: Optional[int] = None
    log_level: str = "info"


class ProofServerConfig(BaseModel):
    """
    Options for the proof server container.
    """
    image: Optional[str] = None
    port: Optional[int] = None
    # Host directory with ZK parameters, mounted into the container when set
    zk_params_path: Optional[str] = None


class AuxiliaryConfig(BaseModel):
    """
    Options for an optional helper service (faucet or fee relay).
    """
    image: Optional[str] = None
    port: Optional[int] = None
    enabled: bool = False


class HealthConfig(BaseModel):
    """
    Overrides applied to every readiness probe.
    """
    timeout: Optional[float] = None
    backoff: Optional[BackoffPolicy] = None


class DevNetConfig(BaseModel):
    """
    Complete devnet configuration, equivalent to a parsed devnet.yml file.
    Unset values fall back to the image catalog.
    """
    cluster_name: str = DEFAULT_CLUSTER_NAME
    host: str = "localhost"
    network_id: str = "undeployed"
    # Let the OS pick free host ports instead of the catalog defaults
    dynamic_ports: bool = False

    node: NodeConfig = Field(default_factory=NodeConfig)
    indexer: IndexerConfig = Field(default_factory=IndexerConfig)
    proof_server: ProofServerConfig = Field(default_factory=ProofServerConfig)
    faucet: AuxiliaryConfig = Field(default_factory=AuxiliaryConfig)
    fee_relay: AuxiliaryConfig = Field(default_factory=AuxiliaryConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)

    labels: Dict[str, str] = {}

    @field_validator("cluster_name")
    @classmethod
    def validate_cluster_name(cls, value: str) -> str:
        return check_name(value)

    def enabled_roles(self) -> List[ServiceRole]:
        roles = [ServiceRole.NODE, ServiceRole.INDEXER, ServiceRole.PROOF_SERVER]
        if self.faucet.enabled:
            roles.append(ServiceRole.FAUCET)
        if self.fee_relay.enabled:
            roles.append(ServiceRole.FEE_RELAY)
        return roles

    def to_cluster_spec(self, catalog: Optional[ImageCatalog] = None) -> ClusterSpec:
        """
        Builds the ClusterSpec for this configuration.

        :param catalog: Image catalog providing defaults; the built-in one if omitted.
        :return: The cluster definition.
        """
        catalog = catalog or ImageCatalog()
        sections = {
            ServiceRole.NODE: self.node,
            ServiceRole.INDEXER: self.indexer,
            ServiceRole.PROOF_SERVER: self.proof_server,
            ServiceRole.FAUCET: self.faucet,
            ServiceRole.FEE_RELAY: self.fee_relay,
        }
        enabled = self.enabled_roles()

        services = []
        for role in enabled:
            entry = catalog.get(role)
            section = sections[role]

            host_port = section.port
            if host_port is None and not self.dynamic_ports:
                host_port = entry.host_port

            options = {"network_id": self.network_id}
            if role is ServiceRole.NODE:
                options["cfg_preset"] = self.node.cfg_preset
            elif role is ServiceRole.INDEXER:
                options["log_level"] = self.indexer.log_level

            volumes = []
            if role is ServiceRole.PROOF_SERVER and self.proof_server.zk_params_path:
                volumes.append(VolumeMount(
                    source=self.proof_server.zk_params_path,
                    target="/root/.cache/midnight/zk-params",
                ))

            probe_updates = {}
            if self.health.timeout is not None:
                probe_updates["timeout"] = self.health.timeout
            if self.health.backoff is not None:
                probe_updates["backoff"] = self.health.backoff
            probe = entry.probe.model_copy(update=probe_updates) if probe_updates else entry.probe

            services.append(ServiceSpec(
                name=role.value,
                role=role,
                image=section.image or entry.image,
                ports={entry.container_port: host_port},
                main_port=entry.container_port,
                environment=entry.environment(self.cluster_name, options),
                volumes=volumes,
                health_check=probe,
                depends_on=[dep.value for dep in entry.depends_on if dep in enabled],
            ))

        return ClusterSpec(
            name=self.cluster_name,
            services=services,
            host=self.host,
            network_id=self.network_id,
            labels=self.labels,
        )
