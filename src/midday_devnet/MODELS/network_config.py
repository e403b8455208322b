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
Endpoints a started cluster exposes to SDK clients.
"""
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict

from .cluster_spec import ServiceRole


class NetworkConfig(BaseModel):
    """
    Read-only snapshot of resolved endpoint URIs.

    Only services that reached HEALTHY have a URI; the others are None and
    left out of ``to_dict``.
    """
    model_config = ConfigDict(frozen=True)

    network_id: str = "undeployed"
    node_uri: Optional[str] = None
    indexer_uri: Optional[str] = None
    indexer_ws_uri: Optional[str] = None
    proof_server_uri: Optional[str] = None
    faucet_uri: Optional[str] = None
    fee_relay_uri: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        return self.model_dump(exclude_none=True)


def role_endpoints(role: ServiceRole, host: str, port: int) -> Dict[str, str]:
    """
    Return the NetworkConfig fields a service of ``role`` provides.

    :param role: Role of the service.
    :param host: Host clients connect to.
    :param port: Published host port of the service's main port.
    :return: Field name to URI.
    """
    address = f"{host}:{port}"
    if role is ServiceRole.NODE:
        return {"node_uri": f"ws://{address}"}
    if role is ServiceRole.INDEXER:
        return {
            "indexer_uri": f"http://{address}/api/v3/graphql",
            "indexer_ws_uri": f"ws://{address}/api/v3/graphql/ws",
        }
    if role is ServiceRole.PROOF_SERVER:
        return {"proof_server_uri": f"http://{address}"}
    if role is ServiceRole.FAUCET:
        return {"faucet_uri": f"http://{address}"}
    if role is ServiceRole.FEE_RELAY:
        return {"fee_relay_uri": f"http://{address}"}
    return {}
