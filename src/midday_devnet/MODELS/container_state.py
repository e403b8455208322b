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
Lifecycle state machine for the containers a cluster owns.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from ..errors import InvalidState
from .cluster_spec import ServiceSpec


class ContainerState(str, Enum):
    """Lifecycle state of a cluster-owned container."""

    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    STOPPING = "stopping"
    STOPPED = "stopped"
    REMOVED = "removed"
    FAILED = "failed"


_TRANSITIONS: Dict[ContainerState, FrozenSet[ContainerState]] = {
    ContainerState.CREATED: frozenset({ContainerState.STARTING, ContainerState.STOPPING, ContainerState.FAILED}),
    ContainerState.STARTING: frozenset({ContainerState.RUNNING, ContainerState.STOPPING, ContainerState.FAILED}),
    ContainerState.RUNNING: frozenset({
        ContainerState.HEALTHY, ContainerState.UNHEALTHY, ContainerState.STOPPING, ContainerState.FAILED,
    }),
    ContainerState.HEALTHY: frozenset({ContainerState.STOPPING}),
    ContainerState.UNHEALTHY: frozenset({ContainerState.STOPPING}),
    ContainerState.STOPPING: frozenset({ContainerState.STOPPED, ContainerState.REMOVED, ContainerState.FAILED}),
    ContainerState.STOPPED: frozenset({ContainerState.STOPPING}),
    ContainerState.FAILED: frozenset({ContainerState.STOPPING}),
    ContainerState.REMOVED: frozenset(),
}


def can_transition(current: ContainerState, target: ContainerState) -> bool:
    return target in _TRANSITIONS[current]


@dataclass
class ContainerHandle:
    """
    Runtime identity of a container created for a service.

    ``container_id`` is the container name until the engine assigns an id, so
    a container whose creation failed halfway can still be removed by name.
    """

    service: ServiceSpec
    name: str
    container_id: str
    index: int
    state: ContainerState = ContainerState.CREATED
    error: Optional[BaseException] = None

    def transition(self, target: ContainerState) -> None:
        """
        Move to ``target``.

        Args:
            target: The next state.

        Raises:
            InvalidState: If the state machine does not allow the move.
        """
        if not can_transition(self.state, target):
            raise InvalidState(
                f"Container {self.name}: cannot go from {self.state.value} to {target.value}"
            )
        self.state = target

    def fail(self, error: BaseException) -> None:
        """Record an error and move to FAILED when that is still possible."""
        self.error = error
        if can_transition(self.state, ContainerState.FAILED):
            self.state = ContainerState.FAILED

    @property
    def is_removed(self) -> bool:
        return self.state is ContainerState.REMOVED
