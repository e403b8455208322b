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
Dependency resolution for services to determine startup and shutdown order.
"""
from typing import Dict, List

from ..errors import ConfigError
from ..MODELS.cluster_spec import ClusterSpec


class DependencyResolver:
    """
    Resolves the startup order of services based on their dependencies.
    """
    def resolve_order(self, spec: ClusterSpec) -> List[str]:
        """
        Determines the order to start services using a topological sort.

        Among services whose dependencies are all satisfied, the one declared
        first goes first, so the order is deterministic.

        :param spec: The cluster definition.
        :return: Service names in the order they should be started.
        :raises ConfigError: On duplicate names, unknown dependencies or cycles.
        """
        names = [svc.name for svc in spec.services]
        seen = set()
        for name in names:
            if name in seen:
                raise ConfigError(f"Duplicate service name '{name}' in cluster '{spec.name}'")
            seen.add(name)

        dependencies: Dict[str, set] = {}
        for svc in spec.services:
            for dep in svc.depends_on:
                if dep not in seen:
                    raise ConfigError(f"Service '{svc.name}' depends on unknown service '{dep}'")
                if dep == svc.name:
                    raise ConfigError(f"Service '{svc.name}' depends on itself")
            dependencies[svc.name] = set(svc.depends_on)

        ordered: List[str] = []
        placed = set()
        remaining = list(names)
        while remaining:
            ready = next((n for n in remaining if dependencies[n] <= placed), None)
            if ready is None:
                raise ConfigError(
                    f"Circular dependency detected among: {', '.join(remaining)}"
                )
            ordered.append(ready)
            placed.add(ready)
            remaining.remove(ready)

        return ordered

