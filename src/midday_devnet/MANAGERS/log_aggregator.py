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
Log aggregation and tailing for cluster containers.
"""
import asyncio
import logging
from typing import Callable, List

from ..errors import NotFound
from .container_runtime import ContainerRuntime

logger = logging.getLogger(__name__)


class LogAggregator:
    """
    Interleaves the log streams of several cluster containers.
    """
    def __init__(self, runtime: ContainerRuntime, cluster_name: str,
                 sink: Callable[[str], None] = print):
        """
        Initializes the log aggregator.

        :param runtime: Runtime used to read container logs.
        :param cluster_name: Cluster whose containers are tailed.
        :param sink: Receives each formatted line.
        """
        self.runtime = runtime
        self.cluster_name = cluster_name
        self.sink = sink

    async def tail_logs(self, service_names: List[str], follow: bool = True) -> None:
        """
        Streams logs for the specified services until they all end.

        :param service_names: Names of the services to tail.
        :param follow: Keep streaming new output.
        """
        logger.info("Tailing logs for: %s", ", ".join(service_names))
        await asyncio.gather(*(self._tail(name, follow) for name in service_names))

    async def _tail(self, service_name: str, follow: bool) -> None:
        container = f"{self.cluster_name}-{service_name}"
        try:
            async for line in self.runtime.stream_logs(container, follow=follow):
                self.sink(f"{service_name:15} | {line.rstrip()}")
        except NotFound:
            self.sink(f"{service_name:15} | (no container {container})")
