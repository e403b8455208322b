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
Readiness probes. A probe is one attempt: it returns True when the service
is ready, False when it should be retried, and raises for problems that no
amount of waiting can fix.
"""
import asyncio
import logging
import re
from typing import Awaitable, Callable, Optional

import httpx

from ..errors import ContainerExited, OperationFailed, ProbeConfigError
from ..MODELS.cluster_spec import (
    ContainerHealthProbeSpec,
    GraphQLProbeSpec,
    HttpProbeSpec,
    LogProbeSpec,
    ProbeSpec,
    ServiceSpec,
    TcpProbeSpec,
)
from .container_runtime import ContainerRuntime

logger = logging.getLogger(__name__)

Probe = Callable[[], Awaitable[bool]]

_EXITED_STATES = {"exited", "dead"}


class HttpProbe:
    """
    Succeeds on a 2xx response, or on ``expected_status`` when given.
    """

    def __init__(self, url: str, expected_status: Optional[int] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.expected_status = expected_status
        self.transport = transport

    async def _request(self) -> httpx.Response:
        async with httpx.AsyncClient(transport=self.transport) as client:
            return await client.get(self.url)

    async def __call__(self) -> bool:
        try:
            response = await self._request()
        except httpx.HTTPError as exc:
            logger.debug("Probe %s failed: %s", self.url, exc)
            return False
        return self._accept(response)

    def _accept(self, response: httpx.Response) -> bool:
        if self.expected_status is not None:
            return response.status_code == self.expected_status
        return response.is_success

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.url})"


class GraphQLProbe(HttpProbe):
    """
    Posts a query and succeeds when the answer is a 2xx without ``errors``.
    """

    def __init__(self, url: str, query: str = "{ __typename }",
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(url, transport=transport)
        self.query = query

    async def _request(self) -> httpx.Response:
        async with httpx.AsyncClient(transport=self.transport) as client:
            return await client.post(self.url, json={"query": self.query})

    def _accept(self, response: httpx.Response) -> bool:
        if not response.is_success:
            return False
        try:
            body = response.json()
        except ValueError:
            return False
        return isinstance(body, dict) and not body.get("errors")


class TcpProbe:
    """
    Succeeds once a TCP connection can be opened.
    """

    def __init__(self, host: str, port: int):
        self.host = host
        self.port = port

    async def __call__(self) -> bool:
        try:
            _, writer = await asyncio.open_connection(self.host, self.port)
        except OSError as exc:
            logger.debug("Probe tcp://%s:%s failed: %s", self.host, self.port, exc)
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    def __repr__(self) -> str:
        return f"TcpProbe({self.host}:{self.port})"


class LogPatternProbe:
    """
    Succeeds once any line of the container's log matches ``pattern``.
    """

    def __init__(self, runtime: ContainerRuntime, container: str, pattern: str):
        try:
            self.pattern = re.compile(pattern)
        except re.error as exc:
            raise ProbeConfigError(f"Invalid log pattern {pattern!r}: {exc}") from exc
        self.runtime = runtime
        self.container = container

    async def __call__(self) -> bool:
        try:
            lines = await self.runtime.logs(self.container)
        except OperationFailed as exc:
            logger.debug("Reading logs of %s failed: %s", self.container, exc)
            return False
        if any(self.pattern.search(line) for line in lines):
            return True
        await _raise_if_exited(self.runtime, self.container)
        return False

    def __repr__(self) -> str:
        return f"LogPatternProbe({self.container}, {self.pattern.pattern!r})"


class ContainerHealthProbe:
    """
    Succeeds once the engine reports the container's HEALTHCHECK as healthy.
    """

    def __init__(self, runtime: ContainerRuntime, container: str):
        self.runtime = runtime
        self.container = container

    async def __call__(self) -> bool:
        try:
            status = await self.runtime.inspect(self.container)
        except OperationFailed as exc:
            logger.debug("Inspecting %s failed: %s", self.container, exc)
            return False
        if status.status in _EXITED_STATES:
            raise ContainerExited(f"Container {self.container} exited with code {status.exit_code}")
        if status.health is None:
            raise ProbeConfigError(f"Container {self.container} has no HEALTHCHECK defined")
        return status.health == "healthy"

    def __repr__(self) -> str:
        return f"ContainerHealthProbe({self.container})"


async def _raise_if_exited(runtime: ContainerRuntime, container: str) -> None:
    try:
        status = await runtime.inspect(container)
    except OperationFailed:
        return
    if status.status in _EXITED_STATES:
        raise ContainerExited(f"Container {container} exited with code {status.exit_code}")


def _published_port(spec: ProbeSpec, service: ServiceSpec) -> int:
    host_port = service.host_port(spec.port)
    if host_port is None:
        raise ProbeConfigError(
            f"Service '{service.name}' probes port {spec.port}, which is not published"
        )
    return host_port


def build_probe(spec: ProbeSpec, service: ServiceSpec, host: str, container: str,
                runtime: ContainerRuntime,
                transport: Optional[httpx.AsyncBaseTransport] = None) -> Probe:
    """
    Builds the probe callable for a probe definition.

    Args:
        spec: The probe definition.
        service: The service being probed; its published ports resolve probe ports.
        host: Host the published ports are reachable on.
        container: Container id or name, for log and engine health probes.
        runtime: Runtime used by log and engine health probes.
        transport: Optional httpx transport for HTTP probes.

    Returns:
        An async callable performing one probe attempt.

    Raises:
        ProbeConfigError: If the definition can never succeed.
    """
    if isinstance(spec, GraphQLProbeSpec):
        port = _published_port(spec, service)
        return GraphQLProbe(f"http://{host}:{port}{spec.path}", spec.query, transport=transport)
    if isinstance(spec, HttpProbeSpec):
        port = _published_port(spec, service)
        return HttpProbe(f"http://{host}:{port}{spec.path}", spec.expected_status, transport=transport)
    if isinstance(spec, TcpProbeSpec):
        return TcpProbe(host, _published_port(spec, service))
    if isinstance(spec, LogProbeSpec):
        return LogPatternProbe(runtime, container, spec.pattern)
    if isinstance(spec, ContainerHealthProbeSpec):
        return ContainerHealthProbe(runtime, container)
    raise ProbeConfigError(f"Unsupported probe definition: {type(spec).__name__}")
