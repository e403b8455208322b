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
Container lifecycle operations against the Docker engine.
"""
import asyncio
import logging
from typing import AsyncIterator, Dict, List, Optional

from docker import errors as docker_errors
from pydantic import BaseModel

from ..MODELS.cluster_spec import ServiceSpec
from .engine import EngineClient

logger = logging.getLogger(__name__)

_ACTIVE_STATES = {"running", "restarting", "paused"}


class ContainerStatus(BaseModel):
    """
    Status of a container as reported by the engine.
    """
    id: str
    name: str
    status: str
    running: bool = False
    health: Optional[str] = None
    exit_code: Optional[int] = None
    labels: Dict[str, str] = {}

    @classmethod
    def from_attrs(cls, attrs: Dict) -> "ContainerStatus":
        state = attrs.get("State") or {}
        health = state.get("Health") or {}
        config = attrs.get("Config") or {}
        return cls(
            id=attrs.get("Id", ""),
            name=(attrs.get("Name") or "").lstrip("/"),
            status=state.get("Status", "unknown"),
            running=bool(state.get("Running", False)),
            health=health.get("Status"),
            exit_code=state.get("ExitCode"),
            labels=config.get("Labels") or {},
        )


class ContainerRuntime:
    """
    Creates, starts, stops, removes and inspects single containers.

    Containers are addressed by id or by name. Every engine failure surfaces
    as one of EngineUnreachable, NotFound, AlreadyExists or OperationFailed.
    """

    def __init__(self, engine: Optional[EngineClient] = None, stop_timeout: int = 10):
        """
        Initializes the runtime.

        :param engine: Shared engine connection; a default one is created if omitted.
        :param stop_timeout: Seconds to wait for a graceful stop before killing.
        """
        self.engine = engine or EngineClient()
        self.stop_timeout = stop_timeout

    async def ping(self) -> None:
        """Checks that the engine answers."""
        await self.engine.run("ping", "engine", lambda client: client.ping())

    async def ensure_image(self, image: str) -> None:
        """
        Pulls an image unless it is already present locally.

        :param image: Image reference, e.g. 'midnightntwrk/midnight-node:0.20.1'.
        """
        def _ensure(client):
            try:
                client.images.get(image)
                return False
            except docker_errors.ImageNotFound:
                logger.info("Pulling image %s (this may take a few minutes on first run)", image)
                client.images.pull(image)
                return True

        pulled = await self.engine.run("pull image", image, _ensure)
        if pulled:
            logger.info("Image ready: %s", image)

    async def create_container(self, name: str, service: ServiceSpec,
                               network: Optional[str] = None,
                               labels: Optional[Dict[str, str]] = None) -> str:
        """
        Creates (but does not start) a container for a service.

        :param name: Container name.
        :param service: Service definition providing image, ports, env and mounts.
        :param network: Network to attach the container to.
        :param labels: Labels to set on the container.
        :return: Engine-assigned container id.
        """
        ports = {f"{container_port}/tcp": host_port for container_port, host_port in service.ports.items()}
        volumes = {
            mount.source: {"bind": mount.target, "mode": "ro" if mount.read_only else "rw"}
            for mount in service.volumes
        }

        def _create(client):
            container = client.containers.create(
                image=service.image,
                command=service.command or None,
                name=name,
                environment=dict(service.environment),
                ports=ports or None,
                volumes=volumes or None,
                labels=dict(labels or {}),
                network=network,
                detach=True,
            )
            return container.id

        container_id = await self.engine.run("create container", name, _create)
        logger.debug("Created container %s (%s)", name, container_id[:12])
        return container_id

    async def start(self, ref: str) -> None:
        await self.engine.run("start container", ref, lambda client: client.containers.get(ref).start())

    async def stop(self, ref: str) -> None:
        """
        Stops a container. Stopping a container that is not running is a no-op.
        """
        def _stop(client):
            container = client.containers.get(ref)
            if container.status not in _ACTIVE_STATES:
                return False
            container.stop(timeout=self.stop_timeout)
            return True

        if await self.engine.run("stop container", ref, _stop):
            logger.debug("Stopped container %s", ref)

    async def remove(self, ref: str, force: bool = False) -> None:
        """
        Removes a container and its anonymous volumes.

        :param ref: Container id or name.
        :param force: Kill the container first if it is still running.
        """
        await self.engine.run(
            "remove container", ref,
            lambda client: client.containers.get(ref).remove(force=force, v=True),
        )
        logger.debug("Removed container %s", ref)

    async def inspect(self, ref: str) -> ContainerStatus:
        return await self.engine.run(
            "inspect container", ref,
            lambda client: ContainerStatus.from_attrs(client.containers.get(ref).attrs),
        )

    async def logs(self, ref: str, tail: Optional[int] = None) -> List[str]:
        """
        Returns the container's log lines collected so far.

        :param ref: Container id or name.
        :param tail: Only return this many trailing lines.
        """
        def _logs(client):
            raw = client.containers.get(ref).logs(stdout=True, stderr=True, tail=tail if tail else "all")
            return raw.decode("utf-8", errors="replace").splitlines()

        return await self.engine.run("read logs", ref, _logs)

    async def stream_logs(self, ref: str, follow: bool = True) -> AsyncIterator[str]:
        """
        Yields log lines as the container writes them.

        :param ref: Container id or name.
        :param follow: Keep waiting for new output until the container exits.
        """
        stream = await self.engine.run(
            "stream logs", ref,
            lambda client: client.containers.get(ref).logs(stream=True, follow=follow),
        )
        done = object()
        pending = ""
        try:
            while True:
                chunk = await asyncio.to_thread(next, stream, done)
                if chunk is done:
                    break
                pending += chunk.decode("utf-8", errors="replace")
                *lines, pending = pending.split("\n")
                for line in lines:
                    yield line
            if pending:
                yield pending
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()

    async def list_containers(self, labels: Optional[Dict[str, str]] = None) -> List[ContainerStatus]:
        """
        Lists containers, running or not, carrying all the given labels.
        """
        filters = {"label": [f"{key}={value}" for key, value in (labels or {}).items()]}

        def _list(client):
            return [ContainerStatus.from_attrs(c.attrs) for c in client.containers.list(all=True, filters=filters)]

        return await self.engine.run("list containers", ",".join(filters["label"]) or "*", _list)
