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
Orchestration of a devnet cluster: dependency-ordered startup, readiness
checks, rollback on failure and reverse-order teardown.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional

import httpx

from ..errors import (
    AlreadyExists,
    Cancelled,
    ConfigError,
    DevnetError,
    EngineError,
    EngineUnreachable,
    HealthTimeout,
    InvalidState,
    NotFound,
    StartupFailed,
    TeardownFailed,
    TeardownStepError,
)
from ..MODELS.cluster_spec import ClusterSpec, ServiceSpec
from ..MODELS.container_state import ContainerHandle, ContainerState, can_transition
from ..MODELS.network_config import NetworkConfig, role_endpoints
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..UTILS.port_finder import get_free_port
from .container_runtime import ContainerRuntime, ContainerStatus
from .health_checker import HealthChecker
from .network_manager import NetworkManager
from .probes import build_probe

logger = logging.getLogger(__name__)

CLUSTER_LABEL = "io.midday.devnet.cluster"
SERVICE_LABEL = "io.midday.devnet.service"


class ClusterState(str, Enum):
    """Lifecycle state of a Cluster."""

    MADE = "made"
    STARTING = "starting"
    STARTED = "started"
    ABORTED = "aborted"
    STOPPING = "stopping"
    STOPPED = "stopped"
    REMOVING = "removing"
    REMOVED = "removed"


def allocate_ports(spec: ClusterSpec) -> ClusterSpec:
    """
    Replaces unbound host ports with free ones.

    :param spec: The cluster definition.
    :return: A definition in which every published port has a host port.
    :raises ConfigError: If two services publish the same host port.
    """
    taken: Dict[int, str] = {}
    for svc in spec.services:
        for host_port in svc.ports.values():
            if host_port is None:
                continue
            if host_port in taken:
                raise ConfigError(
                    f"Host port {host_port} is used by both '{taken[host_port]}' and '{svc.name}'"
                )
            taken[host_port] = svc.name

    services = []
    for svc in spec.services:
        if all(port is not None for port in svc.ports.values()):
            services.append(svc)
            continue
        ports = {}
        for container_port, host_port in svc.ports.items():
            if host_port is None:
                host_port = get_free_port(exclude=set(taken))
                taken[host_port] = svc.name
            ports[container_port] = host_port
        services.append(svc.model_copy(update={"ports": ports}))
    return spec.model_copy(update={"services": services})


class Cluster:
    """
    Owns the network and the containers of one devnet.

    A cluster is made once, started once and removed; a removed, stopped or
    aborted cluster cannot be started again. A started cluster may be stopped
    first, which keeps its containers and network until removal. Only one lifecycle operation may run at
    a time.

    Example usage::

        cluster = Cluster.make(DevNetConfig().to_cluster_spec())
        config = await cluster.start()
        ...
        await cluster.remove()

        # or, with guaranteed cleanup
        async with cluster_scope(spec) as cluster:
            client = connect(cluster.network_config)
    """

    def __init__(self, spec: ClusterSpec, order: List[str], runtime: ContainerRuntime,
                 networks: NetworkManager, health_checker: HealthChecker,
                 pull_images: bool = True,
                 probe_transport: Optional[httpx.AsyncBaseTransport] = None):
        self.spec = spec
        self.order = list(order)
        self.runtime = runtime
        self.networks = networks
        self.health_checker = health_checker
        self.pull_images = pull_images
        self.probe_transport = probe_transport

        self._state = ClusterState.MADE
        self._handles: List[ContainerHandle] = []
        self._network_id: Optional[str] = None
        self._network_config: Optional[NetworkConfig] = None
        self._current: Optional[str] = None
        self._released = False

    @classmethod
    def make(cls, spec: ClusterSpec, runtime: Optional[ContainerRuntime] = None,
             networks: Optional[NetworkManager] = None,
             health_checker: Optional[HealthChecker] = None, *,
             pull_images: bool = True,
             probe_transport: Optional[httpx.AsyncBaseTransport] = None) -> "Cluster":
        """
        Validates a cluster definition and builds an unstarted cluster.

        No engine call is made. The startup order is resolved here once.

        Args:
            spec: The cluster definition.
            runtime: Container runtime; a default one is created if omitted.
            networks: Network manager; shares the runtime's engine if omitted.
            health_checker: Health checker; a default one is created if omitted.
            pull_images: Pull missing images before creating containers.
            probe_transport: httpx transport for HTTP probes (used in tests).

        Raises:
            ConfigError: On duplicate services, unknown or cyclic dependencies,
                or conflicting host ports.
        """
        order = DependencyResolver().resolve_order(spec)
        spec = allocate_ports(spec)
        runtime = runtime or ContainerRuntime()
        networks = networks or NetworkManager(runtime.engine)
        return cls(spec, order, runtime, networks, health_checker or HealthChecker(),
                   pull_images=pull_images, probe_transport=probe_transport)

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def state(self) -> ClusterState:
        return self._state

    @property
    def handles(self) -> List[ContainerHandle]:
        """Handles of every container created so far, in creation order."""
        return list(self._handles)

    @property
    def network_config(self) -> NetworkConfig:
        """
        Endpoints of the started cluster.

        Raises:
            InvalidState: If the cluster is not started.
        """
        if self._state is not ClusterState.STARTED or self._network_config is None:
            raise InvalidState(f"Cluster '{self.name}' is {self._state.value}, not started")
        return self._network_config

    def status(self) -> Dict[str, ContainerState]:
        return {handle.service.name: handle.state for handle in self._handles}

    async def start(self, cancel: Optional[asyncio.Event] = None) -> NetworkConfig:
        """
        Creates the network and brings every service up in dependency order.

        Each service is created, started and probed until healthy before any
        service depending on it is started. On any failure everything created
        so far is removed in reverse creation order before the error is raised.

        Args:
            cancel: Setting this event aborts startup (with rollback).

        Returns:
            The endpoints of the healthy services.

        Raises:
            InvalidState: If the cluster was already started or removed.
            ConfigError: If a cluster with the same name already exists.
            StartupFailed: A service failed; carries the service name and cause.
            Cancelled: ``cancel`` was set.
            EngineUnreachable: The engine could not be reached to create the network.
        """
        if self._state is not ClusterState.MADE:
            raise InvalidState(f"Cluster '{self.name}' is {self._state.value}; start needs a fresh cluster")
        self._state = ClusterState.STARTING
        logger.info("Starting cluster %s: %s", self.name, ", ".join(self.order))

        try:
            config = await self._start(cancel)
        except asyncio.CancelledError:
            logger.warning("Startup of cluster %s cancelled, rolling back", self.name)
            await self._abort()
            raise
        except Exception as exc:
            failed = self._current
            logger.warning("Startup of cluster %s failed at %s: %s", self.name, failed or "network", exc)
            rollback_errors = await self._abort()
            if isinstance(exc, (ConfigError, Cancelled)) or (failed is None and isinstance(exc, EngineUnreachable)):
                raise
            raise StartupFailed(failed or self.spec.network_name, exc, rollback_errors) from exc

        self._network_config = config
        self._state = ClusterState.STARTED
        logger.info("Cluster %s started", self.name)
        return config

    async def remove(self) -> None:
        """
        Stops and removes every container in reverse creation order, then the network.

        Objects that no longer exist count as removed. Every step is attempted
        even when earlier ones fail.

        Raises:
            InvalidState: If another lifecycle operation is in progress.
            TeardownFailed: After all steps ran, if any of them failed.
        """
        if self._state in (ClusterState.STARTING, ClusterState.STOPPING, ClusterState.REMOVING):
            raise InvalidState(f"Cluster '{self.name}' is {self._state.value}; cannot remove now")
        self._state = ClusterState.REMOVING
        logger.info("Removing cluster %s", self.name)
        try:
            errors = await self._teardown()
        finally:
            self._network_config = None
            self._state = ClusterState.REMOVED
        if errors:
            raise TeardownFailed(errors)
        logger.info("Cluster %s removed", self.name)

    async def stop(self) -> None:
        """
        Stops every container in reverse creation order without removing anything.

        The containers and the network stay until :meth:`remove`. A container
        that no longer exists counts as stopped. Every container is attempted
        even when earlier ones fail.

        Raises:
            InvalidState: If the cluster is not started.
            TeardownFailed: After all containers were attempted, if any failed to stop.
        """
        if self._state is not ClusterState.STARTED:
            raise InvalidState(f"Cluster '{self.name}' is {self._state.value}, not started")
        self._state = ClusterState.STOPPING
        logger.info("Stopping cluster %s", self.name)
        errors: List[TeardownStepError] = []
        try:
            for handle in reversed(self._handles):
                error = await self._stop_container(handle)
                if error is not None:
                    errors.append(error)
        finally:
            self._network_config = None
            self._state = ClusterState.STOPPED
        if errors:
            raise TeardownFailed(errors, action="stop")
        logger.info("Cluster %s stopped", self.name)

    async def is_running(self) -> bool:
        """
        Checks with the engine that every created container is running.
        """
        if not self._handles:
            return False
        for handle in self._handles:
            try:
                status = await self.runtime.inspect(handle.container_id)
            except NotFound:
                return False
            if not status.running:
                return False
        return True

    async def __aenter__(self) -> "Cluster":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._released:
            return
        self._released = True
        try:
            await self.remove()
        except TeardownFailed as teardown_error:
            if exc is None:
                raise
            logger.error("Cleanup of cluster %s failed: %s", self.name, teardown_error)

    async def _start(self, cancel: Optional[asyncio.Event]) -> NetworkConfig:
        self._current = None
        self._check_cancel(cancel)
        try:
            self._network_id = await self.networks.create(self.spec.network_name, self._labels())
        except AlreadyExists as exc:
            raise ConfigError(f"A cluster named '{self.name}' already exists") from exc

        for name in self.order:
            service = self.spec.service(name)
            self._current = name
            self._check_cancel(cancel)
            handle = await self._create(service)
            self._check_cancel(cancel)
            await self._start_container(handle)
            await self._wait_healthy(handle, cancel)
        self._current = None

        return self._build_network_config()

    async def _create(self, service: ServiceSpec) -> ContainerHandle:
        container_name = self.spec.container_name(service.name)
        handle = ContainerHandle(service=service, name=container_name,
                                 container_id=container_name, index=len(self._handles))
        # Registered before the engine call so a half-created container is removed by name
        self._handles.append(handle)
        try:
            if self.pull_images:
                await self.runtime.ensure_image(service.image)
            handle.container_id = await self.runtime.create_container(
                container_name, service, network=self.spec.network_name, labels=self._labels(service),
            )
        except AlreadyExists as exc:
            # The name belongs to a container this cluster does not own
            self._handles.remove(handle)
            raise ConfigError(f"Container '{container_name}' already exists") from exc
        except BaseException as exc:
            handle.fail(exc)
            raise
        logger.info("Created %s", container_name)
        return handle

    async def _start_container(self, handle: ContainerHandle) -> None:
        handle.transition(ContainerState.STARTING)
        try:
            await self.runtime.start(handle.container_id)
        except BaseException as exc:
            handle.fail(exc)
            raise
        handle.transition(ContainerState.RUNNING)

    async def _wait_healthy(self, handle: ContainerHandle, cancel: Optional[asyncio.Event]) -> None:
        service = handle.service
        spec = service.health_check
        if spec is None:
            handle.transition(ContainerState.HEALTHY)
            logger.info("%s is running (no health check)", service.name)
            return

        logger.info("Waiting for %s to become healthy (up to %gs)", service.name, spec.timeout)
        try:
            probe = build_probe(spec, service, self.spec.host, handle.container_id,
                                self.runtime, transport=self.probe_transport)
            await self.health_checker.wait_until_healthy(
                probe, spec.timeout, backoff=spec.backoff, attempt_timeout=spec.attempt_timeout,
                service=service.name, cancel=cancel,
            )
        except HealthTimeout as exc:
            handle.error = exc
            handle.transition(ContainerState.UNHEALTHY)
            raise
        except BaseException as exc:
            handle.fail(exc)
            raise
        handle.transition(ContainerState.HEALTHY)
        logger.info("%s is healthy", service.name)

    def _build_network_config(self) -> NetworkConfig:
        fields: Dict[str, str] = {}
        for handle in self._handles:
            service = handle.service
            if handle.state is not ContainerState.HEALTHY or service.role is None or not service.ports:
                continue
            host_port = service.endpoint_host_port()
            if host_port is None:
                continue
            fields.update(role_endpoints(service.role, self.spec.host, host_port))
        return NetworkConfig(network_id=self.spec.network_id, **fields)

    async def _abort(self) -> List[TeardownStepError]:
        errors = await self._teardown()
        self._state = ClusterState.ABORTED
        for error in errors:
            logger.warning("Rollback of cluster %s: %s", self.name, error)
        return errors

    async def _teardown(self) -> List[TeardownStepError]:
        errors: List[TeardownStepError] = []
        for handle in reversed(self._handles):
            error = await self._teardown_container(handle)
            if error is not None:
                errors.append(error)

        if self._network_id is not None:
            try:
                await self.networks.remove(self._network_id)
            except Exception as exc:
                errors.append(TeardownStepError(self.spec.network_name, "remove network", exc))
            else:
                self._network_id = None
        return errors

    async def _stop_container(self, handle: ContainerHandle) -> Optional[TeardownStepError]:
        if not can_transition(handle.state, ContainerState.STOPPING):
            return None
        handle.transition(ContainerState.STOPPING)
        try:
            await self.runtime.stop(handle.container_id)
        except NotFound:
            logger.debug("%s no longer exists", handle.name)
        except Exception as exc:
            handle.fail(exc)
            return TeardownStepError(handle.name, "stop container", exc)
        handle.transition(ContainerState.STOPPED)
        logger.info("Stopped %s", handle.name)
        return None

    async def _teardown_container(self, handle: ContainerHandle) -> Optional[TeardownStepError]:
        if handle.is_removed:
            return None
        if can_transition(handle.state, ContainerState.STOPPING):
            handle.transition(ContainerState.STOPPING)

        try:
            await self.runtime.stop(handle.container_id)
        except NotFound:
            pass
        except Exception as exc:
            # remove(force=True) below still kills the container
            logger.warning("Stopping %s failed: %s", handle.name, exc)

        try:
            await self.runtime.remove(handle.container_id, force=True)
        except NotFound:
            logger.debug("%s already removed", handle.name)
        except Exception as exc:
            handle.fail(exc)
            return TeardownStepError(handle.name, "remove container", exc)

        if handle.state is ContainerState.STOPPING:
            handle.transition(ContainerState.REMOVED)
            logger.info("Removed %s", handle.name)
        return None

    def _check_cancel(self, cancel: Optional[asyncio.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise Cancelled(f"Startup of cluster '{self.name}' was cancelled")

    def _labels(self, service: Optional[ServiceSpec] = None) -> Dict[str, str]:
        labels = dict(self.spec.labels)
        labels[CLUSTER_LABEL] = self.name
        if service is not None:
            labels[SERVICE_LABEL] = service.name
        return labels


@asynccontextmanager
async def cluster_scope(spec: ClusterSpec, runtime: Optional[ContainerRuntime] = None,
                        networks: Optional[NetworkManager] = None,
                        health_checker: Optional[HealthChecker] = None,
                        **options) -> AsyncIterator[Cluster]:
    """
    Makes and starts a cluster, and removes it exactly once when the block exits.

    Removal also runs when the block raises or is cancelled. If startup fails
    the cluster has already been rolled back and the error propagates.
    """
    cluster = Cluster.make(spec, runtime, networks, health_checker, **options)
    async with cluster:
        yield cluster


async def cluster_containers(name: str, runtime: ContainerRuntime) -> List[ContainerStatus]:
    """
    Lists the containers labelled as belonging to the named cluster.
    """
    return await runtime.list_containers({CLUSTER_LABEL: name})


async def purge_cluster(name: str, runtime: ContainerRuntime,
                        networks: Optional[NetworkManager] = None) -> List[str]:
    """
    Removes what is left of a cluster by name, for instance after a crash.

    :param name: Cluster name.
    :param runtime: Container runtime.
    :param networks: Network manager; shares the runtime's engine if omitted.
    :return: Names of the removed containers.
    :raises TeardownFailed: If some objects could not be removed.
    """
    networks = networks or NetworkManager(runtime.engine)
    errors: List[TeardownStepError] = []
    removed: List[str] = []

    for status in reversed(await cluster_containers(name, runtime)):
        try:
            await runtime.remove(status.id, force=True)
        except NotFound:
            continue
        except EngineError as exc:
            errors.append(TeardownStepError(status.name, "remove container", exc))
            continue
        removed.append(status.name)
        logger.info("Removed %s", status.name)

    try:
        await networks.remove(f"{name}-network")
    except DevnetError as exc:
        errors.append(TeardownStepError(f"{name}-network", "remove network", exc))

    if errors:
        raise TeardownFailed(errors)
    return removed
