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
In-memory stand-ins for the container engine, shared by the cluster tests.
All fakes append to one event list so tests can check cross-component ordering.
"""
import pytest

from midday_devnet.errors import AlreadyExists, NotFound
from midday_devnet.MANAGERS.container_runtime import ContainerStatus
from midday_devnet.MODELS.cluster_spec import ClusterSpec, ServiceSpec, TcpProbeSpec


class FakeRuntime:
    """ContainerRuntime double keeping containers in a dict."""

    def __init__(self, events):
        self.events = events
        self.containers = {}
        self.failures = {}
        self.engine = None

    def fail(self, operation, name, error):
        self.failures[(operation, name)] = error

    def _check(self, operation, name):
        error = self.failures.get((operation, name))
        if error is not None:
            raise error

    def _lookup(self, ref):
        if ref in self.containers:
            return ref
        for container_id, info in self.containers.items():
            if info["name"] == ref:
                return container_id
        raise NotFound(f"{ref}: not found")

    async def ensure_image(self, image):
        self.events.append(("pull", image))

    async def create_container(self, name, service, network=None, labels=None):
        self._check("create", name)
        container_id = f"id-{name}"
        self.containers[container_id] = {"name": name, "running": False, "labels": labels, "network": network}
        self.events.append(("create", name))
        return container_id

    async def start(self, ref):
        container_id = self._lookup(ref)
        name = self.containers[container_id]["name"]
        self._check("start", name)
        self.containers[container_id]["running"] = True
        self.events.append(("start", name))

    async def stop(self, ref):
        container_id = self._lookup(ref)
        self._check("stop", self.containers[container_id]["name"])
        self.containers[container_id]["running"] = False
        self.events.append(("stop", self.containers[container_id]["name"]))

    async def remove(self, ref, force=False):
        container_id = self._lookup(ref)
        name = self.containers[container_id]["name"]
        self._check("remove", name)
        del self.containers[container_id]
        self.events.append(("remove", name))

    async def inspect(self, ref):
        container_id = self._lookup(ref)
        info = self.containers[container_id]
        return ContainerStatus(
            id=container_id, name=info["name"],
            status="running" if info["running"] else "exited",
            running=info["running"],
        )

    async def logs(self, ref, tail=None):
        self._lookup(ref)
        return []

    async def list_containers(self, labels=None):
        wanted = labels or {}
        result = []
        for container_id, info in self.containers.items():
            container_labels = info["labels"] or {}
            if all(container_labels.get(k) == v for k, v in wanted.items()):
                result.append(await self.inspect(container_id))
        return result


class FakeNetworks:
    """NetworkManager double."""

    def __init__(self, events):
        self.events = events
        self.networks = {}

    async def exists(self, name):
        return name in self.networks.values()

    async def create(self, name, labels=None):
        if name in self.networks.values():
            raise AlreadyExists(f"Network '{name}' already exists")
        network_id = f"net-{name}"
        self.networks[network_id] = name
        self.events.append(("network-create", name))
        return network_id

    async def remove(self, network_id):
        # the engine accepts a network name wherever it takes an id
        for key, name in list(self.networks.items()):
            if network_id == name:
                network_id = key
        if network_id not in self.networks:
            return
        del self.networks[network_id]
        self.events.append(("network-remove", network_id))


class FakeHealthChecker:
    """HealthChecker double: services succeed unless given an outcome."""

    def __init__(self, events):
        self.events = events
        self.outcomes = {}
        self.blockers = {}

    async def wait_until_healthy(self, probe, timeout, *, backoff=None, attempt_timeout=None,
                                 service="service", cancel=None):
        self.events.append(("probe", service))
        if service in self.blockers:
            await self.blockers[service].wait()
        error = self.outcomes.get(service)
        if error is not None:
            raise error
        return 1


@pytest.fixture
def events():
    return []


@pytest.fixture
def runtime(events):
    return FakeRuntime(events)


@pytest.fixture
def networks(events):
    return FakeNetworks(events)


@pytest.fixture
def health_checker(events):
    return FakeHealthChecker(events)


def _service(name, port, depends_on=()):
    return ServiceSpec(
        name=name,
        image=f"example/{name}:1",
        ports={port: port + 10000},
        health_check=TcpProbeSpec(port=port),
        depends_on=list(depends_on),
    )


@pytest.fixture
def devnet_spec():
    """node, indexer(node), proof-server(node)."""
    return ClusterSpec(
        name="test-devnet",
        services=[
            _service("node", 9944),
            _service("indexer", 8088, depends_on=["node"]),
            _service("proof-server", 6300, depends_on=["node"]),
        ],
    )


@pytest.fixture
def make_cluster(runtime, networks, health_checker):
    from midday_devnet.MANAGERS.cluster import Cluster

    def _make(spec):
        return Cluster.make(spec, runtime, networks, health_checker, pull_images=False)

    return _make
