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
Shared connection to the Docker engine and translation of its failures.
"""
import asyncio
import logging
import threading
from typing import Any, Callable, Optional, TypeVar

import docker
from docker import errors as docker_errors
from requests import exceptions as requests_exceptions

from ..errors import AlreadyExists, EngineUnreachable, NotFound, OperationFailed

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EngineClient:
    """
    One Docker client per process, shared by every cluster.

    Blocking SDK calls run in worker threads so probes and other clusters
    keep running while the engine works.
    """

    def __init__(self, client: Optional[docker.DockerClient] = None,
                 base_url: Optional[str] = None, timeout: int = 120):
        """
        Initializes the engine client.

        Args:
            client: An existing docker client to use as is.
            base_url: Engine endpoint such as unix:///var/run/docker.sock.
                If omitted, DOCKER_HOST and friends are honored.
            timeout: Per-request timeout in seconds.
        """
        self._client = client
        self._base_url = base_url
        self._timeout = timeout
        self._lock = threading.Lock()

    @property
    def client(self) -> docker.DockerClient:
        """
        The underlying docker client, connected on first use.

        Raises:
            EngineUnreachable: If the engine cannot be contacted.
        """
        with self._lock:
            if self._client is None:
                try:
                    if self._base_url:
                        self._client = docker.DockerClient(base_url=self._base_url, timeout=self._timeout)
                    else:
                        self._client = docker.from_env(timeout=self._timeout)
                except docker_errors.DockerException as exc:
                    raise EngineUnreachable(
                        f"Cannot connect to the Docker engine: {exc}", exc
                    ) from exc
            return self._client

    async def run(self, operation: str, target: str,
                  fn: Callable[[docker.DockerClient], T]) -> T:
        """
        Runs ``fn(client)`` in a worker thread and translates engine errors.

        Args:
            operation: Short description used in error messages, e.g. "start".
            target: Name or id of the object operated on.
            fn: Blocking callable receiving the docker client.

        Returns:
            Whatever ``fn`` returns.

        Raises:
            NotFound: The object does not exist.
            AlreadyExists: A name conflict (HTTP 409 on create).
            EngineUnreachable: The engine cannot be contacted.
            OperationFailed: The engine failed to execute the request.
        """
        return await asyncio.to_thread(self._invoke, operation, target, fn)

    def _invoke(self, operation: str, target: str, fn: Callable[[docker.DockerClient], Any]) -> Any:
        client = self.client
        try:
            return fn(client)
        except docker_errors.NotFound as exc:
            raise NotFound(f"{operation} {target}: not found", exc) from exc
        except docker_errors.APIError as exc:
            if exc.status_code == 409 and operation.startswith("create"):
                raise AlreadyExists(f"{operation} {target}: already exists", exc) from exc
            raise OperationFailed(f"{operation} {target}: {exc.explanation or exc}", exc) from exc
        except requests_exceptions.ConnectionError as exc:
            raise EngineUnreachable(f"{operation} {target}: engine unreachable: {exc}", exc) from exc
        except (docker_errors.DockerException, requests_exceptions.RequestException) as exc:
            raise OperationFailed(f"{operation} {target}: {exc}", exc) from exc

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None
