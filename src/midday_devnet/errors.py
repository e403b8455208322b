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
Error taxonomy for cluster orchestration.

Every engine or probe failure is translated into one of these types before it
reaches a caller. ``ConfigError`` and ``InvalidState`` are raised before any
resource exists; every other error is raised only after a rollback attempt.
"""
from typing import List, Optional


class DevnetError(Exception):
    """Base exception for this package."""


class ConfigError(DevnetError):
    """Raised for an invalid cluster definition (duplicate names, unknown or cyclic dependencies)."""


class InvalidState(DevnetError):
    """Raised when a lifecycle operation is not allowed in the current state."""


class EngineError(DevnetError):
    """Base class for failures reported by the container engine."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class EngineUnreachable(EngineError):
    """Raised when the container engine cannot be contacted."""


class NotFound(EngineError):
    """Raised when a container, network or image does not exist."""


class AlreadyExists(EngineError):
    """Raised when a named container or network is already present."""


class OperationFailed(EngineError):
    """Raised when the engine rejected or failed to execute a request."""


class ProbeConfigError(DevnetError):
    """Raised by a probe that can never succeed as configured. Never retried."""


class HealthTimeout(DevnetError):
    """Raised when a probe did not succeed within its timeout."""

    def __init__(self, service: str, timeout: float, attempts: int = 0,
                 last_error: Optional[BaseException] = None):
        message = f"Service '{service}' did not become healthy within {timeout:g}s ({attempts} attempts)"
        if last_error is not None:
            message += f": {last_error}"
        super().__init__(message)
        self.service = service
        self.timeout = timeout
        self.attempts = attempts
        self.last_error = last_error


class Cancelled(DevnetError):
    """Raised when a cancel signal interrupted startup."""


class TeardownStepError(DevnetError):
    """One failed teardown step: what was being removed and why it failed."""

    def __init__(self, target: str, operation: str, cause: BaseException):
        super().__init__(f"{operation} {target}: {cause}")
        self.target = target
        self.operation = operation
        self.cause = cause


class StartupFailed(DevnetError):
    """
    Raised when a service could not be created, started or made healthy.

    The cluster has already been rolled back when this is raised. Rollback
    problems, if any, are attached as ``rollback_errors``.
    """

    def __init__(self, service: str, cause: BaseException,
                 rollback_errors: Optional[List[TeardownStepError]] = None):
        super().__init__(f"Service '{service}' failed to start: {cause}")
        self.service = service
        self.cause = cause
        self.rollback_errors = list(rollback_errors or [])


class TeardownFailed(DevnetError):
    """Raised after all teardown steps ran and at least one did not succeed."""

    def __init__(self, errors: List[TeardownStepError], action: str = "remove"):
        self.errors = list(errors)
        targets = ", ".join(e.target for e in self.errors)
        super().__init__(f"Failed to {action}: {targets}")


class ContainerExited(DevnetError):
    """Raised by a probe when the container it watches has exited. Never retried."""
