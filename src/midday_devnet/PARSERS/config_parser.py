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
Parser for devnet configuration files (YAML with ${VAR} interpolation).
"""
import logging
import os
from typing import Any, Dict, Optional

import yaml
from dotenv import dotenv_values
from pydantic import ValidationError

from ..errors import ConfigError
from ..MODELS.cluster_spec import ClusterSpec
from ..MODELS.devnet_config import DevNetConfig
from ..UTILS.string_interpolation import EnvironmentInterpolator

logger = logging.getLogger(__name__)

# Environment variable -> path of the config field it overrides
ENV_OVERRIDES = {
    "DEVNET_CLUSTER_NAME": ("cluster_name",),
    "DEVNET_HOST": ("host",),
    "DEVNET_NODE_IMAGE": ("node", "image"),
    "DEVNET_NODE_PORT": ("node", "port"),
    "DEVNET_INDEXER_IMAGE": ("indexer", "image"),
    "DEVNET_INDEXER_PORT": ("indexer", "port"),
    "DEVNET_PROOF_SERVER_IMAGE": ("proof_server", "image"),
    "DEVNET_PROOF_SERVER_PORT": ("proof_server", "port"),
}


class ConfigParser:
    """
    Parser for devnet.yml files.

    A file either holds a devnet configuration (cluster_name, node, indexer,
    proof_server, faucet, fee_relay, ...) or a full cluster definition with
    an explicit ``services`` list.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None, env_file: Optional[str] = ".env"):
        """
        Initializes the parser.

        :param context: Variables for interpolation and overrides. Defaults to
            the values of ``env_file`` overlaid with the process environment.
        :param env_file: Path of a dotenv file to load when no context is given.
        """
        if context is None:
            context = {}
            if env_file and os.path.exists(env_file):
                logger.debug("Loading environment from %s", env_file)
                context.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
            context.update(os.environ)
        self.context = context

    def parse(self, config_path: str) -> ClusterSpec:
        """
        Parses a configuration file from a path.

        :param config_path: Path to the YAML file.
        :return: The cluster definition it describes.
        """
        try:
            with open(config_path, 'r') as f:
                content = f.read()
        except OSError as exc:
            raise ConfigError(f"Cannot read {config_path}: {exc}") from exc
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> ClusterSpec:
        """
        Parses a configuration from a YAML string.

        :param content: YAML content.
        :return: The cluster definition it describes.
        :raises ConfigError: On unset variables, bad YAML or invalid values.
        """
        content = EnvironmentInterpolator.interpolate(content, self.context)
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML: {exc}") from exc
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError("Configuration must be a mapping")

        if "services" in data:
            return self._validate(ClusterSpec, data)
        config = self.load_devnet_config(data)
        try:
            return config.to_cluster_spec()
        except ValidationError as exc:
            raise ConfigError(f"Invalid configuration: {exc}") from exc

    def load_devnet_config(self, data: Optional[Dict[str, Any]] = None) -> DevNetConfig:
        """
        Builds a DevNetConfig from a mapping plus DEVNET_* environment overrides.
        """
        data = self._apply_overrides(dict(data or {}))
        return self._validate(DevNetConfig, data)

    def _apply_overrides(self, data: Dict[str, Any]) -> Dict[str, Any]:
        for var, path in ENV_OVERRIDES.items():
            value = self.context.get(var)
            if not value:
                continue
            target = data
            for key in path[:-1]:
                section = target.get(key)
                if not isinstance(section, dict):
                    section = {}
                else:
                    section = dict(section)
                target[key] = section
                target = section
            target[path[-1]] = value
        return data

    @staticmethod
    def _validate(model, data: Dict[str, Any]):
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"Invalid configuration: {exc}") from exc
