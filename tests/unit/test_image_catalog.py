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
Unit tests for the image catalog and DevNetConfig.
"""
import pytest

from midday_devnet.errors import ConfigError
from midday_devnet.MODELS.cluster_spec import HttpProbeSpec, ServiceRole
from midday_devnet.MODELS.devnet_config import AuxiliaryConfig, DevNetConfig
from midday_devnet.REGISTRY.image_catalog import DEV_INDEXER_SECRET, ImageCatalog


class TestImageCatalog:
    """Tests for ImageCatalog lookups."""

    def test_default_images(self):
        catalog = ImageCatalog()
        assert catalog.image("node") == "midnightntwrk/midnight-node:0.20.1"
        assert catalog.image(ServiceRole.INDEXER) == "midnightntwrk/indexer-standalone:3.0.0"
        assert catalog.image("proof-server") == "bricktowers/proof-server:7.0.0"
        assert catalog.get("faucet").container_port == 3001
        assert catalog.get("fee-relay").container_port == 3002

    def test_unknown_role(self):
        """Test that an unknown service is a ConfigError."""
        with pytest.raises(ConfigError, match="wallet"):
            ImageCatalog().get("wallet")

    def test_missing_entry(self):
        catalog = ImageCatalog(entries={})
        with pytest.raises(ConfigError):
            catalog.get(ServiceRole.NODE)
        assert catalog.roles() == ()

    def test_with_image_returns_copy(self):
        catalog = ImageCatalog()
        pinned = catalog.with_image("node", "midnightntwrk/midnight-node:0.21.0")
        assert pinned.image("node") == "midnightntwrk/midnight-node:0.21.0"
        assert catalog.image("node") == "midnightntwrk/midnight-node:0.20.1"
        assert pinned.get("node").probe == catalog.get("node").probe

    def test_indexer_environment(self):
        env = ImageCatalog().get("indexer").environment("dev", {"log_level": "warn"})
        assert env["APP__INFRA__SECRET"] == DEV_INDEXER_SECRET
        assert env["APP__INFRA__NODE__URL"] == "ws://dev-node:9944"
        assert env["RUST_LOG"].endswith(",warn")

    def test_fee_relay_environment_uses_internal_names(self):
        env = ImageCatalog().get("fee-relay").environment("dev", {"network_id": "undeployed"})
        assert env["NETWORK_ID"] == "undeployed"
        assert env["INDEXER_URL"] == "http://dev-indexer:8088/api/v3/graphql"
        assert env["PROOF_SERVER_URL"] == "http://dev-proof-server:6300"


class TestDevNetConfig:
    """Tests for DevNetConfig.to_cluster_spec."""

    def test_defaults(self):
        spec = DevNetConfig().to_cluster_spec()
        assert spec.name == "midday-devnet"
        assert spec.network_id == "undeployed"
        assert [svc.name for svc in spec.services] == ["node", "indexer", "proof-server"]
        node = spec.service("node")
        assert isinstance(node.health_check, HttpProbeSpec)
        assert node.health_check.path == "/health"
        assert node.health_check.timeout == 90

    def test_auxiliary_services(self):
        config = DevNetConfig(fee_relay=AuxiliaryConfig(enabled=True, port=13002))
        spec = config.to_cluster_spec()
        fee_relay = spec.service("fee-relay")
        assert fee_relay.ports == {3002: 13002}
        assert fee_relay.image == "midday-fee-relay:latest"
        with pytest.raises(KeyError):
            spec.service("faucet")

    def test_custom_catalog(self):
        catalog = ImageCatalog().with_image("indexer", "registry.local/indexer:dev")
        spec = DevNetConfig().to_cluster_spec(catalog)
        assert spec.service("indexer").image == "registry.local/indexer:dev"

    def test_labels_are_carried(self):
        spec = DevNetConfig(labels={"team": "wallet"}).to_cluster_spec()
        assert spec.labels == {"team": "wallet"}
