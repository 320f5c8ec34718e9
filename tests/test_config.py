"""Tests for economy.config -- YAML settings."""

from pathlib import Path

import pytest

from economy.config import EconomyConfig
from economy.payment_gate import GateConfig

SHIPPED_CONFIG = Path(__file__).resolve().parent.parent / "config" / "economy.yaml"


class TestDefaults:
    def test_missing_file(self, tmp_path) -> None:
        config = EconomyConfig.from_yaml(tmp_path / "absent.yaml")
        assert config == EconomyConfig()
        assert config.storage_dir is None
        assert config.port == 8402
        assert config.gated_resources == []

    def test_empty_file(self, tmp_path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert EconomyConfig.from_yaml(path) == EconomyConfig()

    def test_non_mapping_rejected(self, tmp_path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            EconomyConfig.from_yaml(path)


class TestParsing:
    def test_shipped_config(self) -> None:
        config = EconomyConfig.from_yaml(SHIPPED_CONFIG)
        assert config.storage_dir == "storage"
        assert config.seed_on_startup is True
        assert config.signature_keys == {}
        assert config.gated_resources[0].resource == "/api/x402/premium-data"
        assert config.gated_resources[0].price == "0.001"

    def test_sections(self, tmp_path) -> None:
        path = tmp_path / "economy.yaml"
        path.write_text(
            "server:\n"
            "  port: 9000\n"
            "ledger:\n"
            "  network: base-sepolia\n"
            "x402:\n"
            "  default_ttl: 60\n"
            "  signature_keys:\n"
            "    '0xabc': 'ff00'\n"
            "gated_resources:\n"
            "  - resource: /api/data\n"
            "    price: 0.5\n"
            "    address: '0xabc'\n"
            "    ttl: 30\n"
            "swarm:\n"
            "  default_task_ttl_ms: 1000\n"
            "logging:\n"
            "  level: debug\n"
            "  json: true\n"
        )
        config = EconomyConfig.from_yaml(path)
        assert config.port == 9000
        assert config.host == "127.0.0.1"
        assert config.ledger_network == "base-sepolia"
        assert config.default_ttl == 60
        assert config.signature_keys == {"0xabc": "ff00"}
        assert config.gated_resources == [
            GateConfig(price="0.5", address="0xabc", resource="/api/data", ttl=30)
        ]
        assert config.default_task_ttl_ms == 1000
        assert config.log_level == "debug"
        assert config.log_json is True

    def test_gated_resource_missing_field(self, tmp_path) -> None:
        path = tmp_path / "economy.yaml"
        path.write_text("gated_resources:\n  - resource: /api/data\n    price: '1'\n")
        with pytest.raises(ValueError, match="address"):
            EconomyConfig.from_yaml(path)
