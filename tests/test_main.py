"""Tests for the command-line entry point."""

import json

import pytest

import main


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    monkeypatch.setattr(main, "configure_logging", lambda *args, **kwargs: None)
    path = tmp_path / "economy.yaml"
    path.write_text(
        f"storage:\n  dir: '{tmp_path / 'storage'}'\n"
        "gated_resources:\n"
        "  - resource: /api/x402/premium-data\n"
        "    price: '0.001'\n"
        "    address: '0xpayee'\n"
    )
    return str(path)


def run(capsys, *argv: str):
    code = main.main(list(argv))
    return code, json.loads(capsys.readouterr().out)


class TestCommands:
    def test_info(self, config_file, capsys) -> None:
        code, body = run(capsys, "--config", config_file, "info")
        assert code == 0
        assert body["resources"][0]["resource"] == "/api/x402/premium-data"

    def test_seed_persists_once(self, config_file, capsys) -> None:
        assert run(capsys, "--config", config_file, "seed") == (0, {"seeded": 8})
        assert run(capsys, "--config", config_file, "seed") == (0, {"seeded": 0})

        code, body = run(capsys, "--config", config_file, "tasks", "--stage", "0")
        assert code == 0
        assert len(body["tasks"]) == 4

    def test_wallet(self, config_file, capsys) -> None:
        code, body = run(capsys, "--config", config_file, "wallet", "crab")
        assert code == 0
        assert body["agentId"] == "crab"
        assert body["balance"] == "0"

    def test_command_required(self, config_file) -> None:
        with pytest.raises(SystemExit):
            main.main(["--config", config_file])
