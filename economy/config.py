"""
EconomyConfig -- swarm economy settings parsed from YAML.

A missing file means defaults everywhere; every section is optional.

    storage:
      dir: storage            # omit for an in-memory store
    server:
      host: 127.0.0.1
      port: 8402
    ledger:
      network: default
      history_limit: 20
    x402:
      version: "0.1.0"
      default_ttl: 300
      signature_keys:          # payee address -> Ed25519 public key (hex)
        "0xabc...": "9f1c..."
    gated_resources:
      - resource: /api/x402/premium-data
        price: "0.001"
        address: "0x0000000000000000000000000000000000000000"
        description: Premium swarm intelligence data feed
    swarm:
      seed_on_startup: true
      default_task_ttl_ms: 3600000
    webhooks:
      timeout: 5
    logging:
      level: INFO
      json: false
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml

from economy.payment_gate import GateConfig
from economy.x402 import X402_VERSION


@dataclass
class EconomyConfig:
    storage_dir: Optional[str] = None
    host: str = "127.0.0.1"
    port: int = 8402
    ledger_network: str = "default"
    history_limit: int = 20
    x402_version: str = X402_VERSION
    default_ttl: int = 300
    signature_keys: Dict[str, str] = field(default_factory=dict)
    gated_resources: List[GateConfig] = field(default_factory=list)
    seed_on_startup: bool = False
    default_task_ttl_ms: int = 60 * 60 * 1000
    webhook_timeout: float = 5.0
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "EconomyConfig":
        """Load settings from a YAML file; missing file -> defaults.

        Raises:
            ValueError: if the file is not a YAML mapping or a gated
                resource is missing a required field.
        """
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path, "r") as f:
            data = yaml.safe_load(f)

        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError(f"Config file must be a YAML mapping: {path}")

        storage = data.get("storage") or {}
        server = data.get("server") or {}
        ledger = data.get("ledger") or {}
        x402 = data.get("x402") or {}
        swarm = data.get("swarm") or {}
        webhooks = data.get("webhooks") or {}
        logging_cfg = data.get("logging") or {}

        return cls(
            storage_dir=storage.get("dir"),
            host=str(server.get("host", "127.0.0.1")),
            port=int(server.get("port", 8402)),
            ledger_network=str(ledger.get("network", "default")),
            history_limit=int(ledger.get("history_limit", 20)),
            x402_version=str(x402.get("version", X402_VERSION)),
            default_ttl=int(x402.get("default_ttl", 300)),
            signature_keys={str(k): str(v) for k, v in (x402.get("signature_keys") or {}).items()},
            gated_resources=[GateConfig.from_dict(g) for g in data.get("gated_resources") or []],
            seed_on_startup=bool(swarm.get("seed_on_startup", False)),
            default_task_ttl_ms=int(swarm.get("default_task_ttl_ms", 60 * 60 * 1000)),
            webhook_timeout=float(webhooks.get("timeout", 5.0)),
            log_level=str(logging_cfg.get("level", "INFO")),
            log_json=bool(logging_cfg.get("json", False)),
        )
