"""End-to-end tests for economy.server over a real socket."""

import json
import threading
import urllib.error
import urllib.request
from typing import Any, Dict, Iterator, Optional, Tuple

import pytest

from economy import x402
from economy.api import SwarmAPI
from economy.payment_gate import GateConfig, PaymentGate
from economy.server import make_server
from swarm.base import PaymentProof

PREMIUM = "/api/x402/premium-data"


@pytest.fixture
def base_url(store, ledger, molt, coordinator, clock) -> Iterator[str]:
    api = SwarmAPI(store, ledger, molt, coordinator, clock=clock)
    api.add_gated_resource(PaymentGate(
        GateConfig(price="0.001", address="0xpayee", resource=PREMIUM), clock=clock,
    ))
    coordinator.seed_tasks_if_empty()
    server = make_server(api, "127.0.0.1", 0)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    host, port = server.server_address[:2]
    yield f"http://{host}:{port}"
    server.shutdown()
    server.server_close()


def call(
    url: str,
    method: str = "GET",
    data: Optional[bytes] = None,
    headers: Optional[Dict[str, str]] = None,
) -> Tuple[int, Dict[str, Any], Dict[str, str]]:
    req = urllib.request.Request(url, data=data, method=method, headers=headers or {})
    if data is not None:
        req.add_header("Content-Type", "application/json")
    try:
        with urllib.request.urlopen(req, timeout=5) as resp:
            return resp.status, json.loads(resp.read()), dict(resp.headers)
    except urllib.error.HTTPError as e:
        return e.code, json.loads(e.read()), dict(e.headers)


class TestServer:
    def test_health(self, base_url) -> None:
        status, body, headers = call(f"{base_url}/health")
        assert status == 200
        assert body["status"] == "ok"
        assert headers["Content-Type"] == "application/json"

    def test_query_string(self, base_url) -> None:
        _, body, _ = call(f"{base_url}/api/swarm/tasks?stage=2")
        assert len(body["tasks"]) == 8

    def test_payment_challenge_headers(self, base_url) -> None:
        status, body, headers = call(f"{base_url}{PREMIUM}")
        assert status == 402
        assert body["envelope"]["address"] == "0xpayee"
        assert headers["X-Price"] == "0.001"
        assert headers["X-Payment-Methods"] == "base-sepolia, base-mainnet, solana"

    def test_paid_request(self, base_url) -> None:
        payload = x402.encode_payload(PREMIUM, "0.001")
        header = x402.encode_payment_header(PaymentProof("0.1.0", "sig", payload))
        status, _, headers = call(f"{base_url}{PREMIUM}", headers={"X-Payment": header})
        assert status == 200
        assert headers["X-Receipt-URL"].startswith("/api/x402/receipts/")

    def test_post_json_body(self, base_url) -> None:
        status, body, _ = call(
            f"{base_url}/api/agents/crab/activity", "POST", json.dumps({"posts": 3}).encode()
        )
        assert status == 200
        assert body["posts"] == 3

    def test_invalid_json_body(self, base_url) -> None:
        status, body, _ = call(f"{base_url}/api/agents/crab/activity", "POST", b"{oops")
        assert status == 400
        assert body["error"] == "CRACKED_SHELL"

    def test_non_object_body(self, base_url) -> None:
        status, body, _ = call(f"{base_url}/api/agents/crab/activity", "POST", b"[1, 2]")
        assert status == 400
        assert body["message"] == "Request body must be a JSON object"

    def test_not_found(self, base_url) -> None:
        status, body, _ = call(f"{base_url}/api/missing")
        assert status == 404
        assert body["error"] == "EMPTY_TIDE_POOL"
