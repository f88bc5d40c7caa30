"""Tests for the FastAPI command surface."""

import pytest
from datetime import datetime, timezone

from fastapi.testclient import TestClient
from jwcrypto import jwk

from trustbond.api import server
from trustbond.collaborators import ReceiptSigner
from trustbond.validation.receipt import ValidationReceipt

AUTH = "auth"


@pytest.fixture
def client():
    with TestClient(server.app) as c:
        c.post("/api/v1/sandbox/assets", json={"asset_id": "asset-1", "owner": "alice"})
        c.post("/api/v1/records", json={"asset_id": "asset-1", "authority": AUTH})
        yield c


@pytest.fixture
def signer(client):
    resp = client.post("/api/v1/sandbox/validators", json={"validator_id": "v1", "stake": 100})
    assert resp.status_code == 201
    return ReceiptSigner(resp.json()["private_key"], "v1")


def _activate(client):
    resp = client.post(
        "/api/v1/records/asset-1/activate",
        json={"caller": AUTH, "bond_amount": 1000, "fee": 50},
    )
    assert resp.status_code == 200
    return resp.json()


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_stats(self, client):
        _activate(client)
        data = client.get("/api/v1/stats").json()
        assert data["total_records"] == 1
        assert data["by_state"] == {"active": 1}
        assert data["total_bonded"] == 1000


class TestRecords:
    def test_create_and_get(self, client):
        resp = client.get("/api/v1/records/asset-1")
        assert resp.status_code == 200
        data = resp.json()
        assert data["state"] == "uninitialized"
        assert data["owner"] == "alice"

    def test_unknown_record_is_404(self, client):
        resp = client.get("/api/v1/records/nope")
        assert resp.status_code == 404
        assert resp.json()["error"] == "record_not_found"

    def test_duplicate_record_is_400(self, client):
        resp = client.post("/api/v1/records", json={"asset_id": "asset-1", "authority": AUTH})
        assert resp.status_code == 400

    def test_activate(self, client):
        data = _activate(client)
        assert data["state"] == "active"
        assert data["bond"] == 1000

    def test_list_filter(self, client):
        _activate(client)
        assert len(client.get("/api/v1/records", params={"state": "active"}).json()) == 1
        assert client.get("/api/v1/records", params={"state": "frozen"}).json() == []
        assert client.get("/api/v1/records", params={"state": "bogus"}).status_code == 400

    def test_unauthorized_is_403(self, client):
        resp = client.post(
            "/api/v1/records/asset-1/activate",
            json={"caller": "mallory", "bond_amount": 1000, "fee": 50},
        )
        assert resp.status_code == 403
        assert resp.json()["error"] == "unauthorized"

    def test_insufficient_fee_is_402(self, client):
        resp = client.post(
            "/api/v1/records/asset-1/activate",
            json={"caller": AUTH, "bond_amount": 1000, "fee": 1},
        )
        assert resp.status_code == 402

    def test_invalid_transition_is_409(self, client):
        resp = client.post("/api/v1/records/asset-1/unbond", json={"caller": AUTH})
        assert resp.status_code == 409
        assert resp.json()["error"] == "invalid_state_transition"


class TestDisputeFlow:
    def test_open_and_resolve(self, client):
        _activate(client)
        resp = client.post(
            "/api/v1/records/asset-1/disputes",
            json={"challenger": "bob", "evidence": "ipfs://e1"},
        )
        assert resp.status_code == 201
        assert resp.json()["prior_state"] == "active"

        again = client.post(
            "/api/v1/records/asset-1/disputes",
            json={"challenger": "carol", "evidence": "ipfs://e2"},
        )
        assert again.status_code == 409

        resolved = client.post(
            "/api/v1/records/asset-1/disputes/resolve",
            json={"caller": "governance", "outcome": "upheld", "severity": "major"},
        )
        assert resolved.status_code == 200
        assert resolved.json()["state"] == "frozen"
        assert resolved.json()["bond"] == 500

        history = client.get("/api/v1/records/asset-1/disputes").json()
        assert history[0]["seized_amount"] == 500
        assert client.get("/api/v1/records/asset-1/fees").json()["vigorish"] == 50


class TestSandboxValidators:
    def test_generated_key_returned_once(self, client, signer):
        public = jwk.JWK.from_json(server._attestations.public_key("v1"))
        assert not public.has_private
        assert signer.public_key() == server._attestations.public_key("v1")

    def test_register_with_public_key(self, client):
        key = jwk.JWK.generate(kty="OKP", crv="Ed25519")
        resp = client.post(
            "/api/v1/sandbox/validators",
            json={"validator_id": "v2", "stake": 10, "public_key": key.export_public()},
        )
        assert resp.status_code == 201
        assert resp.json()["private_key"] is None

    def test_invalid_public_key_is_400(self, client):
        resp = client.post(
            "/api/v1/sandbox/validators",
            json={"validator_id": "v2", "public_key": "not-a-key"},
        )
        assert resp.status_code == 400


class TestAttestations:
    def test_submit_signed_receipt(self, client, signer):
        _activate(client)
        issued_at = datetime(2026, 1, 1, tzinfo=timezone.utc)
        receipt = signer.sign(
            ValidationReceipt(
                validator_id="v1",
                asset_id="asset-1",
                task_id="task-1",
                payload={"outcome": "pass"},
                issued_at=issued_at,
            )
        )
        resp = client.post(
            "/api/v1/records/asset-1/attestations",
            json={
                "validator_id": "v1",
                "task_id": "task-1",
                "payload": {"outcome": "pass"},
                "signature": receipt.signature,
                "issued_at": issued_at.isoformat(),
            },
        )
        assert resp.status_code == 200
        assert resp.json()["committed"]
        assert resp.json()["root_height"] == 1

        score = client.get("/api/v1/records/asset-1/score").json()
        assert score["score"] == 100.0
        consensus = client.get("/api/v1/records/asset-1/consensus/task-1").json()
        assert consensus["validator_ids"] == ["v1"]

    def test_forged_receipt_is_400(self, client, signer):
        _activate(client)
        resp = client.post(
            "/api/v1/records/asset-1/attestations",
            json={"validator_id": "v1", "task_id": "task-1", "signature": "00"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_receipt"

    def test_consensus_not_met_is_409(self, client):
        _activate(client)
        resp = client.get("/api/v1/records/asset-1/consensus/task-9")
        assert resp.status_code == 409


class TestMigrationFlow:
    def test_migrate_then_get_versions(self, client):
        _activate(client)
        resp = client.post("/api/v1/records/asset-1/migrate", json={"caller": AUTH})
        assert resp.status_code == 200
        assert resp.json()["to_version"] == 2
        assert client.get("/api/v1/records/asset-1").json()["protocol_version"] == 2
        old = client.get("/api/v1/records/asset-1", params={"version": 1}).json()
        assert old["state"] == "migrated"

    def test_sovereign_exit_then_terminal(self, client):
        _activate(client)
        resp = client.post("/api/v1/records/asset-1/exit", json={"caller": AUTH})
        assert resp.status_code == 200
        assert resp.json()["bond_value"] == 1000
        after = client.post("/api/v1/records/asset-1/unbond", json={"caller": AUTH})
        assert after.status_code == 410


class TestEvents:
    def test_query_events(self, client):
        _activate(client)
        events = client.get("/api/v1/events", params={"asset_id": "asset-1"}).json()
        assert events[0]["event_type"] == "lifecycle.record_created"
        activated = client.get("/api/v1/events", params={"event_type": "lifecycle.activated"}).json()
        assert len(activated) == 1

    def test_unknown_event_type(self, client):
        assert client.get("/api/v1/events", params={"event_type": "nope"}).status_code == 400

    def test_event_stats(self, client):
        _activate(client)
        stats = client.get("/api/v1/events/stats").json()
        assert stats["by_type"]["lifecycle.activated"] == 1
