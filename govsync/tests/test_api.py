"""API endpoint tests"""

import uuid
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import NOW, FakeSnapshotFetcher, make_proposal, registry_with
from govsync.api.deps import get_fetchers
from govsync.main import app
from govsync.models import HandlerType, User


class TestAPI:
    """Test API endpoints"""

    @pytest.fixture
    def fetcher(self):
        return FakeSnapshotFetcher(
            proposals=[make_proposal("0xa", handler_id="ens-snapshot", created=NOW - timedelta(days=1), finalized=True)]
        )

    @pytest.fixture
    def client(self, seeded, fetcher):
        """Create test client (no lifespan: schema comes from the fixtures)"""
        app.dependency_overrides[get_fetchers] = lambda: registry_with({HandlerType.SNAPSHOT: fetcher})
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_health_check(self, client):
        """Test health check endpoint"""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["database"] == "ok"
        assert response.json()["dispatcher"] == "disabled"
        assert response.json()["scheduler"] == "disabled"
        assert response.json()["stuck_sources"] == 0

    def test_readiness(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_refresh_proposals(self, client):
        """Test a refresh reports ok and shows up in the checkpoints"""
        response = client.post("/refresh/snapshot_proposals", json={"source_id": "ens-snapshot"})
        assert response.status_code == 200
        assert response.json() == {"source_id": "ens-snapshot", "status": "ok", "voters": None}

        checkpoints = client.get("/stats/checkpoints").json()
        assert [(c["source_id"], c["kind"]) for c in checkpoints] == [("ens-snapshot", "snapshot_proposals")]

    def test_refresh_votes_reports_each_voter(self, client):
        response = client.post("/refresh/snapshot_votes", json={"source_id": "ens-snapshot", "voters": ["0xAAA"]})
        body = response.json()
        assert body["status"] == "ok"
        assert body["voters"] == [{"voter_address": "0xaaa", "success": True}]

    def test_refresh_failure_is_nok(self, client, fetcher):
        fetcher.error = RuntimeError("hub exploded")
        response = client.post("/refresh/snapshot_proposals", json={"source_id": "ens-snapshot"})
        assert response.status_code == 200
        assert response.json()["status"] == "nok"

    def test_refresh_unknown_source_is_nok(self, client):
        response = client.post("/refresh/chain_proposals", json={"source_id": "missing"})
        assert response.json()["status"] == "nok"

    def test_invalid_kind(self, client):
        response = client.post("/refresh/maker_polls", json={"source_id": "x"})
        assert response.status_code == 422

    def test_enqueue_notification_jobs(self, client, seeded):
        seeded.add(User(id="u1", discord_webhook="https://discord.test/hook"))
        seeded.commit()
        job = {"user_id": "u1", "proposal_id": str(uuid.uuid4()), "type": "new_proposal_discord"}

        first = client.post("/notifications/jobs", json=[job, job])
        second = client.post("/notifications/jobs", json=[job])

        assert first.json() == {"created": 1, "existing": 1}
        assert second.json() == {"created": 0, "existing": 1}

        assert client.get("/health").json()["pending_notifications"] == 1
        stats = client.get("/stats").json()
        assert stats["notifications_by_state"] == {"not_dispatched": 1}
        assert stats["scheduler"] is None

    def test_invalid_endpoint(self, client):
        """Test invalid endpoint returns 404"""
        response = client.get("/invalid")
        assert response.status_code == 404
