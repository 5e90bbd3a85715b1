"""
Decision API tests (Flask test client).

Covers the HTTP layer only: status codes, error envelope, request keys.
Service behaviour is tested in the service-level modules.
"""

from unittest.mock import patch

from app.integrations.collab_gateway import FragmentResult
from app.services import proposal_service


BASE = "/api/v1"

PAST_DATES = [
    {"phaseId": "submission", "startDate": "2020-01-01", "endDate": "2020-02-01"},
    {"phaseId": "review", "startDate": "2020-02-01", "endDate": "2020-03-01"},
    {"phaseId": "voting", "startDate": "2020-03-01", "endDate": "2020-04-01"},
    {"phaseId": "results", "startDate": "2020-04-01", "endDate": "2020-05-01"},
]

CHAINED_DATES = [
    {"phaseId": "submission", "startDate": "2026-01-01", "endDate": "2026-02-01"},
    {"phaseId": "review", "startDate": "2026-02-01", "endDate": "2026-03-01"},
    {"phaseId": "voting", "startDate": "2026-03-01", "endDate": "2026-04-01"},
    {"phaseId": "results", "startDate": "2026-04-01", "endDate": "2026-05-01"},
]


def _create(client, **overrides):
    payload = {
        "template_id": "simple",
        "name": "Participatory Budget",
        "phases": CHAINED_DATES,
        "status": "published",
    }
    payload.update(overrides)
    return client.post(f"{BASE}/decision-instances", json=payload)


def _proposal(client, instance_id, **payload):
    return client.post(f"{BASE}/decision-instances/{instance_id}/proposals", json=payload)


class TestHealthAndTemplates:
    def test_health(self, client):
        res = client.get(f"{BASE}/health")

        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_list_templates(self, client):
        res = client.get(f"{BASE}/decision-templates")

        body = res.get_json()
        assert res.status_code == 200
        assert body["total"] == len(body["items"])
        assert any(t["id"] == "simple" for t in body["items"])

    def test_get_unknown_template(self, client):
        res = client.get(f"{BASE}/decision-templates/nope")

        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_save_template(self, client):
        res = client.post(f"{BASE}/decision-templates", json={
            "id": "quick", "name": "Quick", "phases": [{"id": "only", "name": "Only"}],
        })

        assert res.status_code == 201
        assert client.get(f"{BASE}/decision-templates/quick").get_json()["phases"][0]["id"] == "only"

    def test_save_template_without_phases(self, client):
        res = client.post(f"{BASE}/decision-templates", json={"id": "broken", "name": "Broken", "phases": []})

        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_CONFIGURATION"

    def test_check_schema(self, client):
        res = client.post(f"{BASE}/decision-schemas/check", json={"schema": {"type": 7}})

        assert res.status_code == 200
        assert res.get_json()["valid"] is False

    def test_check_schema_requires_schema(self, client):
        assert client.post(f"{BASE}/decision-schemas/check", json={}).status_code == 400


class TestInstances:
    def test_create_published_instance(self, client):
        res = _create(client)

        body = res.get_json()
        assert res.status_code == 201
        assert body["current_phase_id"] == "submission"
        assert body["status"] == "published"
        transitions = client.get(f"{BASE}/decision-instances/{body['id']}/transitions").get_json()
        assert transitions["total"] == 3

    def test_create_requires_template_id(self, client):
        res = client.post(f"{BASE}/decision-instances", json={"name": "x"})

        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_create_requires_name(self, client):
        res = _create(client, name="  ")

        assert res.status_code == 422
        assert res.get_json()["details"] == {"name": "Name is required"}

    def test_invalid_settings(self, client):
        res = _create(client, phases=[{"phaseId": "voting", "settings": {"maxVotesPerMember": 0}}])

        body = res.get_json()
        assert res.status_code == 422
        assert body["code"] == "ERR_VALIDATION_FIELDS"
        assert "voting.settings.maxVotesPerMember" in body["details"]

    def test_unknown_phase_override(self, client):
        res = _create(client, phases=[{"phaseId": "nope"}])

        body = res.get_json()
        assert res.status_code == 400
        assert body["code"] == "ERR_CONFIGURATION"
        assert body["details"]["phase_id"] == "nope"

    def test_unknown_instance(self, client):
        assert client.get(f"{BASE}/decision-instances/missing").status_code == 404

    def test_patch_switches_to_manual(self, client):
        instance_id = _create(client).get_json()["id"]
        phases = [
            {"phaseId": p, "rules": {"advancement": {"method": "manual"}}}
            for p in ("submission", "review", "voting", "results")
        ]

        res = client.patch(f"{BASE}/decision-instances/{instance_id}", json={"phases": phases})

        body = res.get_json()
        assert res.status_code == 200
        assert body["transitions"]["deleted"] == 3
        assert body["transitions"]["created"] == 0

    def test_patch_invalid_status(self, client):
        instance_id = _create(client).get_json()["id"]

        res = client.patch(f"{BASE}/decision-instances/{instance_id}", json={"status": "archived"})

        assert res.status_code == 422

    def test_advance_until_final_phase(self, client):
        instance_id = _create(client).get_json()["id"]

        for expected in ("review", "voting", "results"):
            res = client.post(f"{BASE}/decision-instances/{instance_id}/advance")
            assert res.status_code == 200
            assert res.get_json()["current_phase_id"] == expected

        res = client.post(f"{BASE}/decision-instances/{instance_id}/advance")
        assert res.status_code == 409
        assert res.get_json()["details"] == {"current": "results"}

    def test_process_due_transitions(self, client):
        instance_id = _create(client, phases=PAST_DATES).get_json()["id"]

        res = client.post(f"{BASE}/decision-transitions/process")

        assert res.status_code == 200
        assert res.get_json()["processed"] == 3
        assert res.get_json()["failed"] == 0
        instance = client.get(f"{BASE}/decision-instances/{instance_id}").get_json()
        assert instance["current_phase_id"] == "results"

    def test_non_json_body_rejected(self, client):
        res = client.post(f"{BASE}/decision-instances", data="name=x", content_type="text/plain")

        assert res.status_code == 415


class TestProposals:
    def test_create_and_submit(self, client):
        instance_id = _create(client).get_json()["id"]
        proposal = _proposal(client, instance_id, proposal_data={"title": "Park", "summary": "New benches"})
        assert proposal.status_code == 201

        res = client.post(f"{BASE}/proposals/{proposal.get_json()['id']}/submit")

        assert res.status_code == 200
        assert res.get_json()["status"] == "submitted"

    def test_double_submit_conflict(self, client):
        instance_id = _create(client).get_json()["id"]
        proposal_id = _proposal(
            client, instance_id, proposal_data={"title": "Park", "summary": "New benches"},
        ).get_json()["id"]
        client.post(f"{BASE}/proposals/{proposal_id}/submit")

        res = client.post(f"{BASE}/proposals/{proposal_id}/submit")

        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_submit_invalid_content(self, client):
        instance_id = _create(client).get_json()["id"]
        proposal_id = _proposal(client, instance_id, proposal_data={"title": "Park"}).get_json()["id"]

        res = client.post(f"{BASE}/proposals/{proposal_id}/submit")

        assert res.status_code == 422
        assert res.get_json()["details"] == {"summary": "Proposal summary is required"}

    def test_collaboration_store_down(self, client):
        instance_id = _create(client).get_json()["id"]
        proposal_id = _proposal(client, instance_id, collaboration_doc_id="doc-1").get_json()["id"]

        with patch.object(
            proposal_service.collab_gateway, "get_document_fragments",
            return_value=FragmentResult(ok=False, error="Request timed out after 2s"),
        ):
            res = client.post(f"{BASE}/proposals/{proposal_id}/submit")

        assert res.status_code == 503
        assert res.get_json()["details"] == {"service": "collaboration"}

    def test_create_in_closed_phase(self, client):
        instance_id = _create(client).get_json()["id"]
        client.post(f"{BASE}/decision-instances/{instance_id}/advance")

        res = _proposal(client, instance_id, proposal_data={"title": "Late"})

        assert res.status_code == 409

    def test_update_proposal(self, client):
        instance_id = _create(client).get_json()["id"]
        proposal_id = _proposal(client, instance_id, proposal_data={"title": "Park"}).get_json()["id"]

        res = client.patch(f"{BASE}/proposals/{proposal_id}", json={"proposal_data": {"summary": "Benches"}})

        assert res.status_code == 200
        assert res.get_json()["proposal_data"] == {"title": "Park", "summary": "Benches"}

    def test_unknown_proposal(self, client):
        assert client.post(f"{BASE}/proposals/missing/submit").status_code == 404
