"""API tests for the decision engine endpoints."""

from __future__ import annotations

from conftest import ORG_ID, OTHER_ORG_ID

HEADERS = {"X-Org-Id": ORG_ID}
OTHER_HEADERS = {"X-Org-Id": OTHER_ORG_ID}


def _store_claim(client, sample_claim, sample_related, claim_id="CLM-1", evaluate=False):
    response = client.put(
        f"/api/claims/{claim_id}",
        json={"claim": sample_claim, **sample_related, "evaluate": evaluate},
        headers=HEADERS,
    )
    assert response.status_code == 200
    return response.json()


class TestHealth:
    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["indexed_cases"] == 0


class TestTenancy:
    def test_missing_org_header(self, client):
        response = client.get("/api/rules")

        assert response.status_code == 401

    def test_cross_org_rule_access(self, client, rule_document):
        rule_id = client.post("/api/rules", json=rule_document, headers=HEADERS).json()["id"]

        response = client.get(f"/api/rules/{rule_id}", headers=OTHER_HEADERS)

        assert response.status_code == 403
        assert response.json()["error"] == "tenant_isolation_violation"

    def test_analytics_for_other_org_rejected(self, client):
        response = client.get(f"/api/analytics?org_id={OTHER_ORG_ID}", headers=HEADERS)

        assert response.status_code == 403


class TestRuleEndpoints:
    def test_rule_lifecycle(self, client, rule_document):
        created = client.post("/api/rules", json=rule_document, headers=HEADERS)
        assert created.status_code == 201
        rule_id = created.json()["id"]

        listed = client.get("/api/rules", headers=HEADERS).json()
        assert listed["total"] == 1

        patched = client.patch(f"/api/rules/{rule_id}", json={"priority": 4}, headers=HEADERS)
        assert patched.status_code == 200
        assert patched.json()["priority"] == 4

        deleted = client.delete(f"/api/rules/{rule_id}", headers=HEADERS)
        assert deleted.status_code == 200
        assert deleted.json()["archived_at"] is not None

        assert client.get("/api/rules", headers=HEADERS).json()["total"] == 0
        archived = client.get("/api/rules?include_archived=true", headers=HEADERS).json()
        assert archived["total"] == 1

    def test_invalid_rule_reports_path(self, client, rule_document):
        rule_document["trigger"] = {"all": [{"path": "claim.state", "op": "like", "value": "x"}]}

        response = client.post("/api/rules", json=rule_document, headers=HEADERS)

        assert response.status_code == 422
        assert response.json()["path"] == "trigger.all[0].op"

    def test_validate_without_saving(self, client, rule_document):
        assert client.post("/api/rules/validate", json=rule_document).json() == {
            "valid": True,
            "errors": [],
        }

        rule_document["priority"] = 42
        result = client.post("/api/rules/validate", json=rule_document).json()

        assert result["valid"] is False
        assert result["errors"][0]["path"] == "priority"
        assert client.get("/api/rules", headers=HEADERS).json()["total"] == 0

    def test_unknown_rule(self, client):
        response = client.get("/api/rules/missing", headers=HEADERS)

        assert response.status_code == 404

    def test_catalog(self, client):
        data = client.get("/api/rules/catalog").json()

        assert "default" in [pack["id"] for pack in data["packs"]]
        assert "equals" in data["operators"]
        assert "score_adjust" in data["action_types"]

    def test_install_pack(self, client):
        response = client.post("/api/rules/packs/default/install", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["installed"] > 0

    def test_install_unknown_pack(self, client):
        response = client.post("/api/rules/packs/nope/install", headers=HEADERS)

        assert response.status_code == 404


class TestEvaluation:
    def test_upsert_and_evaluate(self, client, sample_claim, sample_related):
        client.post("/api/rules/packs/default/install", headers=HEADERS)

        data = _store_claim(client, sample_claim, sample_related, evaluate=True)

        evaluation = data["evaluation"]
        assert evaluation["claim_id"] == "CLM-1"
        assert evaluation["recommendations"]
        assert evaluation["unavailable"] == []

    def test_evaluate_endpoint_and_latest_recommendations(
        self, client, sample_claim, sample_related
    ):
        client.post("/api/rules/packs/default/install", headers=HEADERS)
        _store_claim(client, sample_claim, sample_related)

        response = client.post("/api/rules/evaluate", json={"claim_id": "CLM-1"}, headers=HEADERS)
        assert response.status_code == 200
        evaluation_id = response.json()["evaluation_id"]

        latest = client.get("/api/claims/CLM-1/recommendations", headers=HEADERS).json()
        assert latest["evaluation_id"] == evaluation_id
        assert len(latest["recommendations"]) == len(response.json()["recommendations"])

    def test_recommendations_before_evaluation(self, client, sample_claim, sample_related):
        _store_claim(client, sample_claim, sample_related)

        latest = client.get("/api/claims/CLM-1/recommendations", headers=HEADERS).json()

        assert latest["recommendations"] == []

    def test_cross_org_claim(self, client, sample_claim, sample_related):
        _store_claim(client, sample_claim, sample_related)

        response = client.get("/api/claims/CLM-1/recommendations", headers=OTHER_HEADERS)

        assert response.status_code == 403

    def test_evaluate_missing_claim(self, client):
        response = client.post("/api/rules/evaluate", json={"claim_id": "nope"}, headers=HEADERS)

        assert response.status_code == 404

    def test_explain(self, client, sample_claim, sample_related):
        client.post("/api/rules/packs/default/install", headers=HEADERS)
        evaluation = _store_claim(client, sample_claim, sample_related, evaluate=True)["evaluation"]
        recommendation = evaluation["recommendations"][0]

        explanation = client.get(f"/api/explain/{recommendation['id']}", headers=HEADERS).json()

        assert explanation["confidence_score"] == recommendation["confidence_score"]
        assert explanation["rules_used"]


class TestOutcomeEndpoints:
    def _evaluated_recommendation(self, client, sample_claim, sample_related):
        client.post("/api/rules/packs/default/install", headers=HEADERS)
        evaluation = _store_claim(client, sample_claim, sample_related, evaluate=True)["evaluation"]
        return evaluation["recommendations"][0]

    def test_record_outcome_is_idempotent(self, client, sample_claim, sample_related):
        recommendation = self._evaluated_recommendation(client, sample_claim, sample_related)
        body = {
            "claim_id": "CLM-1",
            "result": "success",
            "recommendation_id": recommendation["id"],
            "agent_id": "agent-1",
            "observed_at": "2026-05-01T12:00:00Z",
        }

        first = client.post("/api/outcomes", json=body, headers=HEADERS)
        second = client.post("/api/outcomes", json=body, headers=HEADERS)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["deduplicated"] is True
        assert second.json()["outcome"]["id"] == first.json()["outcome"]["id"]

        listed = client.get("/api/outcomes", headers=HEADERS).json()
        assert listed["total"] == 1

    def test_outcome_without_attribution(self, client):
        response = client.post(
            "/api/outcomes", json={"claim_id": "CLM-1", "result": "success"}, headers=HEADERS
        )

        assert response.status_code == 422

    def test_webhook_records_outcomes(self, client, sample_claim, sample_related):
        self._evaluated_recommendation(client, sample_claim, sample_related)

        response = client.post(
            "/api/outcomes/webhook",
            json={"claim_id": "CLM-1", "status": "Approved", "agent_id": "agent-1"},
            headers=HEADERS,
        )

        data = response.json()
        assert response.status_code == 200
        assert data["ignored"] is False
        assert data["outcomes"]
        assert all(o["outcome"]["observed_result"] == "success" for o in data["outcomes"])

    def test_webhook_ignores_other_statuses(self, client):
        response = client.post(
            "/api/outcomes/webhook",
            json={"claim_id": "CLM-1", "status": "inspection_scheduled"},
            headers=HEADERS,
        )

        assert response.json()["ignored"] is True


class TestAnalyticsAndAudit:
    def test_analytics_payload(self, client):
        data = client.get("/api/analytics?time_range=7d", headers=HEADERS).json()

        assert data["metrics"]["total_outcomes"] == 0
        assert data["agent_performance"] == []

    def test_invalid_time_range(self, client):
        response = client.get("/api/analytics?time_range=1y", headers=HEADERS)

        assert response.status_code == 422

    def test_rule_effectiveness_endpoint(self, client, rule_document):
        rule_id = client.post("/api/rules", json=rule_document, headers=HEADERS).json()["id"]

        data = client.get(f"/api/analytics/effectiveness/rule/{rule_id}", headers=HEADERS).json()

        assert data["scope"] == "rule"
        assert data["triggered_count"] == 0

    def test_mutations_are_audited(self, client, rule_document):
        client.post("/api/rules", json=rule_document, headers=HEADERS)

        logs = client.get("/api/audit/logs", headers=HEADERS).json()
        other = client.get("/api/audit/logs", headers=OTHER_HEADERS).json()

        assert [entry["action"] for entry in logs["entries"]] == ["rule.create"]
        assert other["total"] == 0
