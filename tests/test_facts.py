"""Tests for fact extraction."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from rules.facts import extract_facts
from rules.models import ABSENT


class TestExtractFacts:
    def test_flattens_nested_claim_fields(self, sample_claim: dict):
        facts = extract_facts(sample_claim, org_id="org-alpha")

        assert facts["claim.state"] == "ESTIMATE_DRAFTED"
        assert facts["claim.estimate.total"] == 12500
        assert facts["claim.roof.slope"] == 6
        assert facts.org_id == "org-alpha"

    def test_lists_expose_length_items_and_values(self, sample_claim: dict):
        facts = extract_facts(sample_claim)

        assert facts["claim.estimate.line_items.length"] == 2
        assert facts["claim.estimate.line_items[1]"] == "drip_edge"
        assert facts["claim.estimate.line_items"] == ["shingles", "drip_edge"]

    def test_related_entities_project_fields(self, sample_claim: dict, sample_related: dict):
        facts = extract_facts(sample_claim, sample_related)

        assert facts["photos.length"] == 2
        assert facts["photos[0].annotated"] is True
        assert facts["photos.annotated"] == [True, False]
        assert facts["supplements.length"] == 0
        assert facts["inspections.type"] == ["drone"]

    def test_none_values_are_dropped(self, sample_claim: dict):
        facts = extract_facts(sample_claim)

        assert "claim.adjusterEmail" not in facts
        assert facts.resolve("claim.adjusterEmail") is ABSENT

    def test_scalars_are_normalized(self):
        facts = extract_facts({"amount": Decimal("12.50"), "filed": date(2026, 3, 1)})

        assert facts["claim.amount"] == 12.5
        assert facts["claim.filed"] == "2026-03-01"

    def test_unavailable_entities_are_skipped(self, sample_claim: dict, sample_related: dict):
        facts = extract_facts(sample_claim, sample_related, unavailable={"photos"})

        assert "photos.length" not in facts
        assert facts.is_unavailable("photos.length")
        assert facts.is_unavailable("photos[0].annotated")
        assert not facts.is_unavailable("inspections.type")

    def test_org_defaults_to_claim_field(self):
        facts = extract_facts({"org_id": "org-gamma", "status": "new"})

        assert facts.org_id == "org-gamma"
