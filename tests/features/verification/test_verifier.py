import json
from unittest.mock import MagicMock

import pytest

from app.features.verification.schemas.verification import CriterionStatus
from app.features.verification.services.verifier import (
    MAX_HTML_CHARS,
    OpenRouterCriteriaVerifier,
    SiteContent,
    VerificationParseError,
    build_verification_prompt,
    parse_verification_output,
)
from app.features.verification.utils.wcag_criteria import WCAG_CRITERIA, criteria_for_level
from app.features.scan.models.scan import WcagLevel

CRITERIA = [c for c in WCAG_CRITERIA if c.id in ("1.1.1", "1.3.1", "2.4.4")]


def _answer(*entries):
    return json.dumps({"criteriaVerifications": list(entries)})


class TestParseVerificationOutput:
    def test_normalizes_short_statuses(self):
        output = _answer(
            {"criterionId": "1.1.1", "status": "PASS", "confidence": 90, "reasoning": "All images have alt"},
            {"criterionId": "1.3.1", "status": "fail", "confidence": 70, "relatedIssueIds": ["issue-1"]},
            {"criterionId": "2.4.4", "status": "NOT_TESTED"},
        )

        verifications = parse_verification_output(output, CRITERIA)

        assert [v.status for v in verifications] == [
            CriterionStatus.AI_VERIFIED_PASS,
            CriterionStatus.AI_VERIFIED_FAIL,
            CriterionStatus.NOT_TESTED,
        ]
        assert verifications[1].related_issue_ids == ["issue-1"]

    def test_markdown_fence_and_prose_are_stripped(self):
        fenced = "```json\n" + _answer({"criterionId": "1.1.1", "status": "PASS"}) + "\n```"
        chatty = "Here is my review: " + _answer({"criterionId": "1.1.1", "status": "PASS"}) + " Hope it helps."

        assert parse_verification_output(fenced, CRITERIA)[0].status == CriterionStatus.AI_VERIFIED_PASS
        assert parse_verification_output(chatty, CRITERIA)[0].status == CriterionStatus.AI_VERIFIED_PASS

    def test_bare_list_is_accepted(self):
        output = json.dumps([{"criterionId": "1.3.1", "status": "FAIL"}])

        verifications = parse_verification_output(output, CRITERIA)

        assert verifications[1].status == CriterionStatus.AI_VERIFIED_FAIL

    def test_missing_criteria_become_not_tested(self):
        verifications = parse_verification_output(_answer({"criterionId": "1.1.1", "status": "PASS"}), CRITERIA)

        assert len(verifications) == 3
        assert verifications[2].criterion_id == "2.4.4"
        assert verifications[2].status == CriterionStatus.NOT_TESTED
        assert verifications[2].reasoning == "Not reported by the model"

    def test_foreign_and_invalid_entries_are_dropped(self):
        output = _answer(
            {"criterionId": "9.9.9", "status": "PASS"},
            {"criterionId": "1.1.1", "status": "MAYBE"},
            {"criterionId": "1.3.1", "status": "PASS", "confidence": 250},
            {"criterionId": "2.4.4", "status": "PASS"},
        )

        verifications = parse_verification_output(output, CRITERIA)

        assert [v.criterion_id for v in verifications] == ["1.1.1", "1.3.1", "2.4.4"]
        assert verifications[0].status == CriterionStatus.NOT_TESTED
        assert verifications[2].status == CriterionStatus.AI_VERIFIED_PASS

    @pytest.mark.parametrize(
        "output",
        [
            "I cannot evaluate this page.",
            json.dumps({"result": "ok"}),
            _answer({"criterionId": "9.9.9", "status": "PASS"}),
        ],
    )
    def test_unusable_output_raises(self, output):
        with pytest.raises(VerificationParseError):
            parse_verification_output(output, CRITERIA)


def test_prompt_truncates_large_pages():
    site = SiteContent(url="https://example.com", html="x" * (MAX_HTML_CHARS + 500))

    prompt = build_verification_prompt(site, CRITERIA, ["issue-1", "issue-2"])

    assert "<!-- truncated -->" in prompt
    assert "x" * (MAX_HTML_CHARS + 1) not in prompt
    assert "1.1.1 Non-text Content" in prompt
    assert "issue-1, issue-2" in prompt


def test_criteria_for_level_is_cumulative():
    assert len(criteria_for_level(WcagLevel.A)) == 30
    assert len(criteria_for_level(WcagLevel.AA)) == 50
    assert len(criteria_for_level(WcagLevel.AAA)) == 78


def test_openrouter_verifier_reports_tokens():
    completion = MagicMock()
    completion.choices = [MagicMock()]
    completion.choices[0].message.content = _answer({"criterionId": "1.1.1", "status": "PASS"})
    completion.usage.total_tokens = 321
    client = MagicMock()
    client.chat.completions.create.return_value = completion

    verifier = OpenRouterCriteriaVerifier(model="test-model", client=client)
    response = verifier.verify(SiteContent(url="https://example.com", html="<html/>"), CRITERIA, [])

    assert response.tokens_used == 321
    assert response.model == "test-model"
    assert "criteriaVerifications" in response.output
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "test-model"
    assert kwargs["messages"][0]["role"] == "system"
