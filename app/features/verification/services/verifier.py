"""
Criteria Verifier

Asks a language model (through OpenRouter) whether a page meets each WCAG
criterion of one sub-batch. The model answers with JSON; parsing and
normalization happen in parse_verification_output so the processor can
re-invoke once on an unparsable answer.
"""
import json
from typing import List, Optional

import openai
from openai import OpenAI
from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

from app.features.verification.schemas.verification import CriterionStatus, CriterionVerification
from app.features.verification.utils.wcag_criteria import WcagCriterion
from app.platform.config import settings
from app.platform.exceptions import ProviderError, ValidationError
from app.platform.logger import get_logger

logger = get_logger(__name__)

# Keeps a prompt inside the model's context window
MAX_HTML_CHARS = 60_000


class VerifierError(ProviderError):
    code = "VERIFIER_FAILED"


class VerifierRateLimitError(VerifierError):
    code = "VERIFIER_RATE_LIMITED"


class VerifierTimeoutError(VerifierError):
    code = "VERIFIER_TIMEOUT"


class VerificationParseError(ValidationError):
    code = "VERIFIER_OUTPUT_INVALID"


class SiteContent(BaseModel):
    url: str
    html: str


class VerifierResponse(BaseModel):
    output: str
    tokens_used: int = 0
    model: Optional[str] = None


class CriteriaVerifier:
    def verify(self, site: SiteContent, criteria: List[WcagCriterion], existing_issue_ids: List[str]) -> VerifierResponse:
        raise NotImplementedError


def build_verification_prompt(site: SiteContent, criteria: List[WcagCriterion], existing_issue_ids: List[str]) -> str:
    html = site.html
    if len(html) > MAX_HTML_CHARS:
        html = html[:MAX_HTML_CHARS] + "\n<!-- truncated -->"

    criteria_lines = "\n".join(f"- {c.id} {c.title} (Level {c.level}): {c.description}" for c in criteria)
    issue_ids = ", ".join(existing_issue_ids) if existing_issue_ids else "none"

    return f"""Review the HTML of {site.url} against these WCAG 2.1 success criteria:
{criteria_lines}

Issues already reported by the automated scanner (ids): {issue_ids}
Reference those ids in relatedIssueIds when an issue supports your verdict.

HTML:
{html}

You MUST respond with ONLY valid JSON matching this exact structure:
{{
  "criteriaVerifications": [
    {{"criterionId": "string", "status": "PASS|FAIL|NOT_TESTED", "confidence": number (0-100), "reasoning": "string", "relatedIssueIds": ["string"]}}
  ]
}}

Use NOT_TESTED when the HTML alone cannot show whether the criterion is met.
Do not include any text before or after the JSON. Only output valid JSON."""


def _extract_json(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else cleaned
        if cleaned.endswith("```"):
            cleaned = cleaned.rsplit("\n", 1)[0] if "\n" in cleaned else cleaned
        cleaned = cleaned.replace("```json", "").replace("```", "").strip()

    if cleaned.startswith("["):
        return cleaned

    # Prose around the object
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start >= 0 and end > start:
        cleaned = cleaned[start:end + 1]
    return cleaned


def parse_verification_output(output: str, criteria: List[WcagCriterion]) -> List[CriterionVerification]:
    """
    Parse and normalize one model answer.

    Entries for criteria outside the batch and malformed entries are dropped;
    batch criteria the model skipped come back as NOT_TESTED. Raises
    VerificationParseError when nothing usable is left.
    """
    try:
        data = json.loads(_extract_json(output))
    except ValueError as e:
        raise VerificationParseError(f"Malformed JSON in model output: {e}", cause=e) from e

    items = data.get("criteriaVerifications") if isinstance(data, dict) else data
    if not isinstance(items, list):
        raise VerificationParseError("Model output has no criteriaVerifications list")

    wanted = {c.id for c in criteria}
    verifications = {}
    for item in items:
        try:
            verification = CriterionVerification.model_validate(item)
        except SchemaValidationError as e:
            logger.warning(f"Dropping invalid verification entry: {e.errors()[0]['msg']}")
            continue
        if verification.criterion_id in wanted and verification.criterion_id not in verifications:
            verifications[verification.criterion_id] = verification

    if not verifications:
        raise VerificationParseError("No valid verifications parsed from model output")

    return [
        verifications.get(c.id) or CriterionVerification(
            criterion_id=c.id,
            status=CriterionStatus.NOT_TESTED,
            reasoning="Not reported by the model",
        )
        for c in criteria
    ]


class OpenRouterCriteriaVerifier(CriteriaVerifier):
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[int] = None,
        client: Optional[OpenAI] = None,
    ):
        self.model = model or settings.OPENROUTER_MODEL
        self.client = client or OpenAI(
            base_url=base_url or settings.OPENROUTER_BASE_URL,
            api_key=api_key or settings.OPENROUTER_API_KEY,
            timeout=timeout or settings.VERIFICATION_MODEL_TIMEOUT,
            max_retries=0,
        )

    def verify(self, site: SiteContent, criteria: List[WcagCriterion], existing_issue_ids: List[str]) -> VerifierResponse:
        prompt = build_verification_prompt(site, criteria, existing_issue_ids)

        try:
            completion = self.client.chat.completions.create(
                extra_headers={
                    "HTTP-Referer": settings.APP_URL,
                    "X-Title": settings.APP_NAME,
                },
                model=self.model,
                messages=[
                    {
                        "role": "system",
                        "content": "You are a WCAG accessibility auditor. Always respond with valid JSON only."
                    },
                    {
                        "role": "user",
                        "content": prompt
                    }
                ],
                temperature=0.2,
            )
        except openai.RateLimitError as e:
            raise VerifierRateLimitError(f"Rate limited by model provider: {e}", cause=e) from e
        except openai.APITimeoutError as e:
            raise VerifierTimeoutError(f"Model call timed out: {e}", cause=e) from e
        except openai.APIError as e:
            raise VerifierError(f"Model call failed: {e}", cause=e) from e

        output = ""
        if completion.choices:
            output = completion.choices[0].message.content or ""
        tokens_used = completion.usage.total_tokens if completion.usage else 0
        logger.info(f"OpenRouter verified {len(criteria)} criteria for {site.url} ({tokens_used} tokens)")
        return VerifierResponse(output=output, tokens_used=tokens_used, model=self.model)
