"""
Criteria Batch Processor

Verifies a scan against the WCAG criteria of its level in fixed size
sub-batches, one model call per sub-batch, sequentially.

Progress is checkpointed after every successful sub-batch, so a restart
resumes with the sub-batches that are still missing and a crash loses at
most the one in flight. A sub-batch the model could not answer comes back
as NOT_TESTED and is left out of the checkpoint, so the next run retries it.
"""
import time
from typing import Callable, List, Optional

from app.features.scan.models.scan import WcagLevel
from app.features.verification.schemas.verification import (
    BatchResult,
    CoverageSummary,
    CriteriaCheckpoint,
    CriterionStatus,
    CriterionVerification,
    VerificationOutcome,
)
from app.features.verification.services.checkpoint_store import CheckpointStore
from app.features.verification.services.verification_cache import CacheError, CriteriaVerificationCache
from app.features.verification.services.verifier import (
    CriteriaVerifier,
    SiteContent,
    VerificationParseError,
    VerifierError,
    VerifierRateLimitError,
    VerifierResponse,
    VerifierTimeoutError,
    parse_verification_output,
)
from app.features.verification.utils.wcag_criteria import WcagCriterion, criteria_for_level
from app.platform.logger import get_logger, job_logger

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 10
MAX_RATE_LIMIT_RETRIES = 3
INITIAL_RATE_LIMIT_DELAY_SECONDS = 60.0
MAX_PARSE_RETRIES = 1


def summarize_coverage(verifications: List[CriterionVerification], tokens_used: int) -> CoverageSummary:
    """Coverage counts over one verification per criterion, first one wins."""
    unique = {}
    for verification in verifications:
        unique.setdefault(verification.criterion_id, verification)
    values = list(unique.values())

    return CoverageSummary(
        criteria_verified=len(values),
        criteria_passed=sum(1 for v in values if v.status == CriterionStatus.AI_VERIFIED_PASS),
        criteria_failed=sum(1 for v in values if v.status == CriterionStatus.AI_VERIFIED_FAIL),
        criteria_not_tested=sum(1 for v in values if v.status == CriterionStatus.NOT_TESTED),
        tokens_used=tokens_used,
        verifications=values,
    )


class CriteriaBatchProcessor:
    def __init__(
        self,
        checkpoint_store: CheckpointStore,
        verifier: CriteriaVerifier,
        cache: Optional[CriteriaVerificationCache] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        delay_between_batches: float = 0.0,
        rate_limit_retries: int = MAX_RATE_LIMIT_RETRIES,
        rate_limit_initial_delay: float = INITIAL_RATE_LIMIT_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.checkpoint_store = checkpoint_store
        self.verifier = verifier
        self.cache = cache
        self.batch_size = batch_size
        self.delay_between_batches = delay_between_batches
        self.rate_limit_retries = rate_limit_retries
        self.rate_limit_initial_delay = rate_limit_initial_delay
        self.sleep = sleep

    def create_batches(self, level: WcagLevel) -> List[List[WcagCriterion]]:
        criteria = criteria_for_level(level)
        return [criteria[i:i + self.batch_size] for i in range(0, len(criteria), self.batch_size)]

    def process_single_batch(
        self,
        batch_index: int,
        criteria: List[WcagCriterion],
        site: SiteContent,
        existing_issue_ids: List[str],
        scan_id: str,
        level: WcagLevel,
    ) -> BatchResult:
        """
        Verify one sub-batch.

        Never raises for model failures: rate limits are retried with
        exponential backoff, an unparsable answer is re-requested once, and
        anything still failing yields a NOT_TESTED result carrying the error.
        """
        log = job_logger(logger, scan_id)
        started = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        cache_key = None
        if self.cache is not None:
            cache_key = self.cache.generate_key(site.html, level, [c.id for c in criteria])
            try:
                entry = self.cache.get(cache_key)
            except CacheError as e:
                log.warning(f"Cache lookup failed for batch {batch_index + 1}: {e}")
                entry = None
            if entry is not None and {v.criterion_id for v in entry.verifications} != {c.id for c in criteria}:
                log.warning(f"Cached answer for batch {batch_index + 1} covers other criteria, ignoring it")
                entry = None
            if entry is not None:
                log.info(f"Cache hit for batch {batch_index + 1}")
                return BatchResult(
                    batch_index=batch_index,
                    criteria_verified=len(entry.verifications),
                    verifications=entry.verifications,
                    tokens_used=0,
                    duration_ms=elapsed_ms(),
                    from_cache=True,
                )

        log.info(f"Verifying batch {batch_index + 1} ({len(criteria)} criteria)")

        try:
            response = self._invoke_with_backoff(site, criteria, existing_issue_ids, log)
        except VerifierRateLimitError:
            error = f"Rate limit retries exhausted after {self.rate_limit_retries} attempts"
            return self._not_tested(batch_index, criteria, error, elapsed_ms(), log)
        except VerifierTimeoutError as e:
            return self._not_tested(batch_index, criteria, f"Timeout: {e}", elapsed_ms(), log)
        except VerifierError as e:
            return self._not_tested(batch_index, criteria, str(e), elapsed_ms(), log)

        tokens_used = response.tokens_used
        parse_retries = 0
        while True:
            try:
                verifications = parse_verification_output(response.output, criteria)
                break
            except VerificationParseError as e:
                if parse_retries >= MAX_PARSE_RETRIES:
                    error = f"Failed to parse model output after {parse_retries} retry(s): {e}"
                    return self._not_tested(batch_index, criteria, error, elapsed_ms(), log)
                parse_retries += 1
                log.warning(f"Batch {batch_index + 1}: {e}, asking the model again")
                try:
                    response = self.verifier.verify(site, criteria, existing_issue_ids)
                except VerifierError as retry_error:
                    error = f"Parse retry invocation failed: {retry_error}"
                    return self._not_tested(batch_index, criteria, error, elapsed_ms(), log)
                tokens_used += response.tokens_used

        if self.cache is not None:
            try:
                self.cache.set(cache_key, verifications, tokens_used, response.model)
            except CacheError as e:
                log.warning(f"Could not cache batch {batch_index + 1}: {e}")

        log.info(f"Batch {batch_index + 1} verified: {len(verifications)} criteria, {tokens_used} tokens")
        return BatchResult(
            batch_index=batch_index,
            criteria_verified=len(verifications),
            verifications=verifications,
            tokens_used=tokens_used,
            duration_ms=elapsed_ms(),
        )

    def _invoke_with_backoff(self, site, criteria, existing_issue_ids, log) -> VerifierResponse:
        attempt = 0
        while True:
            try:
                return self.verifier.verify(site, criteria, existing_issue_ids)
            except VerifierRateLimitError as e:
                if attempt >= self.rate_limit_retries:
                    raise
                delay = self.rate_limit_initial_delay * (2 ** attempt)
                attempt += 1
                log.warning(f"Rate limited, retry {attempt}/{self.rate_limit_retries} in {delay:.0f}s: {e}")
                self.sleep(delay)

    def _not_tested(self, batch_index, criteria, error, duration_ms, log) -> BatchResult:
        log.error(f"Batch {batch_index + 1} not verified: {error}")
        verifications = [
            CriterionVerification(
                criterion_id=criterion.id,
                status=CriterionStatus.NOT_TESTED,
                confidence=0,
                reasoning=f"Unable to verify: {error}",
            )
            for criterion in criteria
        ]
        return BatchResult(
            batch_index=batch_index,
            criteria_verified=len(verifications),
            verifications=verifications,
            tokens_used=0,
            duration_ms=duration_ms,
            errors=[error],
        )

    def process_criteria_batches(
        self,
        scan_id: str,
        site: SiteContent,
        existing_issue_ids: List[str],
        level: WcagLevel,
    ) -> VerificationOutcome:
        """
        Run or resume every sub-batch of a scan and finalize once all are in.

        ``outcome.complete`` is False when some sub-batch fell back to
        NOT_TESTED; the checkpoint then stays in place for the next run.
        """
        log = job_logger(logger, scan_id)
        batches = self.create_batches(level)
        total = len(batches)

        checkpoint = self.checkpoint_store.get_checkpoint(scan_id)
        if checkpoint is not None and (checkpoint.level != level or checkpoint.total_batches != total):
            log.warning(
                f"Checkpoint for level {checkpoint.level.value} with {checkpoint.total_batches} batches "
                f"does not match level {level.value} with {total}, starting over"
            )
            checkpoint = None

        if checkpoint is not None and checkpoint.finalization_complete and checkpoint.finalization_result:
            log.info("Verification already finalized, reusing stored result")
            return VerificationOutcome(
                scan_id=scan_id,
                level=level,
                total_batches=total,
                batches_skipped=total,
                resumed=True,
                complete=True,
                coverage=checkpoint.finalization_result,
            )

        resumed = checkpoint is not None
        if checkpoint is None:
            checkpoint = self.checkpoint_store.save_checkpoint(
                self.checkpoint_store.init_checkpoint(scan_id, site.url, level, total)
            )
            log.info(f"Starting verification: {total} batches at level {level.value}")
        else:
            log.info(f"Resuming from checkpoint: {len(checkpoint.completed_batches)}/{total} batches done")

        pending = self.checkpoint_store.get_incomplete_batches(checkpoint)
        results: List[BatchResult] = []

        for position, batch_index in enumerate(pending):
            if position > 0 and self.delay_between_batches > 0:
                self.sleep(self.delay_between_batches)

            result = self.process_single_batch(
                batch_index, batches[batch_index], site, existing_issue_ids, scan_id, level
            )
            results.append(result)

            if result.succeeded:
                checkpoint = self.checkpoint_store.mark_batch_complete(
                    scan_id, batch_index, result.verifications, result.tokens_used
                )

        return self._finish(scan_id, level, checkpoint, results, total - len(pending), resumed, log)

    def _finish(
        self,
        scan_id: str,
        level: WcagLevel,
        checkpoint: CriteriaCheckpoint,
        results: List[BatchResult],
        skipped: int,
        resumed: bool,
        log,
    ) -> VerificationOutcome:
        failed = [r for r in results if not r.succeeded]
        fallback = [v for r in failed for v in r.verifications]
        coverage = summarize_coverage(checkpoint.partial_results + fallback, checkpoint.tokens_used)

        complete = not self.checkpoint_store.get_incomplete_batches(checkpoint)
        if complete:
            self.checkpoint_store.mark_finalization_complete(scan_id, coverage)
            log.info(
                f"Verification finalized: {coverage.criteria_passed} passed, {coverage.criteria_failed} failed, "
                f"{coverage.criteria_not_tested} not tested, {coverage.tokens_used} tokens"
            )
        else:
            log.warning(f"{len(failed)} batch(es) not verified, checkpoint kept for resume")

        return VerificationOutcome(
            scan_id=scan_id,
            level=level,
            total_batches=checkpoint.total_batches,
            batches_processed=len(results),
            batches_skipped=skipped,
            resumed=resumed,
            complete=complete,
            coverage=coverage,
            batch_results=results,
        )
