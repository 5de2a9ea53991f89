from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from backend.app.core.logging_config import run_id_var
from backend.app.core.policy import CurationPolicy, load_policy
from backend.app.core.rate_limit import TokenBucket
from backend.app.core.settings import Settings, settings as default_settings
from backend.app.services.curated_store import CuratedStore, SqlAlchemyCuratedStore, StoreError
from backend.app.services.hard_filter import HardFilterEngine
from backend.app.services.listing_source import ListingSource, ListingSourceError, build_listing_source
from backend.app.services.mileage import classify_mileage
from backend.app.services.records import (
    RawListing,
    VehicleRecord,
    age_in_years,
    current_year,
    is_rust_belt_state,
    mileage_per_year,
)
from backend.app.services.run_summary import (
    ERROR_STAGE_FETCH,
    ERROR_STAGE_HISTORY,
    ERROR_STAGE_LOG,
    ERROR_STAGE_PIPELINE,
    ERROR_STAGE_STORE,
    ERROR_STAGE_VIN,
    PipelineStage,
    RunStatus,
    RunSummary,
)
from backend.app.services.scoring import ModelPriorityScorer, PriorityScorer, build_scorer
from backend.app.services.vin_client import (
    VinAdapter,
    VinDecodeResult,
    VinHistory,
    VinLookupError,
    VinServiceAdapter,
    verify_decoded,
)

logger = logging.getLogger(__name__)

RULE_VIN_MISMATCH = "vin_mismatch"

DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_REQUESTS_PER_MINUTE = 240


class PipelineFatalError(Exception):
    """Raised when a run cannot continue: the fetch failed or its summary could not be saved."""

    def __init__(self, stage: str, message: str, summary: Optional[RunSummary] = None):
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.message = message
        self.summary = summary


def _error_message(exc: BaseException) -> str:
    if isinstance(exc, (VinLookupError, StoreError)):
        return str(exc) or exc.__class__.__name__
    detail = str(exc)
    return f"{exc.__class__.__name__}: {detail}" if detail else exc.__class__.__name__


@dataclass
class _Candidate:
    listing: RawListing
    decoded: Optional[VinDecodeResult] = None
    history: Optional[VinHistory] = None


class CurationPipeline:
    """One fetch → filter → validate → score → dedup → store → log pass.

    Stages run in order; cancellation and the run deadline are checked between
    stages, and an aborted run still persists its summary.
    """

    def __init__(
        self,
        source: ListingSource,
        store: CuratedStore,
        policy: Optional[CurationPolicy] = None,
        vin_adapter: Optional[VinAdapter] = None,
        scorer: Optional[PriorityScorer] = None,
        *,
        validate_vins: bool = True,
        check_history: bool = True,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE,
        deadline_seconds: Optional[float] = None,
        year_now: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.store = store
        self.policy = policy or CurationPolicy()
        self.vin_adapter = vin_adapter
        self.scorer = scorer or ModelPriorityScorer.from_policy(self.policy)
        self.validate_vins = validate_vins and vin_adapter is not None
        self.check_history = check_history and vin_adapter is not None
        self.max_concurrency = max(1, max_concurrency)
        self.requests_per_minute = requests_per_minute
        self.deadline_seconds = deadline_seconds
        self.year_now = year_now if year_now is not None else current_year()
        self.engine = HardFilterEngine(self.policy, year_now=self.year_now)
        self._clock = clock
        self._cancel_requested = False
        self._deadline_at: Optional[float] = None

    def cancel(self) -> None:
        """Ask the running pipeline to stop at the next stage boundary."""
        self._cancel_requested = True

    def _should_stop(self) -> bool:
        if self._cancel_requested:
            return True
        return self._deadline_at is not None and self._clock() >= self._deadline_at

    async def run(self, criteria: Optional[Dict[str, Any]] = None) -> RunSummary:
        summary = RunSummary(source_name=getattr(self.source, "name", None))
        token = run_id_var.set(summary.run_id)
        self._cancel_requested = False
        self._deadline_at = self._clock() + self.deadline_seconds if self.deadline_seconds else None
        logger.info("Pipeline run %s started", summary.run_id)
        try:
            return await self._run_stages(summary, criteria)
        except PipelineFatalError:
            raise
        except Exception as exc:
            logger.exception("Pipeline run %s crashed", summary.run_id)
            if not summary.finalized:
                summary.record_error(ERROR_STAGE_PIPELINE, str(exc))
                self._finish(summary, RunStatus.FAILED)
            raise
        finally:
            run_id_var.reset(token)

    async def _run_stages(self, summary: RunSummary, criteria: Optional[Dict[str, Any]]) -> RunSummary:
        try:
            rows = await self.source.fetch_raw_listings(criteria)
        except ListingSourceError as exc:
            logger.error("Fetch failed: %s", exc)
            summary.record_error(ERROR_STAGE_FETCH, str(exc))
            self._finish(summary, RunStatus.FAILED)
            raise PipelineFatalError(ERROR_STAGE_FETCH, str(exc), summary) from exc
        summary.fetched = len(rows)
        summary.api_cost_usd += float(getattr(self.source, "cost", 0.0) or 0.0)
        summary.advance(PipelineStage.FETCHED)
        if self._should_stop():
            return self._abort(summary)

        candidates = self._hard_filter(rows, summary)
        summary.advance(PipelineStage.HARD_FILTERED)
        if self._should_stop():
            return self._abort(summary)

        if self.validate_vins:
            candidates = await self._validate_vins(candidates, summary)
        summary.passed_vin_validation = len(candidates)
        summary.advance(PipelineStage.VIN_VALIDATED)
        if self._should_stop():
            return self._abort(summary)

        if self.check_history:
            candidates = await self._check_history(candidates, summary)
        summary.passed_history_check = len(candidates)
        summary.advance(PipelineStage.HISTORY_CHECKED)
        if self._should_stop():
            return self._abort(summary)

        records = [self._build_record(candidate) for candidate in candidates]
        summary.advance(PipelineStage.SCORED)
        if self._should_stop():
            return self._abort(summary)

        pending = self._dedup(records, summary)
        summary.advance(PipelineStage.DEDUPED)
        if self._should_stop():
            return self._abort(summary)

        self._store(pending, summary)
        summary.advance(PipelineStage.STORED)

        summary.advance(PipelineStage.LOGGED)
        self._finish(summary, RunStatus.COMPLETED)
        logger.info(
            "Pipeline run %s completed: fetched=%s filtered=%s stored=%s duplicates=%s errors=%s",
            summary.run_id,
            summary.fetched,
            summary.passed_hard_filter,
            summary.stored,
            summary.duplicates_skipped,
            summary.error_count,
            extra={"stage": summary.stage.value, "counts": summary.to_dict()["stats"]},
        )
        return summary

    def _hard_filter(self, rows: List[Dict[str, Any]], summary: RunSummary) -> List[_Candidate]:
        survivors: List[_Candidate] = []
        for row in rows:
            listing = row if isinstance(row, RawListing) else RawListing.from_mapping(row)
            decision = self.engine.evaluate(listing)
            if not decision.accepted:
                summary.record_rejection(decision.rule)
                logger.debug(
                    "Rejected %s: %s", listing.label, decision.reason, extra={"rule": decision.rule, "vin": listing.vin}
                )
                continue
            survivors.append(_Candidate(listing=listing))
        summary.passed_hard_filter = len(survivors)
        logger.info("Hard filter kept %s of %s listings", len(survivors), len(rows))
        return survivors

    async def _gather_lookups(self, candidates: List[_Candidate], lookup) -> List[Optional[_Candidate]]:
        sem = asyncio.Semaphore(self.max_concurrency)
        bucket = TokenBucket(self.requests_per_minute, capacity=1)

        async def guarded(candidate: _Candidate) -> Optional[_Candidate]:
            async with sem:
                await bucket.acquire()
                return await lookup(candidate)

        results = await asyncio.gather(*(guarded(candidate) for candidate in candidates), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return results

    async def _validate_vins(self, candidates: List[_Candidate], summary: RunSummary) -> List[_Candidate]:
        async def lookup(candidate: _Candidate) -> Optional[_Candidate]:
            listing = candidate.listing
            summary.api_calls += 1
            try:
                decoded = await self.vin_adapter.decode_vin(listing.vin)
            except Exception as exc:
                message = _error_message(exc)
                logger.warning(
                    "VIN decode failed for %s: %s",
                    listing.vin,
                    message,
                    extra={"stage": ERROR_STAGE_VIN, "vin": listing.vin},
                )
                summary.record_error(ERROR_STAGE_VIN, message, vin=listing.vin)
                return None

            issues = verify_decoded(listing, decoded)
            if issues:
                summary.record_rejection(RULE_VIN_MISMATCH)
                logger.info("VIN check rejected %s: %s", listing.label, "; ".join(issues))
                return None
            candidate.decoded = decoded
            return candidate

        results = await self._gather_lookups(candidates, lookup)
        return [candidate for candidate in results if candidate is not None]

    async def _check_history(self, candidates: List[_Candidate], summary: RunSummary) -> List[_Candidate]:
        async def lookup(candidate: _Candidate) -> Optional[_Candidate]:
            listing = candidate.listing
            summary.api_calls += 1
            try:
                history = await self.vin_adapter.get_history(listing.vin)
            except Exception as exc:
                message = _error_message(exc)
                logger.warning(
                    "History check failed for %s: %s",
                    listing.vin,
                    message,
                    extra={"stage": ERROR_STAGE_HISTORY, "vin": listing.vin},
                )
                summary.record_error(ERROR_STAGE_HISTORY, message, vin=listing.vin)
                return None

            decision = self.engine.evaluate_history(history)
            if not decision.accepted:
                summary.record_rejection(decision.rule)
                logger.info("History check rejected %s: %s", listing.label, decision.reason)
                return None
            if not listing.state_of_origin and history.state_of_origin:
                listing.state_of_origin = history.state_of_origin
            candidate.history = history
            return candidate

        results = await self._gather_lookups(candidates, lookup)
        return [candidate for candidate in results if candidate is not None]

    def _build_record(self, candidate: _Candidate) -> VehicleRecord:
        listing = candidate.listing
        policy = self.policy
        rating = classify_mileage(listing.mileage, listing.year, policy, year_now=self.year_now)
        result = self.scorer.score(listing, rating)
        rust = is_rust_belt_state(listing.state_of_origin, policy.rust_belt_states)
        decoded = candidate.decoded
        return VehicleRecord(
            vin=listing.vin,
            make=listing.make,
            model=listing.model,
            year=listing.year,
            price=listing.price,
            mileage=listing.mileage,
            body_type=listing.body_type or (decoded.body_class if decoded else None),
            age_in_years=age_in_years(listing.year, self.year_now),
            mileage_per_year=mileage_per_year(listing.mileage, listing.year, self.year_now),
            mileage_rating=rating,
            title_status=listing.title_status,
            accident_count=listing.accident_count,
            owner_count=listing.owner_count,
            is_rental=bool(listing.is_rental),
            is_fleet=bool(listing.is_fleet),
            has_lien=bool(listing.has_lien),
            flood_damage=bool(listing.flood_damage),
            state_of_origin=listing.state_of_origin or "",
            is_rust_belt_state=rust,
            flag_rust_concern=rust,
            current_location=listing.location or "",
            distance_miles=listing.distance_miles or 0,
            dealer_name=listing.dealer_name,
            priority_score=result.score,
            score_breakdown=result.breakdown,
            source_platform=listing.source_platform or getattr(self.source, "name", "") or "",
            source_url=listing.source_url or "",
            source_listing_id=listing.source_listing_id,
            images_url=list(listing.images),
            vin_decode_data=decoded.payload() if decoded else None,
            vin_history_data=candidate.history.payload() if candidate.history else None,
        )

    def _dedup(self, records: List[VehicleRecord], summary: RunSummary) -> List[tuple]:
        """Drop records identical to the latest known version of their VIN.

        The latest known version is the one written earlier in this run, or
        the stored row. Returns ``(record, is_update)`` pairs in input order.
        """
        latest: Dict[str, Optional[str]] = {}
        pending: List[tuple] = []
        for record in records:
            if record.vin not in latest:
                try:
                    existing = self.store.get_by_vin(record.vin)
                except Exception as exc:
                    message = _error_message(exc)
                    logger.warning(
                        "Lookup of %s failed: %s",
                        record.vin,
                        message,
                        extra={"stage": ERROR_STAGE_STORE, "vin": record.vin},
                    )
                    summary.record_error(ERROR_STAGE_STORE, message, vin=record.vin)
                    continue
                latest[record.vin] = existing.fingerprint() if existing else None

            fingerprint = record.fingerprint()
            previous = latest[record.vin]
            if previous == fingerprint:
                summary.duplicates_skipped += 1
                logger.debug("Skipping unchanged %s", record.vin)
                continue
            pending.append((record, previous is not None))
            latest[record.vin] = fingerprint
        return pending

    def _store(self, pending: List[tuple], summary: RunSummary) -> None:
        for record, is_update in pending:
            try:
                self.store.upsert(record)
            except Exception as exc:
                message = _error_message(exc)
                logger.warning(
                    "Store failed for %s: %s",
                    record.vin,
                    message,
                    extra={"stage": ERROR_STAGE_STORE, "vin": record.vin},
                )
                summary.record_error(ERROR_STAGE_STORE, message, vin=record.vin)
                continue
            summary.stored += 1
            if is_update:
                summary.updated += 1

    def _abort(self, summary: RunSummary) -> RunSummary:
        reason = "cancelled" if self._cancel_requested else "deadline exceeded"
        logger.warning("Pipeline run %s stopped after %s: %s", summary.run_id, summary.stage.value, reason)
        self._finish(summary, RunStatus.INCOMPLETE, incomplete=True)
        return summary

    def _finish(self, summary: RunSummary, status: RunStatus, *, incomplete: bool = False) -> None:
        summary.finalize(status, incomplete=incomplete)
        try:
            self.store.insert_run_summary(summary)
        except Exception as exc:
            logger.exception("Could not persist summary for run %s", summary.run_id)
            raise PipelineFatalError(ERROR_STAGE_LOG, str(exc), summary) from exc


def build_pipeline(config: Optional[Settings] = None) -> CurationPipeline:
    config = config or default_settings
    policy = load_policy(config.curation_policy_path)
    needs_vin_service = not (config.skip_vin_validation and config.skip_history_check)
    return CurationPipeline(
        source=build_listing_source(config),
        store=SqlAlchemyCuratedStore(),
        policy=policy,
        vin_adapter=VinServiceAdapter() if needs_vin_service else None,
        scorer=build_scorer(config.scoring_strategy, policy),
        validate_vins=not config.skip_vin_validation,
        check_history=not config.skip_history_check,
        max_concurrency=config.vin_max_concurrency,
        requests_per_minute=config.vin_requests_per_minute,
        deadline_seconds=config.pipeline_deadline_seconds,
    )


async def run_pipeline(
    pipeline: Optional[CurationPipeline] = None,
    criteria: Optional[Dict[str, Any]] = None,
    *,
    config: Optional[Settings] = None,
) -> RunSummary:
    """Run one curation pass; builds the pipeline from settings when none is given."""
    owned = pipeline is None
    pipeline = pipeline or build_pipeline(config)
    try:
        return await pipeline.run(criteria)
    finally:
        adapter = pipeline.vin_adapter
        if owned and adapter is not None and hasattr(adapter, "aclose"):
            await adapter.aclose()
