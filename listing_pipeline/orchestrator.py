"""Pipeline orchestrator wiring together sources, dedup, tracking and lifecycle."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Callable, Iterable

import httpx
import structlog

from .config import ConfigLocator, ConfigRepository, PipelineConfig, SourceConfig
from .engine.dedup import DuplicateDetector, Thresholds
from .engine.enrichment import EnrichmentChain
from .engine.fetcher import Fetcher
from .engine.lifecycle import LifecycleManager
from .engine.normalize import CandidateNormalizer
from .engine.price_tracker import PriceChangeTracker
from .engine.rate_limit import Clock, RateLimiter, SystemClock
from .errors import InvalidCandidateError
from .infra.storage import CollectionStore
from .logging_conf import RunLog, configure_logging, open_run_log
from .models import ListingRecord, ListingState, RawListing, utcnow
from .sources import SourceAdapter, build_adapter

# Collections a new candidate is compared against for similarity.
LIVE_STATES = (ListingState.PENDING, ListingState.ACTIVE, ListingState.SOLD)


@dataclass(slots=True)
class SourceSummary:
    fetched: int = 0
    new: int = 0
    updated: int = 0
    duplicate: int = 0
    invalid: int = 0
    errored: int = 0
    error: str | None = None


@dataclass(slots=True)
class RunSummary:
    """Counts reported at the end of every run, even a partially failed one."""

    run_id: str
    started_at: datetime
    finished_at: datetime | None = None
    fetched: int = 0
    new: int = 0
    updated: int = 0
    duplicate: int = 0
    invalid: int = 0
    errored: int = 0
    price_changes: int = 0
    purged: int = 0
    retention_removed: int = 0
    sources: dict[str, SourceSummary] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    def add(self, name: str, source: SourceSummary) -> None:
        self.sources[name] = source
        self.fetched += source.fetched
        self.new += source.new
        self.updated += source.updated
        self.duplicate += source.duplicate
        self.invalid += source.invalid
        self.errored += source.errored
        if source.error:
            self.errors[name] = source.error

    def counts(self) -> dict[str, int]:
        return {
            "fetched": self.fetched,
            "new": self.new,
            "updated": self.updated,
            "duplicate": self.duplicate,
            "invalid": self.invalid,
            "errored": self.errored,
            "price_changes": self.price_changes,
            "purged": self.purged,
            "retention_removed": self.retention_removed,
        }

    def as_dict(self) -> dict:
        payload = asdict(self)
        payload["started_at"] = self.started_at.isoformat()
        payload["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return payload


@dataclass(slots=True)
class Corpus:
    """In-memory view of the live collections for one run."""

    collections: dict[ListingState, list[ListingRecord]]
    index: dict[str, ListingState] = field(default_factory=dict)
    dirty: set[ListingState] = field(default_factory=set)

    def __post_init__(self) -> None:
        for state, records in self.collections.items():
            for record in records:
                self.index.setdefault(record.id, state)

    def live_records(self) -> Iterable[ListingRecord]:
        for state in LIVE_STATES:
            yield from self.collections[state]

    def find(self, listing_id: str) -> tuple[ListingState, int] | None:
        state = self.index.get(listing_id)
        if state is None:
            return None
        for position, record in enumerate(self.collections[state]):
            if record.id == listing_id:
                return state, position
        return None

    def admit(self, record: ListingRecord) -> None:
        self.collections[ListingState.PENDING].append(record)
        self.index[record.id] = ListingState.PENDING
        self.dirty.add(ListingState.PENDING)


@dataclass(slots=True)
class RunContext:
    """Per-run state: created when a run starts, discarded when it ends."""

    run_log: RunLog
    fetcher: Fetcher
    rate_limiter: RateLimiter
    summary: RunSummary
    logger: structlog.stdlib.BoundLogger

    @property
    def run_id(self) -> str:
        return self.run_log.run_id

    def close(self) -> None:
        self.fetcher.close()
        self.run_log.close(**self.summary.counts())


class Pipeline:
    """Central coordinator for ingestion runs and maintenance."""

    def __init__(
        self,
        config_repository: ConfigRepository,
        *,
        transport: httpx.BaseTransport | None = None,
        clock: Clock | None = None,
        now: Callable[[], datetime] = utcnow,
        enrichment: EnrichmentChain | None = None,
    ) -> None:
        self.config_repository = config_repository
        self.locator: ConfigLocator = config_repository.locator
        self.config: PipelineConfig = config_repository.load_config()
        self.transport = transport
        self.clock = clock or SystemClock()
        self.now = now
        self.logger = configure_logging(
            level=self.config.log_level, log_dir=self.locator.logs_dir
        ).bind(component="pipeline")
        self.enrichment = enrichment
        self.store = CollectionStore(
            self.locator.data_dir,
            max_backups=self.config.lifecycle.max_backups,
            logger=self.logger.bind(component="storage"),
            now=now,
        )
        self.normalizer = CandidateNormalizer(self.config.crc_to_usd_rate)
        self.detector = DuplicateDetector(Thresholds.ingest(self.config.dedup))

    # ------------------------------------------------------------------
    def lifecycle(self, logger: structlog.stdlib.BoundLogger | None = None) -> LifecycleManager:
        return LifecycleManager(
            self.store,
            self.config.lifecycle,
            self.config.dedup,
            purge_record_path=self.locator.purge_record_path(),
            logger=(logger or self.logger).bind(component="lifecycle"),
            now=self.now,
        )

    def tracker(self, logger: structlog.stdlib.BoundLogger | None = None) -> PriceChangeTracker:
        return PriceChangeTracker(
            self.store,
            self.config.tracker,
            logger=(logger or self.logger).bind(component="price_tracker"),
            now=self.now,
        )

    def open_context(self) -> RunContext:
        run_log = open_run_log(log_dir=self.locator.logs_dir, level=self.config.log_level)
        logger = run_log.logger
        rate_limiter = RateLimiter(
            self.config.rate_limits, clock=self.clock, logger=logger.bind(component="rate_limiter")
        )
        fetcher = Fetcher(
            self.config,
            rate_limiter=rate_limiter,
            clock=self.clock,
            logger=logger.bind(component="fetcher"),
            transport=self.transport,
        )
        summary = RunSummary(run_id=run_log.run_id, started_at=self.now())
        return RunContext(
            run_log=run_log,
            fetcher=fetcher,
            rate_limiter=rate_limiter,
            summary=summary,
            logger=logger,
        )

    # ------------------------------------------------------------------
    def run(
        self,
        source_names: Iterable[str] | None = None,
        *,
        maintenance: bool = False,
    ) -> RunSummary:
        """Ingest every selected source in order, then track prices.

        Failures local to one source are recorded in the summary and the
        next source still runs.
        """

        sources = self._select_sources(source_names)
        context = self.open_context()
        logger = context.logger
        logger.info("run_started", sources=[source.name for source in sources])
        try:
            corpus = Corpus(
                {state: self.store.read_collection(state) for state in ListingState}
            )
            observed: list[ListingRecord] = []
            enrichment = self.enrichment or EnrichmentChain(
                logger=logger.bind(component="enrichment")
            )

            for source in sources:
                source_summary = self._ingest_source(context, source, corpus, observed, enrichment)
                context.summary.add(source.name, source_summary)
                self._persist(corpus)

            if observed:
                try:
                    notifications = self.tracker(logger).track_batch(observed)
                    context.summary.price_changes = len(notifications)
                except OSError as exc:
                    context.summary.errors["price_tracker"] = str(exc)
                    logger.error("price_tracking_failed", error=str(exc))

            if maintenance:
                result, retention = self.lifecycle(logger).run_maintenance()
                context.summary.purged = result.moved_to_archived
                context.summary.retention_removed = retention.removed
        finally:
            context.summary.finished_at = self.now()
            logger.info(
                "run_completed",
                **context.summary.counts(),
                errors=context.summary.errors,
            )
            context.close()
        return context.summary

    def _select_sources(self, names: Iterable[str] | None) -> list[SourceConfig]:
        if names is None:
            return [source for source in self.config.sources if source.enabled]
        return [self.config_repository.load_source(name) for name in names]

    def _ingest_source(
        self,
        context: RunContext,
        source: SourceConfig,
        corpus: Corpus,
        observed: list[ListingRecord],
        enrichment: EnrichmentChain,
    ) -> SourceSummary:
        summary = SourceSummary()
        logger = context.logger.bind(source=source.name)
        adapter: SourceAdapter | None = None
        try:
            adapter = build_adapter(
                source,
                fetcher=context.fetcher,
                base_dir=self.locator.project_root,
                logger=logger.bind(component="source"),
            )
            raw_listings = adapter.scrape()
        except Exception as exc:  # noqa: BLE001 - one source must not abort the run
            summary.errored += 1
            summary.error = str(exc) or exc.__class__.__name__
            logger.error("source_failed", error=summary.error, error_type=exc.__class__.__name__)
            return summary
        finally:
            if adapter is not None:
                adapter.close()

        summary.fetched = len(raw_listings) + adapter.rejected
        summary.invalid += adapter.rejected
        for raw in raw_listings:
            try:
                outcome, record = self._ingest_candidate(raw, corpus, enrichment, logger)
            except Exception as exc:  # noqa: BLE001
                summary.errored += 1
                logger.error("candidate_failed", external_id=raw.external_id, error=str(exc))
                continue
            setattr(summary, outcome, getattr(summary, outcome) + 1)
            if record is not None:
                observed.append(record)
        logger.info("source_completed", **asdict(summary))
        return summary

    def _ingest_candidate(
        self,
        raw: RawListing,
        corpus: Corpus,
        enrichment: EnrichmentChain,
        logger: structlog.stdlib.BoundLogger,
    ) -> tuple[str, ListingRecord | None]:
        try:
            candidate = self.normalizer.normalize(raw)
        except InvalidCandidateError as exc:
            logger.info("candidate_invalid", external_id=raw.external_id, missing=exc.missing)
            return "invalid", None

        location = corpus.find(candidate.id)
        if location is not None:
            state, position = location
            if state is ListingState.ARCHIVED:
                logger.debug("candidate_duplicate", listing_id=candidate.id, reason="archived")
                return "duplicate", None
            refreshed = self._refresh(corpus.collections[state][position], candidate)
            corpus.collections[state][position] = refreshed
            corpus.dirty.add(state)
            logger.debug("candidate_refreshed", listing_id=candidate.id, state=state.value)
            return "updated", refreshed

        match = self.detector.find_duplicate(
            candidate.title, candidate.location, corpus.live_records()
        )
        if match is not None:
            logger.info(
                "candidate_duplicate",
                listing_id=candidate.id,
                matched_id=match.id,
                reason="similar",
            )
            return "duplicate", None

        admitted = enrichment.apply(candidate)
        corpus.admit(admitted)
        logger.info("candidate_admitted", listing_id=admitted.id, title=admitted.title)
        return "new", admitted

    def _refresh(self, existing: ListingRecord, candidate: ListingRecord) -> ListingRecord:
        update: dict = {
            "price_usd": candidate.price_usd,
            "price_text": candidate.price_text,
            "last_updated": self.now(),
        }
        if candidate.description:
            update["description"] = candidate.description
        if candidate.images:
            update["images"] = candidate.images
        return existing.model_copy(update=update)

    def _persist(self, corpus: Corpus) -> None:
        for state in sorted(corpus.dirty, key=lambda item: list(ListingState).index(item)):
            self.store.write_collection(state, corpus.collections[state])
        corpus.dirty.clear()


__all__ = ["Corpus", "Pipeline", "RunContext", "RunSummary", "SourceSummary"]
