"""Streaming driver for a full CSV import pass."""

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncGenerator
from pathlib import Path

import httpx

from .classifier import ZeroShotClassifierClient
from .config import ClassifierConfig
from .images import DEFAULT_INTERVAL, ImageSetReconciler
from .interfaces import AssetService, CatalogStore, MetadataStore, SettingsStore, TaskQueue
from .models import (
    BatchInfoEvent,
    BatchProgressEvent,
    ClassificationResult,
    CompleteEvent,
    ErrorEvent,
    ImportEvent,
    ImportOptions,
    ImportResults,
    ImportSession,
    LogEvent,
    ProductRecord,
    ProgressEvent,
    RowOutcome,
    Severity,
)
from .parser import CsvStructureError, ListingCsvParser
from .reconciler import CatalogReconciler
from .retry import SleepFunc

logger = logging.getLogger(__name__)

ERROR_SAMPLE_LIMIT = 10


def _percent(current: int, total: int) -> int:
    if total <= 0:
        return 100
    return int(current * 100 / total + 0.5)


class ImportStreamController:
    """Runs one import and yields ordered events while it goes.

    Rows are processed one at a time in file order. In AI mode each batch is
    classified first (``batch_progress`` then per-item classification) and
    its rows are reconciled right after, so the caller sees progress while
    the remote model is being queried.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        metadata: MetadataStore,
        assets: AssetService,
        queue: TaskQueue,
        settings: SettingsStore,
        options: ImportOptions | None = None,
        parser: ListingCsvParser | None = None,
        classifier_config: ClassifierConfig | None = None,
        classifier_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFunc = asyncio.sleep,
        image_interval: float = DEFAULT_INTERVAL,
    ):
        """Initialize controller.

        Args:
            catalog: Product and taxonomy store
            metadata: Per-product metadata
            assets: Attachment service
            queue: Background task queue
            settings: Credentials and feature flags
            options: Per-run switches
            parser: CSV parser
            classifier_config: Batching and threshold constants
            classifier_url: Override of the classifier endpoint
            transport: Optional httpx transport for the classifier
            sleep: Async sleep used for classifier pacing
            image_interval: Seconds between a product's image tasks
        """
        self.catalog = catalog
        self.settings = settings
        self.options = options or ImportOptions()
        self.parser = parser or ListingCsvParser()
        self.classifier_config = classifier_config or ClassifierConfig()
        self.classifier_url = classifier_url or settings.get_classifier_url()
        self.transport = transport
        self.sleep = sleep
        self.images = ImageSetReconciler(assets, metadata, queue, image_interval)
        self.reconciler = CatalogReconciler(catalog, metadata, self.images, self.options)
        self.session: ImportSession | None = None

    def _classifier(self) -> ZeroShotClassifierClient:
        kwargs = {}
        if self.classifier_url:
            kwargs["url"] = self.classifier_url
        return ZeroShotClassifierClient(
            self.settings,
            config=self.classifier_config,
            transport=self.transport,
            sleep=self.sleep,
            **kwargs,
        )

    async def run(self, path: Path | str) -> AsyncGenerator[ImportEvent, None]:
        """Import a CSV file, yielding log, progress and batch events.

        The last event is always ``complete``. Structural problems with the
        file yield a single ``error`` first and no rows are touched.

        Args:
            path: CSV file to import

        Yields:
            ImportEvent instances in emission order
        """
        self.session = ImportSession(id=uuid.uuid4().hex[:12], file_path=str(path), options=self.options)
        results = self.session.results
        started = time.monotonic()
        categories_before = self.catalog.count_categories()

        try:
            header_map, rows = self.parser.read(path)
        except CsvStructureError as e:
            logger.error(f"Import aborted: {e}")
            yield ErrorEvent(message=str(e))
            yield CompleteEvent.from_results(results, ERROR_SAMPLE_LIMIT)
            return

        logger.info(f"Import {self.session.id} started for {path}")
        yield LogEvent(message=f"CSV headers found: {', '.join(header_map)}")

        total = len(rows)
        records: list[ProductRecord | None] = []
        parse_errors: dict[int, str] = {}
        for index, row in enumerate(rows):
            try:
                records.append(self.parser.parse_row(row, header_map, index + 1))
            except ValueError as e:
                records.append(None)
                parse_errors[index] = str(e)

        yield LogEvent(message=f"Found {total} products to process")
        yield ProgressEvent(current=0, total=total, percent=0)

        async with self._classifier() as classifier:
            names = self.reconciler.matcher.candidate_names(self.catalog.get_category_terms())
            use_ai = self.options.import_categories and classifier.available and bool(names)

            if use_ai:
                batch_size = classifier.batch_size
                total_batches = classifier.total_batches(total)
                yield BatchInfoEvent(enabled=True, batch_size=batch_size, total_batches=total_batches)
                yield LogEvent(severity=Severity.AI, message="Warming up AI model...")
                if await classifier.warmup(names):
                    yield LogEvent(severity=Severity.AI, message="AI model ready")
                else:
                    yield LogEvent(severity=Severity.WARNING, message="AI model warmup failed, continuing anyway")
            else:
                batch_size = max(total, 1)
                total_batches = 1
                if self.options.import_categories:
                    yield LogEvent(message="AI categorization unavailable, using keyword matching")

            for batch_index, start in enumerate(range(0, total, batch_size)):
                indexes = list(range(start, min(start + batch_size, total)))
                prior: dict[int, ClassificationResult] = {}

                if use_ai:
                    if batch_index > 0:
                        await classifier.pause_between_batches()
                    yield BatchProgressEvent(current_batch=batch_index + 1, total_batches=total_batches)

                    pending = [
                        i for i in indexes
                        if records[i] is not None and self.reconciler.needs_classification(records[i])
                    ]
                    async for offset, result in classifier.iter_batch(
                        [records[i] for i in pending],
                        names,
                        reuse_lookup=self.reconciler.find_prior_ai_category,
                    ):
                        prior[pending[offset]] = result
                        if result.error:
                            yield ErrorEvent(message=result.error)

                for index in indexes:
                    for event in self._process_row(index, records[index], parse_errors.get(index), prior.get(index), results):
                        yield event
                    yield ProgressEvent(current=index + 1, total=total, percent=_percent(index + 1, total))

        # Leftovers of failed rows.
        self.catalog.commit()
        results.categories_created = max(0, self.catalog.count_categories() - categories_before)
        results.duration_seconds = time.monotonic() - started
        logger.info(
            f"Import {self.session.id} finished: {results.imported} imported, "
            f"{results.updated} updated, {results.skipped} skipped, {len(results.errors)} errors"
        )

        for event in self._summary_events(results):
            yield event
        yield CompleteEvent.from_results(results, ERROR_SAMPLE_LIMIT)

    def _process_row(
        self,
        index: int,
        record: ProductRecord | None,
        parse_error: str | None,
        prior: ClassificationResult | None,
        results: ImportResults,
    ) -> list[ImportEvent]:
        """Reconcile one row and tally it, returning its events.

        The row's changes are committed before its events are returned. Any
        exception is confined to the row: it is recorded, counted as a skip
        and reported through a ``log`` and an ``error`` event.
        """
        row_number = index + 1
        events: list[ImportEvent] = []

        try:
            if record is None:
                raise ValueError(parse_error or "Unparsable row")

            if record.title:
                events.append(LogEvent(message=f"Processing: {record.title}"))
            outcome = self.reconciler.process(record, prior)
            self.catalog.commit()
        except Exception as e:
            message = f"Row {row_number}: {e}"
            logger.error(f"Row {row_number} failed: {e}")
            results.errors.append(message)
            results.skipped += 1
            events.append(LogEvent(severity=Severity.ERROR, message=message))
            events.append(ErrorEvent(message=message))
            return events

        events.extend(LogEvent(severity=entry.severity, message=entry.message) for entry in outcome.log)

        if outcome.outcome == RowOutcome.CREATED:
            results.imported += 1
        elif outcome.outcome == RowOutcome.UPDATED:
            results.updated += 1
        else:
            results.skipped += 1
        results.images_queued += outcome.images_queued
        return events

    def _summary_events(self, results: ImportResults) -> list[ImportEvent]:
        events: list[ImportEvent] = [
            LogEvent(severity=Severity.SUCCESS, message="Import completed!"),
            LogEvent(
                message=f"Imported: {results.imported}, Updated: {results.updated}, Skipped: {results.skipped}"
            ),
        ]
        if results.categories_created > 0:
            events.append(
                LogEvent(severity=Severity.SUCCESS, message=f"Created {results.categories_created} new categories")
            )
        if results.images_queued > 0:
            events.append(LogEvent(message=f"{results.images_queued} images queued for background processing"))
        if results.errors:
            events.append(LogEvent(severity=Severity.WARNING, message=f"{len(results.errors)} rows failed"))
        events.append(LogEvent(message=f"Duration: {results.duration_text}"))
        return events
