"""Per-row reconciliation of parsed listings against the catalog."""

import logging
from datetime import datetime
from typing import Any

from .images import ImageSetReconciler
from .interfaces import CatalogStore, MetadataStore
from .matcher import KeywordCategoryMatcher
from .models import (
    ClassificationResult,
    ImportOptions,
    LogEntry,
    ProductRecord,
    RowOutcome,
    RowResult,
    Severity,
)
from .taxonomy import TaxonomyPathResolver, normalize_taxonomy_path

logger = logging.getLogger(__name__)

AI_CATEGORIZED_META = "ai_categorized"
AI_CATEGORIZED_DATE_META = "ai_categorized_date"
LISTING_URL_META = "listing_url"

SHORT_DESCRIPTION_WORDS = 30


def trim_words(text: str, limit: int = SHORT_DESCRIPTION_WORDS) -> str:
    """First ``limit`` words of ``text``, with an ellipsis if cut."""
    words = (text or "").split()
    if len(words) <= limit:
        return " ".join(words)
    return " ".join(words[:limit]) + "…"


class CatalogReconciler:
    """Turns one parsed row into a created, updated or skipped product.

    Row pipeline: classify (prior AI result, else keyword matching),
    resolve the category path, find an existing product by SKU then title,
    and either update it (categories, flags, image sync) or create it.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        metadata: MetadataStore,
        images: ImageSetReconciler,
        options: ImportOptions | None = None,
        matcher: KeywordCategoryMatcher | None = None,
        resolver: TaxonomyPathResolver | None = None,
    ):
        self.catalog = catalog
        self.metadata = metadata
        self.images = images
        self.options = options or ImportOptions()
        self.matcher = matcher or KeywordCategoryMatcher()
        self.resolver = resolver or TaxonomyPathResolver(catalog)

    # =========================================================================
    # Lookup
    # =========================================================================

    def find_existing(self, record: ProductRecord) -> int | None:
        """Existing product id by exact SKU, then by exact title."""
        if record.sku:
            product_id = self.catalog.find_by_sku(record.sku)
            if product_id:
                return product_id
        if record.title:
            return self.catalog.find_by_exact_title(record.title)
        return None

    def find_prior_ai_category(self, record: ProductRecord) -> str | None:
        """Current category of a matching product that was AI-categorized before."""
        product_id = self.find_existing(record)
        if not product_id:
            return None
        if self.metadata.get_meta(product_id, AI_CATEGORIZED_META) != "1":
            return None
        categories = self.catalog.get_product_categories(product_id)
        return categories[0].name if categories else None

    def needs_classification(self, record: ProductRecord) -> bool:
        """Rows with a SECTION path or without a title are never classified."""
        return self.options.import_categories and bool(record.title) and not record.taxonomy_path

    # =========================================================================
    # Classification
    # =========================================================================

    def classify(self, record: ProductRecord, prior: ClassificationResult | None = None) -> ClassificationResult:
        """Use a resolved AI result, otherwise fall back to keyword matching.

        Args:
            record: Parsed row
            prior: Result of the remote classifier for this row, if any

        Returns:
            ClassificationResult whose log includes the prior result's trace
        """
        if not self.needs_classification(record):
            return ClassificationResult.not_attempted()

        if prior is not None and prior.resolved:
            return prior

        keyword = self.matcher.match(record.tags, record.title, self.catalog.get_category_terms())
        if prior is not None and prior.log:
            keyword.log = prior.log + keyword.log
        return keyword

    def resolve_categories(self, record: ProductRecord, classification: ClassificationResult) -> tuple[list[int], list[LogEntry]]:
        """Category ids to assign, falling back to the default category.

        Returns:
            Tuple of (category ids, log entries)
        """
        if not self.options.import_categories:
            category_ids: list[int] = []
            path = ""
        else:
            path = record.taxonomy_path or classification.category
            category_ids = self.resolver.resolve(path, self.options.create_categories) if path else []

        if category_ids:
            label = normalize_taxonomy_path(path)
            return category_ids, [LogEntry(severity=Severity.INFO, message=f"Category: {label} (id {category_ids[0]})")]

        if self.options.default_category > 0:
            return [self.options.default_category], [
                LogEntry(
                    severity=Severity.INFO,
                    message=f"Using default category (id {self.options.default_category})",
                )
            ]

        if path:
            return [], [LogEntry(severity=Severity.WARNING, message=f"Category '{path}' not found, none assigned")]
        return [], []

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def process(self, record: ProductRecord, prior: ClassificationResult | None = None) -> RowResult:
        """Reconcile one row with the catalog.

        Args:
            record: Parsed row
            prior: Remote classifier result for the row, if one was computed

        Returns:
            RowResult describing the outcome and its trace log
        """
        if not record.title:
            return RowResult(
                outcome=RowOutcome.SKIPPED,
                log=[LogEntry(severity=Severity.WARNING, message=f"Row {record.row_number}: Skipped (empty title)")],
            )

        classification = self.classify(record, prior)
        category_ids, category_log = self.resolve_categories(record, classification)

        existing_id = self.find_existing(record)
        if existing_id:
            result = self._update(existing_id, record, classification, category_ids)
        else:
            result = self._create(record, classification, category_ids)

        result.log = classification.log + category_log + result.log
        return result

    def _create(self, record: ProductRecord, classification: ClassificationResult, category_ids: list[int]) -> RowResult:
        product_id = self.catalog.create_product(self._product_fields(record))

        if category_ids:
            self.catalog.set_categories(product_id, category_ids)
        if record.tags:
            self.catalog.set_tags(product_id, record.tags)
        self._write_flags(product_id, record, classification)

        log = [LogEntry(severity=Severity.SUCCESS, message=f"Created product: {record.title}")]
        queued = 0
        if self.options.import_images and record.image_urls:
            self.images.remember(product_id, record.image_urls)
            queued = self.images.queue_images(product_id, record.image_urls)
            log.append(LogEntry(severity=Severity.INFO, message=f"  Queued {queued} images for background import"))

        logger.info(f"Created product {product_id}: {record.title}")
        return RowResult(
            outcome=RowOutcome.CREATED,
            product_id=product_id,
            images_queued=queued,
            category_ids=category_ids,
            classification=classification,
            log=log,
        )

    def _update(
        self,
        product_id: int,
        record: ProductRecord,
        classification: ClassificationResult,
        category_ids: list[int],
    ) -> RowResult:
        if category_ids:
            self.catalog.set_categories(product_id, category_ids)
        self._write_flags(product_id, record, classification)

        log = [LogEntry(severity=Severity.INFO, message=f"Updated existing product: {record.title}")]
        queued = 0
        synced = False
        if self.options.import_images and record.image_urls:
            sync = self.images.sync(product_id, record.image_urls)
            if sync.updated:
                queued = sync.queued
                synced = True
                log.append(LogEntry(severity=Severity.INFO, message=f"  Images changed, queued {queued} for background import"))

        logger.info(f"Updated product {product_id}: {record.title}")
        return RowResult(
            outcome=RowOutcome.UPDATED,
            product_id=product_id,
            images_queued=queued,
            updated_existing=True,
            images_synced=synced,
            category_ids=category_ids,
            classification=classification,
            log=log,
        )

    def _product_fields(self, record: ProductRecord) -> dict[str, Any]:
        """Fields of a brand-new catalog entry."""
        digital = self.options.mark_digital
        fields: dict[str, Any] = {
            "title": record.title,
            "description": record.description,
            "short_description": trim_words(record.description),
            "regular_price": record.price if record.price > 0 else None,
            "sku": record.sku,
            "status": "draft" if self.options.draft_status else "publish",
            "virtual": digital,
            "downloadable": digital,
            "manage_stock": False,
            "stock_quantity": None,
            "stock_status": "instock",
        }
        # Digital goods never track stock.
        if not digital and record.quantity is not None:
            fields["manage_stock"] = True
            fields["stock_quantity"] = record.quantity
            fields["stock_status"] = "instock" if record.quantity > 0 else "outofstock"
        return fields

    def _write_flags(self, product_id: int, record: ProductRecord, classification: ClassificationResult) -> None:
        if classification.ai_categorized:
            self.metadata.set_meta(product_id, AI_CATEGORIZED_META, "1")
            self.metadata.set_meta(
                product_id,
                AI_CATEGORIZED_DATE_META,
                datetime.now().isoformat(timespec="seconds"),
            )
        if record.listing_url:
            self.metadata.set_meta(product_id, LISTING_URL_META, record.listing_url)
