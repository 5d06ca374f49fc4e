"""Data models for the marketplace catalog importer."""

import json
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    """Severity tag of a human-readable trace entry."""

    INFO = "info"
    WARNING = "warning"
    SUCCESS = "success"
    ERROR = "error"
    AI = "ai"


class LogEntry(BaseModel):
    """One trace line surfaced to the caller."""

    severity: Severity = Field(default=Severity.INFO)
    message: str


class ProductRecord(BaseModel):
    """One parsed CSV row."""

    model_config = ConfigDict(frozen=True)

    row_number: int = Field(default=0, description="1-based data row number")
    title: str = Field(default="", description="Product title, rows without one are skipped")
    description: str = Field(default="")
    price: float = Field(default=0.0, ge=0.0)
    sku: str = Field(default="", description="External identifier, may be empty")
    tags: list[str] = Field(default_factory=list)
    image_urls: list[str] = Field(default_factory=list, description="First URL is the featured image")
    taxonomy_path: str = Field(default="", description="Raw hierarchical category path")
    quantity: int | None = Field(default=None)
    listing_url: str | None = Field(default=None, description="Marketplace listing URL")


class ClassificationSource(str, Enum):
    """Strategy that produced a classification."""

    AI = "ai"
    KEYWORD = "keyword"
    NONE = "none"


class ClassificationStatus(str, Enum):
    """Outcome of a classification attempt."""

    MATCHED = "matched"
    UNRESOLVED = "unresolved"
    NOT_ATTEMPTED = "not_attempted"


class ClassificationResult(BaseModel):
    """Category decision for one product."""

    category: str = Field(default="", description="Category name, empty unless matched")
    score: float = Field(default=0.0, description="AI probability or raw keyword score")
    source: ClassificationSource = Field(default=ClassificationSource.NONE)
    status: ClassificationStatus = Field(default=ClassificationStatus.NOT_ATTEMPTED)
    reused: bool = Field(default=False, description="Prior classification reused")
    error: str | None = Field(default=None, description="Remote call failure, if any")
    log: list[LogEntry] = Field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return self.status == ClassificationStatus.MATCHED and bool(self.category)

    @property
    def ai_categorized(self) -> bool:
        """True when the remote classifier freshly picked the category."""
        return self.resolved and self.source == ClassificationSource.AI and not self.reused

    @classmethod
    def not_attempted(cls, source: ClassificationSource = ClassificationSource.NONE) -> "ClassificationResult":
        return cls(source=source, status=ClassificationStatus.NOT_ATTEMPTED)

    @classmethod
    def unresolved(
        cls,
        source: ClassificationSource,
        log: list[LogEntry] | None = None,
        error: str | None = None,
    ) -> "ClassificationResult":
        return cls(
            source=source,
            status=ClassificationStatus.UNRESOLVED,
            error=error,
            log=log or [],
        )


class CategoryNode(BaseModel):
    """A node of the product category taxonomy."""

    id: int
    name: str
    parent: int = Field(default=0, description="Parent node id, 0 for root")
    slug: str = Field(default="")


class ImageComparison(BaseModel):
    """Normalized diff between the current and desired image sets."""

    current: list[str] = Field(default_factory=list)
    desired: list[str] = Field(default_factory=list)
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)

    @property
    def needs_update(self) -> bool:
        return len(self.added) > 0 or len(self.removed) > 0


class ImageSyncResult(BaseModel):
    """Result of syncing an existing product's images."""

    updated: bool = Field(default=False)
    queued: int = Field(default=0)


class ImageTask(BaseModel):
    """Payload of one background fetch-and-attach task."""

    product_id: int
    image_url: str
    is_featured: bool = Field(default=False)


class RowOutcome(str, Enum):
    """Terminal state of one row."""

    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


class RowResult(BaseModel):
    """What happened to one row."""

    outcome: RowOutcome
    product_id: int | None = Field(default=None)
    images_queued: int = Field(default=0)
    updated_existing: bool = Field(default=False)
    images_synced: bool = Field(default=False)
    category_ids: list[int] = Field(default_factory=list)
    classification: ClassificationResult = Field(default_factory=ClassificationResult)
    log: list[LogEntry] = Field(default_factory=list)


class ImportResults(BaseModel):
    """Running totals of an import pass."""

    imported: int = Field(default=0)
    updated: int = Field(default=0)
    skipped: int = Field(default=0)
    errors: list[str] = Field(default_factory=list)
    images_queued: int = Field(default=0)
    categories_created: int = Field(default=0)
    duration_seconds: float = Field(default=0.0)

    def error_sample(self, limit: int = 10) -> list[str]:
        """Return at most ``limit`` errors plus a line counting the rest."""
        if len(self.errors) <= limit:
            return list(self.errors)
        hidden = len(self.errors) - limit
        return self.errors[:limit] + [f"... and {hidden} more errors"]

    @property
    def duration_text(self) -> str:
        seconds = self.duration_seconds
        if seconds < 60:
            return f"{seconds:.1f}s"
        minutes, rest = divmod(int(round(seconds)), 60)
        if minutes < 60:
            return f"{minutes}m {rest}s"
        hours, minutes = divmod(minutes, 60)
        return f"{hours}h {minutes}m {rest}s"


class ImportOptions(BaseModel):
    """Per-run switches chosen when a CSV is accepted."""

    import_images: bool = Field(default=True, description="Queue and sync product images")
    mark_digital: bool = Field(default=True, description="Create virtual/downloadable products")
    draft_status: bool = Field(default=False, description="Create products as drafts")
    import_categories: bool = Field(default=True, description="Classify and assign categories")
    create_categories: bool = Field(default=False, description="Create missing taxonomy nodes")
    default_category: int = Field(default=0, description="Fallback category id, 0 for none")


class ImportSession(BaseModel):
    """State of one streamed import run."""

    id: str
    file_path: str
    options: ImportOptions = Field(default_factory=ImportOptions)
    results: ImportResults = Field(default_factory=ImportResults)
    started_at: datetime = Field(default_factory=datetime.now)


# =========================================================================
# Stream events
# =========================================================================


class ImportEvent(BaseModel):
    """Base class of everything the import stream yields."""

    type: str

    def to_sse(self) -> str:
        """Render as a Server-Sent Events frame."""
        data = self.model_dump(mode="json", exclude={"type"})
        return f"event: {self.type}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


class LogEvent(ImportEvent):
    type: Literal["log"] = "log"
    severity: Severity = Field(default=Severity.INFO)
    message: str


class ProgressEvent(ImportEvent):
    type: Literal["progress"] = "progress"
    current: int
    total: int
    percent: int


class BatchInfoEvent(ImportEvent):
    type: Literal["batch_info"] = "batch_info"
    enabled: bool
    batch_size: int
    total_batches: int


class BatchProgressEvent(ImportEvent):
    type: Literal["batch_progress"] = "batch_progress"
    current_batch: int
    total_batches: int


class ErrorEvent(ImportEvent):
    type: Literal["error"] = "error"
    message: str


class CompleteEvent(ImportEvent):
    type: Literal["complete"] = "complete"
    imported: int = Field(default=0)
    updated: int = Field(default=0)
    skipped: int = Field(default=0)
    errors: list[str] = Field(default_factory=list)
    images_queued: int = Field(default=0)
    categories_created: int = Field(default=0)
    duration_text: str = Field(default="0.0s")

    @classmethod
    def from_results(cls, results: ImportResults, error_limit: int = 10) -> "CompleteEvent":
        return cls(
            imported=results.imported,
            updated=results.updated,
            skipped=results.skipped,
            errors=results.error_sample(error_limit),
            images_queued=results.images_queued,
            categories_created=results.categories_created,
            duration_text=results.duration_text,
        )
