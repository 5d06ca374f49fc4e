"""Tests for Pydantic models."""

import json

import pytest
from pydantic import ValidationError

from catalog_importer.models import (
    BatchProgressEvent,
    ClassificationResult,
    ClassificationSource,
    ClassificationStatus,
    CompleteEvent,
    ImageComparison,
    ImportResults,
    LogEvent,
    ProductRecord,
    Severity,
)


class TestProductRecord:
    """Tests for ProductRecord model."""

    def test_defaults(self):
        record = ProductRecord(title="Bingo")
        assert record.price == 0.0
        assert record.tags == []
        assert record.quantity is None
        assert record.listing_url is None

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError):
            ProductRecord(title="Bingo", price=-1)

    def test_frozen(self):
        record = ProductRecord(title="Bingo")
        with pytest.raises(ValidationError):
            record.title = "Other"


class TestClassificationResult:
    """Tests for ClassificationResult model."""

    def test_not_attempted_is_not_resolved(self):
        result = ClassificationResult.not_attempted(ClassificationSource.AI)
        assert result.status == ClassificationStatus.NOT_ATTEMPTED
        assert result.resolved is False
        assert result.category == ""

    def test_unresolved_carries_error(self):
        result = ClassificationResult.unresolved(ClassificationSource.AI, error="HTTP 500")
        assert result.status == ClassificationStatus.UNRESOLVED
        assert result.error == "HTTP 500"
        assert result.resolved is False

    def test_ai_categorized_only_for_fresh_ai_match(self):
        fresh = ClassificationResult(
            category="Toys", source=ClassificationSource.AI, status=ClassificationStatus.MATCHED
        )
        reused = fresh.model_copy(update={"reused": True})
        keyword = fresh.model_copy(update={"source": ClassificationSource.KEYWORD})

        assert fresh.ai_categorized is True
        assert reused.ai_categorized is False
        assert keyword.ai_categorized is False


class TestImageComparison:
    """Tests for ImageComparison model."""

    def test_needs_update(self):
        assert ImageComparison(added=["a.jpg"]).needs_update is True
        assert ImageComparison(removed=["a.jpg"]).needs_update is True
        assert ImageComparison(unchanged=["a.jpg"]).needs_update is False


class TestImportResults:
    """Tests for ImportResults model."""

    def test_error_sample_within_limit(self):
        results = ImportResults(errors=["Row 1: boom", "Row 2: boom"])
        assert results.error_sample(10) == ["Row 1: boom", "Row 2: boom"]

    def test_error_sample_truncates(self):
        results = ImportResults(errors=[f"Row {i}: boom" for i in range(1, 14)])
        sample = results.error_sample(10)

        assert len(sample) == 11
        assert sample[9] == "Row 10: boom"
        assert sample[-1] == "... and 3 more errors"

    @pytest.mark.parametrize(
        "seconds,expected",
        [
            (0.0, "0.0s"),
            (12.34, "12.3s"),
            (65, "1m 5s"),
            (3723, "1h 2m 3s"),
        ],
    )
    def test_duration_text(self, seconds, expected):
        assert ImportResults(duration_seconds=seconds).duration_text == expected


class TestEvents:
    """Tests for stream event models."""

    def test_log_event_sse(self):
        frame = LogEvent(severity=Severity.SUCCESS, message="Created product: Bingo").to_sse()
        header, data, blank = frame.split("\n", 2)

        assert header == "event: log"
        assert json.loads(data[len("data: "):]) == {"severity": "success", "message": "Created product: Bingo"}
        assert blank == "\n"

    def test_batch_progress_type(self):
        event = BatchProgressEvent(current_batch=1, total_batches=3)
        assert event.type == "batch_progress"

    def test_complete_from_results(self):
        results = ImportResults(
            imported=2,
            updated=1,
            skipped=1,
            errors=[f"Row {i}: boom" for i in range(12)],
            images_queued=4,
            categories_created=3,
            duration_seconds=1.5,
        )
        event = CompleteEvent.from_results(results)

        assert event.type == "complete"
        assert event.imported == 2
        assert event.updated == 1
        assert event.images_queued == 4
        assert event.categories_created == 3
        assert event.duration_text == "1.5s"
        assert len(event.errors) == 11
        assert event.errors[-1] == "... and 2 more errors"
