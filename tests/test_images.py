"""Tests for image set comparison and sync."""

import json

import pytest

from catalog_importer.images import (
    IMAGE_SYNC_DATE_META,
    IMAGE_TASK,
    IMAGE_URLS_META,
    ImageSetReconciler,
    normalize_image_name,
)


@pytest.fixture
def product_id(catalog):
    return catalog.create_product({"title": "Bingo"})


@pytest.fixture
def images(catalog):
    return ImageSetReconciler(catalog, catalog, catalog)


class TestNormalizeImageName:
    """Tests for filename normalization."""

    def test_query_string_ignored(self):
        assert normalize_image_name("https://x/a/Photo.JPG?v=2") == "photo.jpg"

    def test_size_suffix_removed(self):
        assert normalize_image_name("https://cdn/wp/photo-150x150.jpg") == normalize_image_name("https://x/photo.jpg")

    def test_host_ignored(self):
        assert normalize_image_name("https://a.com/img/1.png") == normalize_image_name("http://b.org/other/1.png")

    def test_encoded_name(self):
        assert normalize_image_name("https://x/my%20photo.jpg") == "my photo.jpg"


class TestCompare:
    """Tests for ImageSetReconciler.compare."""

    def test_diff(self, images):
        comparison = images.compare(
            ["https://x/a.jpg", "https://x/b-300x300.jpg"],
            ["https://y/b.jpg?x=1", "https://y/c.jpg"],
        )

        assert comparison.added == ["c.jpg"]
        assert comparison.removed == ["a.jpg"]
        assert comparison.unchanged == ["b.jpg"]
        assert comparison.needs_update is True
        assert set(comparison.added).isdisjoint(comparison.removed)

    def test_same_set_no_update(self, images):
        comparison = images.compare(["https://x/a.jpg", "https://x/b.jpg"], ["https://y/b.jpg", "https://y/a.jpg"])
        assert comparison.needs_update is False
        assert sorted(comparison.unchanged) == ["a.jpg", "b.jpg"]

    def test_duplicates_collapsed(self, images):
        comparison = images.compare([], ["https://x/a.jpg", "https://x/a.jpg?v=2"])
        assert comparison.added == ["a.jpg"]


class TestSync:
    """Tests for ImageSetReconciler.sync."""

    def test_first_sync_queues_everything(self, images, catalog, product_id):
        urls = ["https://x/1.jpg", "https://x/2.jpg", "https://x/3.jpg"]
        result = images.sync(product_id, urls)

        assert result.updated is True
        assert result.queued == len(urls)

        tasks = catalog.pending_tasks(IMAGE_TASK)
        assert [task.payload["image_url"] for task in tasks] == urls
        assert [task.payload["is_featured"] for task in tasks] == [True, False, False]
        delays = [(task.run_at - task.queued_at).total_seconds() for task in tasks]
        assert delays == pytest.approx([0, 5, 10], abs=0.01)

    def test_records_metadata(self, images, catalog, product_id):
        images.sync(product_id, ["https://x/1.jpg"])

        assert json.loads(catalog.get_meta(product_id, IMAGE_URLS_META)) == ["https://x/1.jpg"]
        assert catalog.get_meta(product_id, IMAGE_SYNC_DATE_META)

    def test_resync_same_set_is_noop(self, images, catalog, product_id):
        urls = ["https://x/1.jpg", "https://x/2.jpg"]
        images.sync(product_id, urls)
        result = images.sync(product_id, ["https://cdn/1-150x150.jpg", "https://cdn/2.jpg?v=3"])

        assert result.updated is False
        assert result.queued == 0
        assert len(catalog.pending_tasks(IMAGE_TASK)) == 2

    def test_changed_set_clears_attached(self, images, catalog, product_id):
        catalog.set_featured_image(product_id, "https://x/old.jpg")
        catalog.append_gallery_image(product_id, "https://x/old2.jpg")

        result = images.sync(product_id, ["https://x/new.jpg"])

        assert result.updated is True
        assert catalog.get_current_image_urls(product_id) == []
        assert catalog.pending_tasks(IMAGE_TASK)[0].payload == {
            "product_id": product_id,
            "image_url": "https://x/new.jpg",
            "is_featured": True,
        }

    def test_attached_images_compared(self, images, catalog, product_id):
        catalog.set_featured_image(product_id, "https://shop/uploads/1-300x300.jpg")
        result = images.sync(product_id, ["https://x/1.jpg"])
        assert result.updated is False

    def test_custom_interval(self, catalog, product_id):
        reconciler = ImageSetReconciler(catalog, catalog, catalog, interval=2)
        reconciler.queue_images(product_id, ["https://x/1.jpg", "https://x/2.jpg"])
        tasks = catalog.pending_tasks(IMAGE_TASK)
        delays = [(task.run_at - task.queued_at).total_seconds() for task in tasks]
        assert delays == pytest.approx([0, 2], abs=0.01)


class TestSyncStatus:
    """Tests for sync status reporting."""

    def test_status(self, images, catalog, product_id):
        images.sync(product_id, ["https://x/1.jpg"])
        status = images.get_sync_status(product_id)

        assert status["stored_urls"] == ["https://x/1.jpg"]
        assert status["last_sync_date"] is not None
        assert status["current_urls"] == []

    def test_unreadable_stored_list(self, images, catalog, product_id):
        catalog.set_meta(product_id, IMAGE_URLS_META, "not json")
        assert images.stored_urls(product_id) == []
