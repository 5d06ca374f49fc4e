"""Image set comparison and incremental sync for existing products."""

import json
import logging
import re
from datetime import datetime
from pathlib import PurePosixPath
from urllib.parse import unquote, urlparse

from .interfaces import AssetService, MetadataStore, TaskQueue
from .models import ImageComparison, ImageSyncResult, ImageTask

logger = logging.getLogger(__name__)

IMAGE_TASK = "import_product_image"
IMAGE_URLS_META = "image_urls"
IMAGE_SYNC_DATE_META = "image_sync_date"
DEFAULT_INTERVAL = 5.0

SIZE_SUFFIX = re.compile(r"-\d+x\d+(\.[a-z0-9]+)$", re.IGNORECASE)


def normalize_image_name(url: str) -> str:
    """Comparable name of an image URL.

    Keeps only the last path component, drops a generated thumbnail size
    suffix such as ``-150x150`` before the extension, then lowercases.
    Host, scheme and query string do not matter.

    Args:
        url: Image URL

    Returns:
        Normalized filename
    """
    path = urlparse((url or "").strip()).path
    filename = PurePosixPath(unquote(path)).name
    filename = SIZE_SUFFIX.sub(r"\1", filename)
    return filename.strip().lower()


def _ordered_unique(values: list[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            unique.append(value)
    return unique


class ImageSetReconciler:
    """Decides whether a product's images changed and queues refetches."""

    def __init__(
        self,
        assets: AssetService,
        metadata: MetadataStore,
        queue: TaskQueue,
        interval: float = DEFAULT_INTERVAL,
    ):
        """Initialize reconciler.

        Args:
            assets: Attachment service
            metadata: Per-product metadata
            queue: Background task queue
            interval: Seconds between successive image tasks of one product
        """
        self.assets = assets
        self.metadata = metadata
        self.queue = queue
        self.interval = interval

    def compare(self, current_urls: list[str], desired_urls: list[str]) -> ImageComparison:
        """Diff two URL lists by normalized filename.

        Args:
            current_urls: URLs currently on the product
            desired_urls: URLs from the import

        Returns:
            ImageComparison with added, removed and unchanged names
        """
        current = _ordered_unique([normalize_image_name(u) for u in current_urls])
        desired = _ordered_unique([normalize_image_name(u) for u in desired_urls])
        current_set = set(current)
        desired_set = set(desired)

        return ImageComparison(
            current=current,
            desired=desired,
            added=[name for name in desired if name not in current_set],
            removed=[name for name in current if name not in desired_set],
            unchanged=[name for name in desired if name in current_set],
        )

    def current_urls(self, product_id: int) -> list[str]:
        """Attached image URLs, or the last synced list while fetches are pending."""
        attached = self.assets.get_current_image_urls(product_id)
        if attached:
            return attached
        return self.stored_urls(product_id)

    def stored_urls(self, product_id: int) -> list[str]:
        raw = self.metadata.get_meta(product_id, IMAGE_URLS_META)
        if not raw:
            return []
        try:
            urls = json.loads(raw)
        except ValueError:
            logger.warning(f"Ignoring unreadable stored image list for product {product_id}")
            return []
        return [str(u) for u in urls] if isinstance(urls, list) else []

    def sync(self, product_id: int, desired_urls: list[str]) -> ImageSyncResult:
        """Replace a product's images when the desired set differs.

        Records the desired list and a sync timestamp, clears the featured
        image and gallery, then queues one fetch per URL.

        Args:
            product_id: Existing product
            desired_urls: URLs from the import, first is featured

        Returns:
            ImageSyncResult (``updated=False`` means nothing was touched)
        """
        comparison = self.compare(self.current_urls(product_id), desired_urls)
        if not comparison.needs_update:
            logger.debug(f"Images unchanged for product {product_id}")
            return ImageSyncResult()

        logger.info(
            f"Images changed for product {product_id}: "
            f"+{len(comparison.added)} -{len(comparison.removed)} ={len(comparison.unchanged)}"
        )
        self.remember(product_id, desired_urls)
        self.clear_images(product_id)
        queued = self.queue_images(product_id, desired_urls)
        return ImageSyncResult(updated=True, queued=queued)

    def remember(self, product_id: int, urls: list[str]) -> None:
        """Store the desired URL list and sync time on the product."""
        self.metadata.set_meta(product_id, IMAGE_URLS_META, json.dumps(list(urls)))
        self.metadata.set_meta(product_id, IMAGE_SYNC_DATE_META, datetime.now().isoformat(timespec="seconds"))

    def clear_images(self, product_id: int) -> None:
        """Remove the featured image and the gallery."""
        self.assets.clear_featured_image(product_id)
        self.assets.clear_gallery(product_id)

    def queue_images(self, product_id: int, urls: list[str]) -> int:
        """Queue one fetch-and-attach task per URL, spaced ``interval`` apart.

        The first URL becomes the featured image, the rest gallery entries
        in order.

        Returns:
            Number of tasks queued
        """
        for index, url in enumerate(urls):
            task = ImageTask(product_id=product_id, image_url=url, is_featured=index == 0)
            self.queue.enqueue(IMAGE_TASK, task.model_dump(), index * self.interval)
        logger.debug(f"Queued {len(urls)} image task(s) for product {product_id}")
        return len(urls)

    def get_sync_status(self, product_id: int) -> dict:
        """Stored URLs, last sync date and currently attached URLs."""
        return {
            "stored_urls": self.stored_urls(product_id),
            "last_sync_date": self.metadata.get_meta(product_id, IMAGE_SYNC_DATE_META),
            "current_urls": self.assets.get_current_image_urls(product_id),
        }
