"""Collaborator interfaces consumed by the import core.

The catalog engine, metadata, asset attachments, background queue and
settings live outside this package. Anything implementing these protocols
can be handed to the reconciler and the stream controller; ``store.LocalCatalog``
is the file-backed implementation used by the CLI and the tests.
"""

from typing import Any, Protocol

from .models import CategoryNode


class CatalogStore(Protocol):
    """Products and the category taxonomy."""

    def find_by_sku(self, sku: str) -> int | None: ...

    def find_by_exact_title(self, title: str) -> int | None: ...

    def create_product(self, fields: dict[str, Any]) -> int: ...

    def update_product(self, product_id: int, fields: dict[str, Any]) -> None: ...

    def set_categories(self, product_id: int, category_ids: list[int]) -> None: ...

    def get_product_categories(self, product_id: int) -> list[CategoryNode]: ...

    def set_tags(self, product_id: int, tags: list[str]) -> None: ...

    def get_category_terms(self) -> list[CategoryNode]: ...

    def find_category(self, name: str, parent: int | None) -> CategoryNode | None:
        """Find a node by name; ``parent=None`` matches any parent."""
        ...

    def create_category(self, name: str, parent: int, slug: str) -> CategoryNode:
        """Create a node, raising ``DuplicateCategoryError`` if it exists."""
        ...

    def count_categories(self) -> int: ...

    def commit(self) -> None:
        """Make every change since the last commit durable."""
        ...


class MetadataStore(Protocol):
    """String-keyed per-product metadata."""

    def get_meta(self, product_id: int, key: str) -> str | None: ...

    def set_meta(self, product_id: int, key: str, value: str) -> None: ...

    def delete_meta(self, product_id: int, key: str) -> None: ...


class AssetService(Protocol):
    """Featured image and gallery attachments."""

    def set_featured_image(self, product_id: int, asset_ref: str) -> None: ...

    def append_gallery_image(self, product_id: int, asset_ref: str) -> None: ...

    def clear_featured_image(self, product_id: int) -> None: ...

    def clear_gallery(self, product_id: int) -> None: ...

    def get_current_image_urls(self, product_id: int) -> list[str]: ...


class TaskQueue(Protocol):
    """Deferred background work."""

    def enqueue(self, task_name: str, payload: dict[str, Any], run_after_delay: float) -> None: ...


class SettingsStore(Protocol):
    """Read-only credentials and flags."""

    def get_classifier_token(self) -> str | None: ...

    def is_ai_enabled(self) -> bool: ...

    def is_skip_ai_reclassify_enabled(self) -> bool: ...

    def get_classifier_url(self) -> str | None:
        """Classifier endpoint, None for the default one."""
        ...
