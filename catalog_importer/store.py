"""File-backed local catalog implementing the collaborator interfaces."""

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from .models import CategoryNode

logger = logging.getLogger(__name__)


class DuplicateCategoryError(Exception):
    """Raised when a category with the same name and parent already exists."""

    def __init__(self, name: str, parent: int, existing_id: int):
        super().__init__(f"Category '{name}' already exists under parent {parent}")
        self.name = name
        self.parent = parent
        self.existing_id = existing_id


class StoredProduct(BaseModel):
    """A product as persisted by the local catalog."""

    id: int = Field(description="Product identifier")
    title: str = Field(description="Product name")
    description: str = Field(default="")
    short_description: str = Field(default="")
    regular_price: float | None = Field(default=None)
    sku: str = Field(default="")
    status: str = Field(default="publish", description="publish or draft")
    virtual: bool = Field(default=False)
    downloadable: bool = Field(default=False)
    manage_stock: bool = Field(default=False)
    stock_quantity: int | None = Field(default=None)
    stock_status: str = Field(default="instock")
    category_ids: list[int] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    meta: dict[str, str] = Field(default_factory=dict)
    featured_image: str | None = Field(default=None)
    gallery: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class QueuedTask(BaseModel):
    """A background task waiting for a worker."""

    id: str = Field(description="Task identifier")
    name: str = Field(description="Task name, e.g. import_product_image")
    payload: dict[str, Any] = Field(default_factory=dict)
    run_at: datetime = Field(description="Earliest time the task may run")
    queued_at: datetime = Field(default_factory=datetime.now)


class CatalogState(BaseModel):
    """Everything the local catalog persists."""

    version: str = Field(default="1.0")
    updated_at: datetime = Field(default_factory=datetime.now)
    next_product_id: int = Field(default=1)
    next_category_id: int = Field(default=1)
    products: list[StoredProduct] = Field(default_factory=list)
    categories: list[CategoryNode] = Field(default_factory=list)
    tasks: list[QueuedTask] = Field(default_factory=list)

    def save(self, filepath: Path | str) -> None:
        """Save state to a YAML file."""
        filepath = Path(filepath)
        self.updated_at = datetime.now()
        data = self.model_dump(mode="json")
        filepath.parent.mkdir(parents=True, exist_ok=True)
        filepath.write_text(
            yaml.dump(data, allow_unicode=True, default_flow_style=False, sort_keys=False),
            encoding="utf-8",
        )

    @classmethod
    def load(cls, filepath: Path | str) -> "CatalogState":
        """Load state from a YAML file, or start empty."""
        filepath = Path(filepath)
        if not filepath.exists():
            return cls()
        data = yaml.safe_load(filepath.read_text(encoding="utf-8"))
        if data is None:
            return cls()
        return cls.model_validate(data)


def slugify(name: str) -> str:
    """Lowercase slug with runs of non-alphanumerics collapsed to '-'."""
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")
    return slug or "category"


class LocalCatalog:
    """Catalog, metadata, attachments and task queue over one YAML file.

    With ``autosave`` every mutation is written to disk before the call
    returns. Without it, changes are held until ``commit()``; the import
    stream commits once per row. With ``path=None`` the catalog lives in
    memory only.
    """

    def __init__(self, path: Path | str | None = "catalog.yaml", autosave: bool = True):
        self.path = Path(path) if path else None
        self.autosave = autosave
        self.state = CatalogState.load(self.path) if self.path else CatalogState()
        self._dirty = False

    def save(self) -> None:
        """Persist current state."""
        if self.path:
            self.state.save(self.path)
        self._dirty = False

    def commit(self) -> None:
        """Persist changes made since the last save, if any."""
        if self._dirty:
            self.save()

    def _changed(self) -> None:
        self._dirty = True
        if self.autosave:
            self.save()

    def reload(self) -> None:
        """Reload state from file."""
        if self.path:
            self.state = CatalogState.load(self.path)

    # =========================================================================
    # Products
    # =========================================================================

    def find_by_sku(self, sku: str) -> int | None:
        if not sku:
            return None
        for product in self.state.products:
            if product.sku == sku:
                return product.id
        return None

    def find_by_exact_title(self, title: str) -> int | None:
        if not title:
            return None
        for product in self.state.products:
            if product.title == title:
                return product.id
        return None

    def create_product(self, fields: dict[str, Any]) -> int:
        product_id = self.state.next_product_id
        product = StoredProduct(id=product_id, **fields)
        self.state.products.append(product)
        self.state.next_product_id += 1
        self._changed()
        logger.debug(f"Created product {product_id}: {product.title}")
        return product_id

    def update_product(self, product_id: int, fields: dict[str, Any]) -> None:
        product = self._get_product(product_id)
        for key, value in fields.items():
            setattr(product, key, value)
        product.updated_at = datetime.now()
        self._changed()

    def get_product(self, product_id: int) -> StoredProduct | None:
        for product in self.state.products:
            if product.id == product_id:
                return product
        return None

    def _get_product(self, product_id: int) -> StoredProduct:
        product = self.get_product(product_id)
        if product is None:
            raise KeyError(f"Product {product_id} not found")
        return product

    def set_categories(self, product_id: int, category_ids: list[int]) -> None:
        product = self._get_product(product_id)
        product.category_ids = list(category_ids)
        self._changed()

    def get_product_categories(self, product_id: int) -> list[CategoryNode]:
        product = self._get_product(product_id)
        by_id = {node.id: node for node in self.state.categories}
        return [by_id[cid] for cid in product.category_ids if cid in by_id]

    def set_tags(self, product_id: int, tags: list[str]) -> None:
        product = self._get_product(product_id)
        product.tags = list(tags)
        self._changed()

    # =========================================================================
    # Taxonomy
    # =========================================================================

    def get_category_terms(self) -> list[CategoryNode]:
        return list(self.state.categories)

    def find_category(self, name: str, parent: int | None) -> CategoryNode | None:
        for node in self.state.categories:
            if node.name == name and (parent is None or node.parent == parent):
                return node
        return None

    def create_category(self, name: str, parent: int, slug: str) -> CategoryNode:
        existing = self.find_category(name, parent)
        if existing:
            raise DuplicateCategoryError(name, parent, existing.id)

        node = CategoryNode(
            id=self.state.next_category_id,
            name=name,
            parent=parent,
            slug=self._unique_slug(slug or slugify(name)),
        )
        self.state.categories.append(node)
        self.state.next_category_id += 1
        self._changed()
        logger.debug(f"Created category {node.id}: {name} (parent {parent})")
        return node

    def _unique_slug(self, slug: str) -> str:
        taken = {node.slug for node in self.state.categories}
        if slug not in taken:
            return slug
        suffix = 2
        while f"{slug}-{suffix}" in taken:
            suffix += 1
        return f"{slug}-{suffix}"

    def count_categories(self) -> int:
        return len(self.state.categories)

    # =========================================================================
    # Metadata
    # =========================================================================

    def get_meta(self, product_id: int, key: str) -> str | None:
        return self._get_product(product_id).meta.get(key)

    def set_meta(self, product_id: int, key: str, value: str) -> None:
        self._get_product(product_id).meta[key] = value
        self._changed()

    def delete_meta(self, product_id: int, key: str) -> None:
        self._get_product(product_id).meta.pop(key, None)
        self._changed()

    # =========================================================================
    # Attachments
    # =========================================================================

    def set_featured_image(self, product_id: int, asset_ref: str) -> None:
        self._get_product(product_id).featured_image = asset_ref
        self._changed()

    def append_gallery_image(self, product_id: int, asset_ref: str) -> None:
        self._get_product(product_id).gallery.append(asset_ref)
        self._changed()

    def clear_featured_image(self, product_id: int) -> None:
        self._get_product(product_id).featured_image = None
        self._changed()

    def clear_gallery(self, product_id: int) -> None:
        self._get_product(product_id).gallery = []
        self._changed()

    def get_current_image_urls(self, product_id: int) -> list[str]:
        product = self._get_product(product_id)
        urls = [product.featured_image] if product.featured_image else []
        urls.extend(product.gallery)
        return urls

    # =========================================================================
    # Task queue
    # =========================================================================

    def enqueue(self, task_name: str, payload: dict[str, Any], run_after_delay: float) -> None:
        now = datetime.now()
        task = QueuedTask(
            id=f"TASK-{len(self.state.tasks) + 1:05d}",
            name=task_name,
            payload=dict(payload),
            run_at=datetime.fromtimestamp(now.timestamp() + run_after_delay),
            queued_at=now,
        )
        self.state.tasks.append(task)
        self._changed()

    def pending_tasks(self, task_name: str | None = None) -> list[QueuedTask]:
        """Queued tasks, optionally filtered by name, in queue order."""
        return [t for t in self.state.tasks if task_name is None or t.name == task_name]

    # =========================================================================
    # Summary & Reporting
    # =========================================================================

    def get_summary(self) -> dict:
        """Get a summary of the catalog state."""
        return {
            "path": str(self.path) if self.path else None,
            "updated_at": self.state.updated_at.isoformat(),
            "products": len(self.state.products),
            "drafts": sum(1 for p in self.state.products if p.status == "draft"),
            "ai_categorized": sum(
                1 for p in self.state.products if p.meta.get("ai_categorized") == "1"
            ),
            "categories": len(self.state.categories),
            "pending_images": len(self.pending_tasks("import_product_image")),
        }

    def print_status(self) -> str:
        """Get a formatted status string."""
        summary = self.get_summary()
        lines = [
            "=== Local Catalog Status ===",
            f"File: {summary['path'] or 'in-memory'}",
            f"Updated: {summary['updated_at']}",
            "",
            "Products:",
            f"  Total: {summary['products']}",
            f"  Drafts: {summary['drafts']}",
            f"  AI categorized: {summary['ai_categorized']}",
            "",
            f"Categories: {summary['categories']}",
            f"Pending image imports: {summary['pending_images']}",
        ]
        return "\n".join(lines)
