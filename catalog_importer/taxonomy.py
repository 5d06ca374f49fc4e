"""Resolve hierarchical category paths into taxonomy node ids."""

import logging

from .interfaces import CatalogStore
from .store import DuplicateCategoryError, slugify

logger = logging.getLogger(__name__)

HIERARCHY_SEPARATOR = " > "


def split_taxonomy_path(raw: str) -> list[str]:
    """Split a category path into trimmed, non-empty segments.

    ``" / "``, ``">"`` and ``" > "`` are all hierarchy separators, so
    ``"A / B"``, ``"A>B"`` and ``" A > B "`` all give ``["A", "B"]``.
    A bare ``"/"`` without surrounding spaces is part of the name.
    """
    path = (raw or "").strip()
    if not path:
        return []
    path = path.replace(" / ", ">")
    return [segment.strip() for segment in path.split(">") if segment.strip()]


def normalize_taxonomy_path(raw: str) -> str:
    """Canonical ``"A > B > C"`` form of a category path."""
    return HIERARCHY_SEPARATOR.join(split_taxonomy_path(raw))


class TaxonomyPathResolver:
    """Walks a category path root to leaf, reusing or creating nodes."""

    def __init__(self, catalog: CatalogStore):
        self.catalog = catalog

    def resolve(self, path: str, create_missing: bool = True) -> list[int]:
        """Resolve a path to the id of its deepest node.

        The first segment matches an existing node of that name anywhere in
        the tree; each later segment must sit under the node resolved before
        it. Missing nodes are created when ``create_missing`` is set and
        skipped otherwise. A creation that collides with an existing node
        resolves to that node.

        Args:
            path: Raw path such as "Home & Living > Furniture > Chairs"
            create_missing: Create nodes that do not exist yet

        Returns:
            ``[deepest_id]``, or ``[]`` when nothing resolved. Ancestors are
            left out so a product is never assigned to several levels at once.
        """
        segments = split_taxonomy_path(path)
        if not segments:
            return []

        resolved: list[int] = []
        parent_id = 0

        for name in segments:
            lookup_parent = parent_id if parent_id > 0 else None
            existing = self.catalog.find_category(name, lookup_parent)

            if existing:
                parent_id = existing.id
                resolved.append(existing.id)
                continue

            if not create_missing:
                logger.debug(f"Category '{name}' not found, skipping segment")
                continue

            node_id = self._create(name, parent_id)
            if node_id is not None:
                parent_id = node_id
                resolved.append(node_id)

        return [resolved[-1]] if resolved else []

    def _create(self, name: str, parent_id: int) -> int | None:
        """Create a node, treating "already exists" as success."""
        try:
            node = self.catalog.create_category(name, parent_id, slugify(name))
        except DuplicateCategoryError as e:
            logger.info(f"Category '{name}' already exists, reusing {e.existing_id}")
            return e.existing_id
        except Exception as e:
            logger.error(f"Failed to create category '{name}': {e}")
            return None

        logger.info(f"Created category '{name}' (id {node.id}, parent {parent_id})")
        return node.id
