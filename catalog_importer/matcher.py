"""Deterministic keyword scoring against existing categories."""

import logging
import re

from .models import (
    CategoryNode,
    ClassificationResult,
    ClassificationSource,
    ClassificationStatus,
    LogEntry,
    Severity,
)
from .parser import tag_tokens

logger = logging.getLogger(__name__)

FULL_NAME_SCORE = 10
WORD_SCORE = 2
EXACT_TAG_SCORE = 15
PARTIAL_TAG_SCORE = 5
MIN_WORD_LENGTH = 3
MATCH_THRESHOLD = 2

CATEGORY_WORD_SPLIT = re.compile(r"[\s&,]+")


class KeywordCategoryMatcher:
    """Scores candidate categories by keyword overlap with a product's title and tags."""

    def __init__(self, default_slug: str = "uncategorized"):
        """Initialize matcher.

        Args:
            default_slug: Slug of the catch-all category, never matched
        """
        self.default_slug = default_slug

    def match(self, tags: list[str], title: str, candidates: list[CategoryNode]) -> ClassificationResult:
        """Pick the best-scoring candidate category.

        Scoring per candidate: +10 when the whole name is in the search text,
        +2 per name word of 3+ characters found in it, and per tag +15 for an
        exact name match or else +5 when tag and name contain one another.
        The first candidate with the highest score wins; scores below 2 are
        not a match.

        Args:
            tags: Product tags as parsed from the CSV
            title: Product title
            candidates: Existing categories

        Returns:
            ClassificationResult with the raw score and one log entry
        """
        names = self.candidate_names(candidates)
        search_text = self._search_text(tags, title)
        lowered_tags = [tag.lower() for tag in tags]

        best_match = ""
        best_score = 0
        for name in names:
            score = self._score(name.lower(), search_text, lowered_tags)
            if score > best_score:
                best_score = score
                best_match = name

        if best_score >= MATCH_THRESHOLD:
            logger.debug(f"Keyword match for '{title}': {best_match} ({best_score})")
            return ClassificationResult(
                category=best_match,
                score=float(best_score),
                source=ClassificationSource.KEYWORD,
                status=ClassificationStatus.MATCHED,
                log=[
                    LogEntry(
                        severity=Severity.INFO,
                        message=f"Keyword matching found: {best_match} (score: {best_score})",
                    )
                ],
            )

        return ClassificationResult(
            score=float(best_score),
            source=ClassificationSource.KEYWORD,
            status=ClassificationStatus.UNRESOLVED,
            log=[LogEntry(severity=Severity.WARNING, message="No category match found")],
        )

    def candidate_names(self, candidates: list[CategoryNode]) -> list[str]:
        """Display names of matchable candidates, first occurrence of each name kept."""
        names: list[str] = []
        for node in candidates:
            if node.slug == self.default_slug:
                continue
            if node.name not in names:
                names.append(node.name)
        return names

    def _search_text(self, tags: list[str], title: str) -> str:
        tokens = tag_tokens(tags, lowercase=True)
        return f"{title} {' '.join(tags)} {' '.join(tokens)}".lower()

    def _score(self, name: str, search_text: str, lowered_tags: list[str]) -> int:
        score = 0

        if name in search_text:
            score += FULL_NAME_SCORE

        for word in CATEGORY_WORD_SPLIT.split(name):
            if len(word) >= MIN_WORD_LENGTH and word in search_text:
                score += WORD_SCORE

        for tag in lowered_tags:
            if tag == name:
                score += EXACT_TAG_SCORE
            elif name in tag or tag in name:
                score += PARTIAL_TAG_SCORE

        return score
