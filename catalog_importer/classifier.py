"""Client for a remote zero-shot classification endpoint."""

import asyncio
import logging
from collections.abc import AsyncGenerator, Callable
from typing import Any

import httpx

from .config import DEFAULT_CLASSIFIER_URL, ClassifierConfig
from .interfaces import SettingsStore
from .models import (
    ClassificationResult,
    ClassificationSource,
    ClassificationStatus,
    LogEntry,
    ProductRecord,
    Severity,
)
from .parser import tag_tokens
from .retry import ITEM_POLICY, WARMUP_POLICY, RetryPolicy, SleepFunc

logger = logging.getLogger(__name__)

WARMUP_TEXT = "Classify this product: sample item"

ReuseLookup = Callable[[ProductRecord], str | None]


def build_input_text(product: ProductRecord) -> str:
    """Instruction string sent as the classifier input."""
    tokens = tag_tokens(product.tags)
    return f"Classify this product: {product.title} ({', '.join(tokens)})"


def _percent(score: float) -> int:
    return int(score * 100 + 0.5)


def _parse_ranking(data: Any) -> list[tuple[str, float]]:
    """Normalize a classifier response into ``[(label, score), ...]`` best first.

    Accepts the list-of-objects shape (``[{"label": ..., "score": ...}]``)
    and the older ``{"labels": [...], "scores": [...]}`` shape.
    """
    pairs: list[tuple[str, float]] = []
    if isinstance(data, list):
        for item in data:
            if isinstance(item, dict) and "label" in item:
                pairs.append((str(item["label"]), float(item.get("score") or 0.0)))
    elif isinstance(data, dict) and isinstance(data.get("labels"), list):
        scores = data.get("scores") or []
        for i, label in enumerate(data["labels"]):
            score = scores[i] if i < len(scores) else 0.0
            pairs.append((str(label), float(score or 0.0)))
    pairs.sort(key=lambda pair: pair[1], reverse=True)
    return pairs


class ZeroShotClassifierClient:
    """Batched, paced client for a cold-starting zero-shot classifier."""

    def __init__(
        self,
        settings: SettingsStore,
        config: ClassifierConfig | None = None,
        url: str = DEFAULT_CLASSIFIER_URL,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFunc = asyncio.sleep,
        warmup_policy: RetryPolicy = WARMUP_POLICY,
        item_policy: RetryPolicy = ITEM_POLICY,
    ):
        """Initialize client.

        Args:
            settings: Credentials and feature flags
            config: Batching and threshold constants
            url: Classification endpoint
            transport: Optional httpx transport (tests pass a MockTransport)
            sleep: Async sleep used for every pause
            warmup_policy: Retry policy of the warmup request
            item_policy: Retry policy of per-item requests
        """
        self.settings = settings
        self.config = config or ClassifierConfig()
        self.url = url
        self.transport = transport
        self.sleep = sleep
        self.warmup_policy = warmup_policy
        self.item_policy = item_policy
        self.warmed_up = False
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "ZeroShotClassifierClient":
        """Async context manager entry."""
        token = self.settings.get_classifier_token() or ""
        self._client = httpx.AsyncClient(
            timeout=self.config.request_timeout,
            transport=self.transport,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def available(self) -> bool:
        """AI is switched on and a token is configured."""
        return self.settings.is_ai_enabled() and bool(self.settings.get_classifier_token())

    @property
    def batch_size(self) -> int:
        return self.config.batch_size

    def total_batches(self, count: int) -> int:
        return (count + self.batch_size - 1) // self.batch_size

    async def _post(self, payload: dict, timeout: float) -> httpx.Response:
        if not self._client:
            raise RuntimeError("Client not started. Use async context manager.")
        return await self._client.post(self.url, json=payload, timeout=timeout)

    @staticmethod
    def _payload(text: str, labels: list[str]) -> dict:
        return {
            "inputs": text,
            "parameters": {"candidate_labels": labels, "multi_label": False},
        }

    async def warmup(self, category_names: list[str]) -> bool:
        """Wake the remote model before the first batch.

        Sends a tiny synthetic request with at most the first few labels and
        waits out the model loading. Failure is not fatal; the run just
        proceeds with a possibly cold model.

        Args:
            category_names: Candidate labels

        Returns:
            True if the model answered successfully
        """
        if not self.available or not category_names:
            return False

        labels = category_names[: self.config.warmup_labels]
        payload = self._payload(WARMUP_TEXT, labels)
        outcome = await self.warmup_policy.execute(
            lambda: self._post(payload, self.config.warmup_timeout),
            sleep=self.sleep,
            label="Classifier warmup",
        )
        self.warmed_up = True

        if outcome.ok:
            logger.info(f"Classifier warm after {outcome.attempts} attempt(s)")
            return True

        logger.warning(f"Classifier warmup gave up ({outcome.error}), continuing anyway")
        return False

    async def classify(self, product: ProductRecord, category_names: list[str]) -> ClassificationResult:
        """Classify one product against the candidate labels.

        Args:
            product: Parsed product
            category_names: Candidate labels, sent unmodified

        Returns:
            A matched result when the top score reaches the confidence
            threshold, otherwise an unresolved one
        """
        if not self.available or not category_names:
            return ClassificationResult.not_attempted(ClassificationSource.AI)

        payload = self._payload(build_input_text(product), list(category_names))
        outcome = await self.item_policy.execute(
            lambda: self._post(payload, self.config.request_timeout),
            sleep=self.sleep,
            label=f"Classify '{product.title}'",
        )

        if not outcome.ok:
            message = f"AI request failed for '{product.title}': {outcome.error}"
            logger.error(message)
            return ClassificationResult.unresolved(
                ClassificationSource.AI,
                log=[LogEntry(severity=Severity.WARNING, message=f"{message}, using keyword matching")],
                error=message,
            )

        try:
            ranking = _parse_ranking(outcome.response.json())
        except (ValueError, TypeError) as e:
            ranking = []
            logger.error(f"Unreadable classifier response: {e}")

        if not ranking:
            message = f"AI returned an invalid response for '{product.title}'"
            logger.error(f"{message}: {outcome.response.text[:200]}")
            return ClassificationResult.unresolved(
                ClassificationSource.AI,
                log=[LogEntry(severity=Severity.WARNING, message=message)],
                error=message,
            )

        best_label, best_score = ranking[0]
        top_scores = ", ".join(
            f"{label}: {_percent(score)}%" for label, score in ranking[: self.config.reported_scores]
        )

        if best_score >= self.config.min_confidence:
            logger.info(f"AI matched '{product.title}' to '{best_label}' ({best_score:.3f})")
            return ClassificationResult(
                category=best_label,
                score=best_score,
                source=ClassificationSource.AI,
                status=ClassificationStatus.MATCHED,
                log=[
                    LogEntry(severity=Severity.AI, message="AI analyzed product tags and title"),
                    LogEntry(severity=Severity.AI, message=f"AI scores: {top_scores}"),
                    LogEntry(
                        severity=Severity.SUCCESS,
                        message=f"Selected category: {best_label} ({_percent(best_score)}% confidence)",
                    ),
                ],
            )

        return ClassificationResult(
            score=best_score,
            source=ClassificationSource.AI,
            status=ClassificationStatus.UNRESOLVED,
            log=[LogEntry(severity=Severity.AI, message=f"AI scores too low: {top_scores}")],
        )

    def _reused(self, product: ProductRecord, reuse_lookup: ReuseLookup | None) -> ClassificationResult | None:
        """Prior AI category of a matching existing product, if reuse is on.

        A failing lookup yields an unresolved result carrying ``error``.
        """
        if reuse_lookup is None or not self.settings.is_skip_ai_reclassify_enabled():
            return None
        try:
            category = reuse_lookup(product)
        except Exception as e:
            message = f"Prior category lookup failed for '{product.title}': {e}"
            logger.error(message)
            return ClassificationResult.unresolved(
                ClassificationSource.AI,
                log=[LogEntry(severity=Severity.WARNING, message=f"{message}, using keyword matching")],
                error=message,
            )
        if not category:
            return None
        return ClassificationResult(
            category=category,
            source=ClassificationSource.AI,
            status=ClassificationStatus.MATCHED,
            reused=True,
            log=[
                LogEntry(
                    severity=Severity.AI,
                    message=f"Already AI-categorized, keeping: {category}",
                )
            ],
        )

    async def iter_batch(
        self,
        products: list[ProductRecord],
        category_names: list[str],
        start_index: int = 0,
        reuse_lookup: ReuseLookup | None = None,
    ) -> AsyncGenerator[tuple[int, ClassificationResult], None]:
        """Classify one batch, yielding each result as soon as it is ready.

        Yields:
            Tuple of (index, result), index counted from ``start_index``
        """
        called = False
        for offset, product in enumerate(products):
            index = start_index + offset

            reused = self._reused(product, reuse_lookup)
            if reused is not None:
                yield index, reused
                continue

            if not self.available or not category_names:
                yield index, ClassificationResult.not_attempted(ClassificationSource.AI)
                continue

            if called:
                await self.sleep(self.config.item_delay)
            called = True
            yield index, await self.classify(product, category_names)

    async def pause_between_batches(self) -> None:
        await self.sleep(self.config.batch_pause)

    async def classify_batch(
        self,
        products: list[ProductRecord],
        category_names: list[str],
        reuse_lookup: ReuseLookup | None = None,
    ) -> dict[int, ClassificationResult]:
        """Classify every product in fixed-size batches.

        Warms the model up first, paces items within a batch and pauses
        between batches. Unavailable AI or no labels gives ``not_attempted``
        for every index.

        Args:
            products: Products in file order
            category_names: Candidate labels
            reuse_lookup: Returns a prior AI category for a product, or None

        Returns:
            Dictionary of product index -> ClassificationResult
        """
        results: dict[int, ClassificationResult] = {}
        if not self.available or not category_names:
            for index in range(len(products)):
                results[index] = ClassificationResult.not_attempted(ClassificationSource.AI)
            return results

        if not self.warmed_up:
            await self.warmup(category_names)

        for start in range(0, len(products), self.batch_size):
            if start > 0:
                await self.pause_between_batches()
            batch = products[start:start + self.batch_size]
            async for index, result in self.iter_batch(batch, category_names, start, reuse_lookup):
                results[index] = result

        return results
