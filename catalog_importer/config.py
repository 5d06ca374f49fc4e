"""Settings and tunables for the catalog importer."""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_CLASSIFIER_URL = (
    "https://router.huggingface.co/hf-inference/models/facebook/bart-large-mnli"
)

_TRUE_VALUES = ("1", "true", "yes", "on")


def _get_bool_env(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


class ImporterSettings(BaseModel):
    """Read-only credentials and feature flags.

    Implements the settings-store interface consumed by the classifier
    client and the stream controller.
    """

    classifier_token: str | None = Field(default=None, description="Remote classifier API token")
    ai_enabled: bool = Field(default=False, description="Use the remote classifier")
    skip_ai_reclassify: bool = Field(default=False, description="Reuse prior AI categories")
    classifier_url: str = Field(default=DEFAULT_CLASSIFIER_URL)

    @classmethod
    def from_env(cls, env_file: str | None = None) -> "ImporterSettings":
        """Build settings from the environment (and a .env file if present)."""
        load_dotenv(env_file)
        token = os.getenv("CLASSIFIER_API_TOKEN") or os.getenv("HF_API_TOKEN")
        return cls(
            classifier_token=token.strip() if token and token.strip() else None,
            ai_enabled=_get_bool_env("USE_AI_CATEGORIZATION"),
            skip_ai_reclassify=_get_bool_env("SKIP_AI_RECLASSIFY"),
            classifier_url=os.getenv("CLASSIFIER_URL", DEFAULT_CLASSIFIER_URL),
        )

    def get_classifier_token(self) -> str | None:
        return self.classifier_token

    def is_ai_enabled(self) -> bool:
        return self.ai_enabled

    def is_skip_ai_reclassify_enabled(self) -> bool:
        return self.skip_ai_reclassify

    def get_classifier_url(self) -> str | None:
        return self.classifier_url


class ClassifierConfig(BaseModel):
    """Batching, pacing and acceptance constants for the zero-shot classifier."""

    batch_size: int = Field(default=2, ge=1, description="Items per classification batch")
    request_timeout: float = Field(default=30.0, description="Per-call timeout in seconds")
    warmup_timeout: float = Field(default=60.0, description="Warmup call timeout in seconds")
    item_delay: float = Field(default=1.0, description="Pause between items in a batch")
    batch_pause: float = Field(default=2.0, description="Pause between batches")
    min_confidence: float = Field(default=0.20, description="Lowest accepted top score")
    warmup_labels: int = Field(default=3, description="Labels sent with the warmup request")
    reported_scores: int = Field(default=3, description="Top scores written to the log")
