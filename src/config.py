"""Application configuration.

All tunables live on a single dataclass so that algorithmic code never reads
the environment directly. ``AppConfig.from_env()`` loads a ``.env`` file (if
present) and then reads ``PATHREC_*`` variables.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Defaults
DEFAULT_DATABASE_URL = "sqlite:///pathrec.db"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_MAX_BUTTONS = 15
MAX_BUTTONS_LIMIT = 30

EMBEDDING_PROVIDERS = ("openai", "hashing")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AppConfig:
    """Runtime configuration for the API, the pipeline and the job worker.

    Attributes:
        database_url: SQLAlchemy database URL.
        embedding_provider: "openai" for the hosted model, "hashing" for the
            offline scikit-learn provider.
        embedding_model: Model identifier sent to the provider and stored on
            every embedding.
        openai_api_key: API key for the hosted provider.
        embed_requests_per_minute: Token bucket rate for embedding calls.
        embed_retry_max: Retries on 429/5xx before giving up on one text.
        embed_backoff_base_s: Base delay for exponential backoff.
        include_product_sample: Append product titles to the embedding text.
        default_max_buttons: Edge cap used when a shop has no settings row.
        max_buttons_limit: Upper bound accepted for ``max_buttons``.
        threshold_percentile: Percentile of a source's candidate scores used
            as the basis of its adaptive threshold.
        threshold_multiplier: Factor applied to that percentile.
        threshold_floor: Lower clamp of the adaptive threshold.
        threshold_ceiling: Upper clamp of the adaptive threshold.
        poll_interval_s: Worker sleep when the queue is empty.
        error_backoff_s: Worker sleep after a loop-level error.
        run_worker: Start the worker loop inside the API process.
        billing_bypass: Grant every entitlement (development stores).
        log_level: Root log level.
        recommendation_cache_size: Entries in the storefront response cache.
        recommendation_max_age_s: Cache-Control max-age on storefront responses.
    """

    database_url: str = DEFAULT_DATABASE_URL
    embedding_provider: str = "openai"
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    openai_api_key: Optional[str] = None
    embed_requests_per_minute: int = 3000
    embed_retry_max: int = 3
    embed_backoff_base_s: float = 0.5
    include_product_sample: bool = False
    default_max_buttons: int = DEFAULT_MAX_BUTTONS
    max_buttons_limit: int = MAX_BUTTONS_LIMIT
    threshold_percentile: float = 75.0
    threshold_multiplier: float = 0.7
    threshold_floor: float = 0.2
    threshold_ceiling: float = 0.85
    poll_interval_s: float = 5.0
    error_backoff_s: float = 10.0
    run_worker: bool = False
    billing_bypass: bool = False
    log_level: str = "INFO"
    recommendation_cache_size: int = 1024
    recommendation_max_age_s: int = 300

    def __post_init__(self) -> None:
        if self.embedding_provider not in EMBEDDING_PROVIDERS:
            raise ValueError(
                f"embedding_provider must be one of {EMBEDDING_PROVIDERS}, "
                f"got {self.embedding_provider!r}"
            )
        if not 0 <= self.threshold_percentile <= 100:
            raise ValueError("threshold_percentile must be within [0, 100]")
        if self.threshold_floor > self.threshold_ceiling:
            raise ValueError("threshold_floor must not exceed threshold_ceiling")
        if not 1 <= self.default_max_buttons <= self.max_buttons_limit:
            raise ValueError(
                f"default_max_buttons must be within [1, {self.max_buttons_limit}]"
            )
        if self.embed_requests_per_minute <= 0:
            raise ValueError("embed_requests_per_minute must be positive")
        if self.embed_retry_max < 0:
            raise ValueError("embed_retry_max must not be negative")

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Build a config from the process environment (and ``.env``)."""
        load_dotenv()
        defaults = cls()
        return cls(
            database_url=os.getenv("PATHREC_DATABASE_URL", defaults.database_url),
            embedding_provider=os.getenv(
                "PATHREC_EMBEDDING_PROVIDER", defaults.embedding_provider
            ),
            embedding_model=os.getenv(
                "PATHREC_EMBEDDING_MODEL", defaults.embedding_model
            ),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            embed_requests_per_minute=int(
                os.getenv(
                    "PATHREC_EMBED_RPM", str(defaults.embed_requests_per_minute)
                )
            ),
            embed_retry_max=int(
                os.getenv("PATHREC_EMBED_RETRY_MAX", str(defaults.embed_retry_max))
            ),
            embed_backoff_base_s=float(
                os.getenv(
                    "PATHREC_EMBED_BACKOFF_BASE_S", str(defaults.embed_backoff_base_s)
                )
            ),
            include_product_sample=_env_bool(
                "PATHREC_INCLUDE_PRODUCT_SAMPLE", defaults.include_product_sample
            ),
            default_max_buttons=int(
                os.getenv(
                    "PATHREC_DEFAULT_MAX_BUTTONS", str(defaults.default_max_buttons)
                )
            ),
            threshold_percentile=float(
                os.getenv(
                    "PATHREC_THRESHOLD_PERCENTILE", str(defaults.threshold_percentile)
                )
            ),
            threshold_multiplier=float(
                os.getenv(
                    "PATHREC_THRESHOLD_MULTIPLIER", str(defaults.threshold_multiplier)
                )
            ),
            threshold_floor=float(
                os.getenv("PATHREC_THRESHOLD_FLOOR", str(defaults.threshold_floor))
            ),
            threshold_ceiling=float(
                os.getenv("PATHREC_THRESHOLD_CEILING", str(defaults.threshold_ceiling))
            ),
            poll_interval_s=float(
                os.getenv("PATHREC_POLL_INTERVAL_S", str(defaults.poll_interval_s))
            ),
            error_backoff_s=float(
                os.getenv("PATHREC_ERROR_BACKOFF_S", str(defaults.error_backoff_s))
            ),
            run_worker=_env_bool("PATHREC_RUN_WORKER", defaults.run_worker),
            billing_bypass=_env_bool("PATHREC_BILLING_BYPASS", defaults.billing_bypass),
            log_level=os.getenv("PATHREC_LOG_LEVEL", defaults.log_level),
            recommendation_cache_size=int(
                os.getenv(
                    "PATHREC_RECOMMENDATION_CACHE_SIZE",
                    str(defaults.recommendation_cache_size),
                )
            ),
            recommendation_max_age_s=int(
                os.getenv(
                    "PATHREC_RECOMMENDATION_MAX_AGE_S",
                    str(defaults.recommendation_max_age_s),
                )
            ),
        )
