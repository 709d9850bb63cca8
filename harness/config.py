"""
Harness configuration.

Values come from the process environment (optionally populated from a .env
file). Defaults mirror the timings the nightly end-to-end run was tuned with.
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

load_dotenv()

DEFAULT_SUBSCRIBER_APP = "pubsub-subscriber"


def normalize_base_url(url: str) -> str:
    """Return url with an http:// scheme and no trailing slash."""
    url = url.strip()
    if url and "://" not in url:
        url = f"http://{url}"
    return url.rstrip("/")


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


@dataclass(frozen=True)
class HarnessConfig:
    publisher_url: str
    subscriber_url: str
    subscriber_app: str = DEFAULT_SUBSCRIBER_APP
    protocols: Tuple[str, ...] = ("http",)

    messages_per_topic: int = 100
    publish_rate_limit_rps: float = 25
    random_offset_max: int = 99

    receive_retries: int = 10
    receive_retry_delay: float = 5.0

    health_check_attempts: int = 60
    health_check_interval: float = 1.0
    publish_health_check_retries: int = 10
    publish_health_check_interval: float = 5.0

    success_settle_delay: float = 5.0
    empty_response_settle_delay: float = 10.0
    redelivery_settle_delay: float = 30.0

    request_timeout: float = 30.0

    def __post_init__(self):
        object.__setattr__(self, "publisher_url", normalize_base_url(self.publisher_url))
        object.__setattr__(self, "subscriber_url", normalize_base_url(self.subscriber_url))
        if not self.protocols:
            raise ValueError("at least one protocol is required")
        if self.messages_per_topic < 1:
            raise ValueError("messages_per_topic must be positive")
        if self.receive_retries < 1:
            raise ValueError("receive_retries must be at least 1")

    @classmethod
    def from_env(cls, publisher_url: Optional[str] = None, subscriber_url: Optional[str] = None) -> "HarnessConfig":
        publisher = publisher_url if publisher_url is not None else os.environ.get("PUBLISHER_URL", "")
        subscriber = subscriber_url if subscriber_url is not None else os.environ.get("SUBSCRIBER_URL", "")
        if not publisher:
            raise ValueError("PUBLISHER_URL is not set")
        protocols = tuple(
            p.strip() for p in os.environ.get("PUBSUB_PROTOCOLS", "http").split(",") if p.strip()
        )
        return cls(
            publisher_url=publisher,
            subscriber_url=subscriber or publisher,
            subscriber_app=os.environ.get("SUBSCRIBER_APP_NAME", DEFAULT_SUBSCRIBER_APP),
            protocols=protocols,
            messages_per_topic=_env_int("MESSAGES_PER_TOPIC", 100),
            publish_rate_limit_rps=_env_float("PUBLISH_RATE_LIMIT_RPS", 25),
            random_offset_max=_env_int("RANDOM_OFFSET_MAX", 99),
            receive_retries=_env_int("RECEIVE_RETRIES", 10),
            receive_retry_delay=_env_float("RECEIVE_RETRY_DELAY", 5.0),
            health_check_attempts=_env_int("HEALTH_CHECK_ATTEMPTS", 60),
            health_check_interval=_env_float("HEALTH_CHECK_INTERVAL", 1.0),
            publish_health_check_retries=_env_int("PUBLISH_HEALTH_CHECK_RETRIES", 10),
            publish_health_check_interval=_env_float("PUBLISH_HEALTH_CHECK_INTERVAL", 5.0),
            success_settle_delay=_env_float("SUCCESS_SETTLE_DELAY", 5.0),
            empty_response_settle_delay=_env_float("EMPTY_RESPONSE_SETTLE_DELAY", 10.0),
            redelivery_settle_delay=_env_float("REDELIVERY_SETTLE_DELAY", 30.0),
            request_timeout=_env_float("REQUEST_TIMEOUT", 30.0),
        )
