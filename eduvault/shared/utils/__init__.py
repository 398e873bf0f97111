"""Shared utilities for the eduvault platform."""
from .pii import (
    configure_pii_salt,
    fingerprint,
    hash_pii,
    log_safe_id,
)
from .clock import Clock, utc_now
from .retry import backoff_delay, call_with_timeout, retry_call

__all__ = [
    "configure_pii_salt",
    "fingerprint",
    "hash_pii",
    "log_safe_id",
    "Clock",
    "utc_now",
    "backoff_delay",
    "call_with_timeout",
    "retry_call",
]
