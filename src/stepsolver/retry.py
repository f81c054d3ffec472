"""Whole-pipeline retry for unparseable model output."""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from .errors import is_parse_failure

logger = logging.getLogger(__name__)

T = TypeVar("T")


def with_parse_retry(fn: Callable[[], T], *, retries: int = 1) -> T:
    """Call ``fn`` and retry it only when it fails with a parse error.

    Any other error propagates immediately. When retries are exhausted the last
    error is re-raised unchanged.
    """

    remaining = max(0, int(retries))
    while True:
        try:
            return fn()
        except Exception as exc:
            if not is_parse_failure(exc) or remaining <= 0:
                raise
            remaining -= 1
            logger.warning("JSON parse failed. Retrying... (%d retries left): %s", remaining, exc)
