"""Utility functions for srdrive.

General-purpose helpers: hashing, provenance, timing.
"""

from __future__ import annotations

import hashlib
import logging
import subprocess
import time
from contextlib import contextmanager
from typing import Generator, Iterable, Tuple

logger = logging.getLogger(__name__)


def keys_hash(keys: Iterable[Tuple]) -> str:
    """SHA-256 of a sequence of parameter tuples (order-independent).

    Floats are hashed through repr() so equal values always give the
    same digest.
    """
    h = hashlib.sha256()
    for key in sorted(keys):
        h.update(repr(key).encode('utf-8'))
        h.update(b'\n')
    return h.hexdigest()


def get_git_hash() -> str:
    """Return the current git commit hash, or 'unknown' if not in a repo."""
    try:
        result = subprocess.run(
            ['git', 'rev-parse', 'HEAD'],
            capture_output=True, text=True, timeout=5,
        )
        return result.stdout.strip() if result.returncode == 0 else 'unknown'
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return 'unknown'


@contextmanager
def timer(label: str = "") -> Generator[None, None, None]:
    """Simple context-manager timer. Logs elapsed time on exit."""
    start = time.perf_counter()
    yield
    elapsed = time.perf_counter() - start
    logger.info("[%s] %.3fs", label or "elapsed", elapsed)
