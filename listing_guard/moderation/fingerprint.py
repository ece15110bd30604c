"""Content-addressed fingerprints for publish payloads.

The same fingerprint keys the moderation decision cache and detects
idempotency-key reuse with different content.
"""

from __future__ import annotations

import hashlib
from typing import Iterable


def normalize_text(value: str) -> str:
    """Lowercase, trim and collapse whitespace runs to single spaces."""
    return " ".join(value.lower().split())


def _image_hash(ref: str) -> str:
    return hashlib.sha256(ref.strip().lower().encode("utf-8")).hexdigest()


def build_content_fingerprint(title: str, description: str, image_refs: Iterable[str]) -> str:
    """Return a stable sha256 hex digest for listing content.

    Image order and text case/whitespace never change the result; blank
    image references are ignored.
    """
    hashes = sorted(_image_hash(ref) for ref in image_refs if ref and ref.strip())
    base = "\n".join([normalize_text(title), normalize_text(description), "\n".join(hashes)])
    return hashlib.sha256(base.encode("utf-8")).hexdigest()
