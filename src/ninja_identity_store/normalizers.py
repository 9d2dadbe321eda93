"""Lookup normalizers producing the canonical names used for uniqueness and lookups."""

from __future__ import annotations

import unicodedata
from typing import Protocol, runtime_checkable


@runtime_checkable
class LookupNormalizer(Protocol):
    """Protocol for pluggable name/email canonicalisation."""

    def normalize_name(self, name: str | None) -> str | None: ...

    def normalize_email(self, email: str | None) -> str | None: ...


class UpperInvariantLookupNormalizer:
    """Default normalizer: NFKC-normalise, then upper-case."""

    def normalize_name(self, name: str | None) -> str | None:
        if name is None:
            return None
        return unicodedata.normalize("NFKC", name).upper()

    def normalize_email(self, email: str | None) -> str | None:
        return self.normalize_name(email)
