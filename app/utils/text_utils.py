"""
Text normalization utilities shared by the extraction and geocoding caches.

Both caches are keyed by a normalized form of their input so that trivially
different strings (extra spaces, trailing newlines) map to one entry.
"""

import hashlib
import re
from typing import Optional

_WHITESPACE_RE = re.compile(r"\s+")
_GEORGIAN_RE = re.compile(r"[Ⴀ-ჿ]")
_CYRILLIC_RE = re.compile(r"[Ѐ-ӿ]")


def normalize_text(text: Optional[str]) -> str:
    """
    Trim text and collapse runs of whitespace into single spaces.

    Examples:
        normalize_text("  2 rooms\\n\\n Vake ") -> "2 rooms Vake"
        normalize_text(None) -> ""
    """
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip()


def text_hash(text: Optional[str]) -> str:
    """SHA-256 hex digest of the normalized text"""
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


def normalize_address(address: Optional[str]) -> str:
    """
    Case-fold, trim and collapse whitespace in an address.

    Examples:
        normalize_address("  Vake,   TBILISI ") -> "vake, tbilisi"
    """
    return normalize_text(address).casefold()


def detect_language(text: Optional[str]) -> str:
    """Guess post language from its script: 'ka', 'ru' or 'en'"""
    if not text:
        return "en"
    if _GEORGIAN_RE.search(text):
        return "ka"
    if _CYRILLIC_RE.search(text):
        return "ru"
    return "en"
