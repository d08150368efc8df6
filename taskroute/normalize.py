"""
Input normalization and fingerprinting.

Both the classifier and the response cache must agree on what "the same
input" means, so the normalization lives here and nowhere else.
"""

from __future__ import annotations

import hashlib
import re

_WHITESPACE = re.compile(r"\s+")

# Separator between an instruction and the content it applies to,
# e.g. "summarize this document: <text>".
_PAYLOAD_SEPARATOR = re.compile(r":\s")
_QUOTED_BLOCK = re.compile(r"[\"“]([^\"”]{1,})[\"”]")


def collapse_whitespace(text: str) -> str:
    """Trim and collapse internal whitespace runs to single spaces."""
    return _WHITESPACE.sub(" ", text).strip()


def normalize_text(text: str) -> str:
    """Lowercase, trim and collapse whitespace."""
    return collapse_whitespace(text).lower()


def fingerprint(text: str) -> str:
    """
    Deterministic cache key for an input.

    Args:
        text: Raw user input

    Returns:
        Hex SHA-256 digest of the normalized text
    """
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


def split_instruction(text: str) -> tuple[str, str]:
    """
    Split an utterance into (instruction head, payload).

    The payload is whatever follows the first ": " separator. Without a
    separator, a trailing quoted block is treated as payload. Otherwise the
    whole text is the head and the payload is empty.
    """
    text = collapse_whitespace(text)
    match = _PAYLOAD_SEPARATOR.search(text)
    if match:
        return text[: match.start()].strip(), text[match.end() :].strip()

    quoted = _QUOTED_BLOCK.search(text)
    if quoted and len(quoted.group(1).split()) > 3:
        head = collapse_whitespace(text[: quoted.start()] + " " + text[quoted.end() :])
        return head, quoted.group(1).strip()

    return text, ""


__all__ = [
    "collapse_whitespace",
    "fingerprint",
    "normalize_text",
    "split_instruction",
]
