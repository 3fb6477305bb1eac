"""Split report bodies into candidate record lines."""

from __future__ import annotations

import re

from ..config import ReportType

_KEY_STRIP = re.compile(rb"[\s,]+")


class LineNormalizer:
    """Turn a raw CSV body into trimmed, non-empty data lines.

    The first line is always treated as the header row and dropped, whatever
    it contains.
    """

    def normalize(self, raw_body: bytes) -> list[bytes]:
        lines: list[bytes] = []
        for index, line in enumerate(raw_body.split(b"\n")):
            if index == 0:
                continue
            line = line.strip()
            if line:
                lines.append(line)
        return lines


def dedup_key(category: ReportType, line: bytes, prefix: str = "") -> bytes:
    """Fingerprint a line for duplicate suppression.

    Whitespace and commas are removed so formatting differences do not
    produce a new key. The category name is part of the key, so identical
    text under two categories never collides.
    """

    fingerprint = _KEY_STRIP.sub(b"", category.value.encode("utf-8") + line)
    return prefix.encode("utf-8") + fingerprint


__all__ = ["LineNormalizer", "dedup_key"]
