"""Recover a decision object from free-form model text."""

from __future__ import annotations


def extract_first_object(text: str) -> str:
    """
    Return the first brace-balanced `{...}` substring of `text`, or "" if there is none.

    This is a plain brace counter, not a JSON tokenizer: braces inside string literals
    are counted too. Only the first top-level object is returned.
    """
    if not text:
        return ""
    start = text.find("{")
    if start == -1:
        return ""

    depth = 0
    for i in range(start, len(text)):
        ch = text[i]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return ""
