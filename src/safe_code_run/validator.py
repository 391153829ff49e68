"""Static pre-execution checks for submitted code.

This is a cheap textual gate that turns away obvious escape attempts before a
worker process is started. It is not the isolation boundary: the capability
table built in `environment.py` and the worker process are.
"""

from __future__ import annotations

import re
from typing import Sequence

from .policy import DEFAULT_FORBIDDEN_KEYWORDS
from .types import ALLOWED, Rejected, SafetyVerdict

_LOOP_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"\bwhile(?:\s*\(\s*(?:true|1)\s*\)|\s+(?:true|1)\s*:)", re.IGNORECASE),
        "Infinite while loop detected",
    ),
    (
        re.compile(r"\bfor\s*\(\s*;\s*(?:true\s*)?;\s*\)", re.IGNORECASE),
        "Infinite for loop detected",
    ),
    (
        re.compile(r"\bin\s+iter\s*\(\s*int\s*,"),
        "Infinite for loop detected",
    ),
)

_SUSPICIOUS_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"['\"]\s*\+\s*['\"]"), "String concatenation to access globals"),
    (re.compile(r"\[\s*['\"][A-Za-z_][A-Za-z0-9_]*['\"]\s*\]"), "Dynamic property access"),
    (re.compile(r"\b(?:eval|exec)\s*\(", re.IGNORECASE), "Dynamic code evaluation"),
    (
        re.compile(
            r"(?:\bnew\s+)?\b(?:Function|FunctionType|LambdaType|CodeType)\s*\(",
            re.IGNORECASE,
        ),
        "Function constructor",
    ),
    (re.compile(r"\b(?:constructor|__new__)\s*\(", re.IGNORECASE), "Constructor access"),
    (
        re.compile(r"\b(?:prototype|__mro__|__bases__)\s*\[", re.IGNORECASE),
        "Class hierarchy manipulation",
    ),
    (
        re.compile(
            r"__proto__|\.\s*(?:constructor|__class__|__base__|__subclasses__)",
            re.IGNORECASE,
        ),
        "Class hierarchy access",
    ),
)


def _keyword_patterns(keywords: Sequence[str]) -> list[tuple[str, re.Pattern[str]]]:
    """Compile whole-word, case-insensitive matchers in denylist order.

    Example:
        ```python
        patterns = _keyword_patterns(["os", "eval"])
        ```
    """
    return [(word, re.compile(rf"\b{re.escape(word)}\b", re.IGNORECASE)) for word in keywords]


_DEFAULT_KEYWORD_PATTERNS = _keyword_patterns(DEFAULT_FORBIDDEN_KEYWORDS)


def find_forbidden_keyword(code: str, forbidden_keywords: Sequence[str] | None = None) -> str | None:
    """Return the first denylisted word present in `code`, if any.

    Words are matched anywhere in the text, comments and string literals
    included.

    Example:
        ```python
        assert find_forbidden_keyword("import os") == "os"
        ```
    """
    patterns = (
        _DEFAULT_KEYWORD_PATTERNS
        if forbidden_keywords is None
        else _keyword_patterns(forbidden_keywords)
    )
    for word, pattern in patterns:
        if pattern.search(code):
            return word
    return None


def find_structural_pattern(code: str) -> str | None:
    """Return the rejection reason for the first dangerous construct found.

    Example:
        ```python
        reason = find_structural_pattern("while True:\\n    pass")
        ```
    """
    for pattern, message in _LOOP_PATTERNS:
        if pattern.search(code):
            return f"Dangerous infinite loop pattern: {message}"
    for pattern, message in _SUSPICIOUS_PATTERNS:
        if pattern.search(code):
            return f"Suspicious pattern detected: {message}"
    return None


def validate(code: str, forbidden_keywords: Sequence[str] | None = None) -> SafetyVerdict:
    """Run the denylist scan, then the structural scan; first hit wins.

    Example:
        ```python
        verdict = validate("set_result(1 + 1)")
        assert verdict.allowed
        ```
    """
    word = find_forbidden_keyword(code, forbidden_keywords)
    if word is not None:
        return Rejected(f"Forbidden keyword: '{word}' - not allowed for security reasons")
    reason = find_structural_pattern(code)
    if reason is not None:
        return Rejected(reason)
    return ALLOWED
