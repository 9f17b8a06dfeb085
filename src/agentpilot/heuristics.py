"""Pluggable text heuristics used by the evaluators.

Every scorer is a plain function. ``Heuristics`` bundles them so a better
classifier can be swapped in without touching the control loop.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

SOLUTION_KEYWORDS: tuple[str, ...] = (
    "final answer",
    "conclusion",
    "solution is",
    "the answer is",
    "result is",
    "therefore",
    "in summary",
)
COMPLETION_KEYWORDS: tuple[str, ...] = SOLUTION_KEYWORDS + ("to conclude",)
_DEFINITIVE_RE = re.compile(r"\b(is|are|equals|results in)\b", re.IGNORECASE)

_COMPLEX_TERMS_RE = re.compile(
    r"\b(calculate|analyze|compare|optimize|determine|evaluate)\b", re.IGNORECASE
)
_BLOCKER_COMPLEX_TERMS = (
    "calculate",
    "analyze",
    "compare",
    "optimize",
    "determine",
    "evaluate",
    "synthesize",
    "integrate",
)
_TECHNICAL_TERMS = (
    "algorithm",
    "function",
    "variable",
    "parameter",
    "coefficient",
    "derivative",
    "integral",
    "matrix",
)

_CONTRADICTIONS = [
    (re.compile(r"\bis\b"), re.compile(r"\bis not\b")),
    (re.compile(r"\bcan\b"), re.compile(r"\bcannot\b")),
    (re.compile(r"\bwill\b"), re.compile(r"\bwill not\b")),
    (re.compile(r"\bshould\b"), re.compile(r"\bshould not\b")),
]

AUTONOMY_UNSAFE_PATTERNS = [
    re.compile(r"\b(delete|remove|destroy)\b", re.IGNORECASE),
    re.compile(r"\b(system|admin|root)\b", re.IGNORECASE),
    re.compile(r"\b(password|credential|secret)\b", re.IGNORECASE),
    re.compile(r"\b(execute|run|eval)\b", re.IGNORECASE),
]
SAFETY_PATTERNS = [
    re.compile(r"\b(delete|remove|destroy|erase)\b", re.IGNORECASE),
    re.compile(r"\b(system|admin|root|sudo)\b", re.IGNORECASE),
    re.compile(r"\b(password|credential|secret|token)\b", re.IGNORECASE),
    re.compile(r"\b(execute|run|eval|script)\b", re.IGNORECASE),
    re.compile(r"\b(hack|exploit|bypass|crack)\b", re.IGNORECASE),
]
RISKY_ACTION_TYPES = frozenset({"system_call", "file_operation", "network_request"})
BLOCKER_RISKY_ACTION_TYPES = RISKY_ACTION_TYPES | {"code_execution"}

AMBIGUITY_PATTERNS = [
    re.compile(r"\b(maybe|perhaps|possibly|might|could be)\b", re.IGNORECASE),
    re.compile(r"\b(or|either|alternatively)\b", re.IGNORECASE),
    re.compile(r"\?.*\?"),
    re.compile(r"\b(unclear|ambiguous|not sure)\b", re.IGNORECASE),
]
UNCERTAINTY_RE = re.compile(r"uncertain|unclear|not sure|don't know|ambiguous", re.IGNORECASE)


def text_similarity(first: str, second: str) -> float:
    """Intersection over union of whitespace-separated lowercase words."""
    if not first or not second:
        return 0.0
    words_a = set(first.lower().split())
    words_b = set(second.lower().split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def average_consecutive_similarity(
    texts: Sequence[str], similarity: Callable[[str, str], float] = text_similarity
) -> float:
    if len(texts) < 2:
        return 0.0
    scores = [similarity(texts[i], texts[i + 1]) for i in range(len(texts) - 1)]
    return sum(scores) / len(scores)


def contains_solution(text: str, keywords: Iterable[str] = SOLUTION_KEYWORDS) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in keywords)


def has_definitive_statement(text: str) -> bool:
    return contains_solution(text, COMPLETION_KEYWORDS) or bool(_DEFINITIVE_RE.search(text))


def has_contradiction(texts: Sequence[str]) -> bool:
    for current, following in zip(texts, texts[1:]):
        current = current.lower()
        following = following.lower()
        for positive, negative in _CONTRADICTIONS:
            if positive.search(current) and negative.search(following):
                return True
            if negative.search(current) and positive.search(following):
                return True
    return False


def task_complexity(query: str, reasoning_count: int, action_types: Iterable[str]) -> float:
    """Complexity estimate used for autonomy risk."""
    score = 0.0
    if len(query) > 200:
        score += 0.2
    if query.count("?") > 1:
        score += 0.3
    if _COMPLEX_TERMS_RE.search(query):
        score += 0.2
    if reasoning_count > 5:
        score += 0.2
    if len(set(action_types)) > 3:
        score += 0.1
    return min(1.0, score)


def query_complexity(query: str) -> float:
    """Complexity estimate of the query text alone, used for blocker detection."""
    lowered = query.lower()
    score = 0.0
    if len(query) > 200:
        score += 0.2
    if len(query) > 500:
        score += 0.2
    if query.count("?") > 1:
        score += 0.2
    complex_hits = sum(1 for term in _BLOCKER_COMPLEX_TERMS if term in lowered)
    score += min(0.3, complex_hits * 0.1)
    technical_hits = sum(1 for term in _TECHNICAL_TERMS if term in lowered)
    score += min(0.2, technical_hits * 0.05)
    return min(1.0, score)


def unsafe_query_matches(query: str, patterns: Sequence[re.Pattern[str]] = SAFETY_PATTERNS) -> list[str]:
    return [pattern.pattern for pattern in patterns if pattern.search(query)]


def is_ambiguous(query: str) -> bool:
    return any(pattern.search(query) for pattern in AMBIGUITY_PATTERNS)


def expresses_uncertainty(text: str) -> bool:
    return bool(UNCERTAINTY_RE.search(text))


def meaningful_terms(text: str) -> list[str]:
    return [word for word in text.lower().split() if len(word) > 3]


@dataclass
class Heuristics:
    """Replaceable scoring functions shared by the evaluators."""

    similarity: Callable[[str, str], float] = text_similarity
    contains_solution: Callable[[str], bool] = contains_solution
    definitive_statement: Callable[[str], bool] = has_definitive_statement
    contradiction: Callable[[Sequence[str]], bool] = has_contradiction
    task_complexity: Callable[[str, int, Iterable[str]], float] = task_complexity
    query_complexity: Callable[[str], float] = query_complexity
    is_ambiguous: Callable[[str], bool] = is_ambiguous
    expresses_uncertainty: Callable[[str], bool] = expresses_uncertainty

    def autonomy_unsafe(self, query: str) -> bool:
        return bool(unsafe_query_matches(query, AUTONOMY_UNSAFE_PATTERNS))

    def safety_matches(self, query: str) -> list[str]:
        return unsafe_query_matches(query, SAFETY_PATTERNS)


DEFAULT_HEURISTICS = Heuristics()
