from __future__ import annotations

import pytest

from agentpilot.heuristics import (
    DEFAULT_HEURISTICS,
    Heuristics,
    average_consecutive_similarity,
    contains_solution,
    has_contradiction,
    has_definitive_statement,
    meaningful_terms,
    query_complexity,
    task_complexity,
    text_similarity,
)


def test_text_similarity_is_word_overlap():
    assert text_similarity("a b c", "b c d") == 0.5
    assert text_similarity("", "anything") == 0.0
    assert average_consecutive_similarity(["same words", "same words"]) == 1.0
    assert average_consecutive_similarity(["only one"]) == 0.0


def test_solution_and_definitive_statements():
    assert contains_solution("The Final Answer is 4")
    assert not contains_solution("still looking")
    assert has_definitive_statement("Paris is the capital")
    assert not has_definitive_statement("checking sources")


def test_contradiction_between_consecutive_steps():
    assert has_contradiction(["it is ready", "it is not ready"])
    assert not has_contradiction(["it is ready", "it is ready"])


def test_complexity_scores():
    assert query_complexity("Calculate and compare the derivative?") == pytest.approx(0.25)
    assert task_complexity("Calculate?", 6, ["a", "b", "c", "d"]) == pytest.approx(0.5)
    assert task_complexity("hi", 0, []) == 0.0


def test_default_bundle_flags_risky_queries():
    assert DEFAULT_HEURISTICS.autonomy_unsafe("delete the files")
    assert len(DEFAULT_HEURISTICS.safety_matches("sudo hack")) == 2
    assert DEFAULT_HEURISTICS.is_ambiguous("maybe Paris")
    assert meaningful_terms("the weather in London") == ["weather", "london"]


def test_scorers_can_be_swapped():
    heuristics = Heuristics(similarity=lambda first, second: 1.0)
    assert heuristics.similarity("x", "y") == 1.0
    assert heuristics.contains_solution("therefore done")
