# tests/test_terms.py
from __future__ import annotations

import pytest

from src.search.terms import TermKind, classify_term, clean_code, normalize_codes


def test_empty_and_whitespace_terms_are_empty() -> None:
    for raw in (None, "", "   ", "\t"):
        term = classify_term(raw)
        assert term.kind is TermKind.EMPTY
        assert term.is_empty


def test_combining_marks_only_term_is_empty() -> None:
    for raw in ("\u0301", " \u0301\u0327 "):
        term = classify_term(raw)
        assert term.kind is TermKind.EMPTY
        assert term.raw == ""


def test_single_code_strips_separators() -> None:
    term = classify_term(" 6821-8/01 ")
    assert term.kind is TermKind.SINGLE_CODE
    assert term.cleaned == "6821801"
    assert term.codes == ("6821801",)
    assert term.is_code_search


def test_dotted_code_is_single_code() -> None:
    assert classify_term("68.21-8-01").cleaned == "6821801"


def test_multi_code_trims_and_dedupes() -> None:
    term = classify_term("6821-8/01, 6822600 ,6821801")
    assert term.kind is TermKind.MULTI_CODE
    assert term.codes == ("6821801", "6822600")


def test_multi_code_ignores_empty_parts() -> None:
    term = classify_term("6821801,,6822600,")
    assert term.kind is TermKind.MULTI_CODE
    assert term.codes == ("6821801", "6822600")


def test_mixed_list_falls_back_to_free_text_on_original() -> None:
    term = classify_term("6821801,abc")
    assert term.kind is TermKind.FREE_TEXT
    assert term.raw == "6821801,abc"
    assert term.codes == ()


def test_trailing_comma_single_code_is_free_text() -> None:
    term = classify_term("6821801,")
    assert term.kind is TermKind.FREE_TEXT


def test_free_text_keeps_original_term() -> None:
    term = classify_term("  Imobiliária ")
    assert term.kind is TermKind.FREE_TEXT
    assert term.raw == "Imobiliária"
    assert not term.is_code_search


def test_classification_is_deterministic() -> None:
    assert classify_term("6821801, 6822600") == classify_term("6821801, 6822600")


def test_clean_code() -> None:
    assert clean_code("6821-8/01") == "6821801"
    assert clean_code("") == ""


def test_normalize_codes_accepts_formatted_and_joined_values() -> None:
    assert normalize_codes(["6821-8/01", "6822600,6821801"]) == ["6821801", "6822600"]


def test_normalize_codes_rejects_non_numeric() -> None:
    with pytest.raises(ValueError):
        normalize_codes(["6821801", "abc"])


def test_normalize_codes_rejects_empty() -> None:
    with pytest.raises(ValueError):
        normalize_codes([])
    with pytest.raises(ValueError):
        normalize_codes([" , "])
