import pytest

from stockchat.errors import ModelUnavailable, NarrationFailure
from stockchat.narrator import (
    MAX_ROWS_IN_PROMPT,
    NARRATION_TEMPERATURE,
    ResultNarrator,
)

from conftest import ScriptedModel


def test_narrates_rows_with_question_and_query():
    model = ScriptedModel("Deux produits sont en rupture.")
    narrator = ResultNarrator(model)
    rows = [{"name": "Printer Paper", "currentQuantity": 0}, {"name": "USB Cable", "currentQuantity": 5}]

    text = narrator.narrate("Quels produits sont en rupture ?", "db.products.find({})", rows)

    assert text == "Deux produits sont en rupture."
    call = model.calls[0]
    assert call["temperature"] == NARRATION_TEMPERATURE
    assert "Quels produits sont en rupture ?" in call["prompt"]
    assert 'QUERY USED: "db.products.find({})"' in call["prompt"]
    assert "(2 rows)" in call["prompt"]
    assert '"Printer Paper"' in call["prompt"]
    assert "same language" in call["prompt"]


def test_empty_results_are_marked_explicitly():
    narrator = ResultNarrator(ScriptedModel())
    prompt = narrator.build_prompt("Any chairs?", "SELECT * FROM products", [])
    assert "(0 rows)" in prompt
    assert "[] (no matching data)" in prompt


def test_large_results_are_truncated_in_prompt():
    narrator = ResultNarrator(ScriptedModel())
    rows = [{"n": i} for i in range(MAX_ROWS_IN_PROMPT + 10)]

    prompt = narrator.build_prompt("q", "q", rows)

    assert f"({MAX_ROWS_IN_PROMPT + 10} rows, first {MAX_ROWS_IN_PROMPT} shown)" in prompt
    assert f'"n": {MAX_ROWS_IN_PROMPT - 1}' in prompt
    assert f'"n": {MAX_ROWS_IN_PROMPT}\n' not in prompt


def test_non_ascii_is_kept_readable():
    narrator = ResultNarrator(ScriptedModel())
    prompt = narrator.build_prompt("ما هي المنتجات؟", "q", [{"name": "كابل"}])
    assert "كابل" in prompt


def test_unavailable_model_is_a_narration_failure():
    narrator = ResultNarrator(ScriptedModel(ModelUnavailable("quota")))
    with pytest.raises(NarrationFailure, match="quota"):
        narrator.narrate("q", "q", [])


def test_empty_reply_is_a_narration_failure():
    narrator = ResultNarrator(ScriptedModel(""))
    with pytest.raises(NarrationFailure):
        narrator.narrate("q", "q", [{"a": 1}])
