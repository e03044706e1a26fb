import json

import pytest

from dagflow.state import TaskState


@pytest.mark.parametrize("state", list(TaskState))
def test_label_roundtrip(state):
    assert TaskState.parse(state.as_label()) is state


def test_unknown_label_errors():
    with pytest.raises(ValueError, match="unknown TaskState: RogueState"):
        TaskState.parse("RogueState")


def test_labels_are_case_sensitive():
    with pytest.raises(ValueError):
        TaskState.parse("succeeded")


def test_json_serialization_uses_pascal_case():
    state = TaskState.parse("Succeeded")
    assert json.dumps(state) == '"Succeeded"'
    assert json.dumps(state.as_label()) == '"Succeeded"'


def test_display_matches_label():
    skipped = TaskState.parse("Skipped")
    failed = TaskState.parse("Failed")
    assert str(skipped) == skipped.as_label() == "Skipped"
    assert f"{failed}" == failed.as_label() == "Failed"