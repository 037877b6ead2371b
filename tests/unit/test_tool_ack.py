"""Tests for the tool acknowledgment contract."""

from hypothesis import given
from hypothesis import strategies as st

from sophia.brain.tool_ack import (
    DEFAULT_SAFE_MESSAGES,
    MAX_EXECUTED_TOOLS,
    ToolExecutionStatus,
    apply_tool_ack,
    build_tool_ack_contract,
)


def test_success_with_tool_allows_claim():
    contract = build_tool_ack_contract("success", ["track_progress"])
    assert contract.allow_success_claim
    assert contract.tool_name == "track_progress"
    assert contract.user_safe_message is None


def test_success_without_tool_is_not_confirmed():
    contract = build_tool_ack_contract(ToolExecutionStatus.SUCCESS, [])
    assert not contract.attempted
    assert not contract.allow_success_claim


def test_failed_uses_default_message():
    contract = build_tool_ack_contract("failed", ["track_progress"])
    assert contract.user_safe_message == DEFAULT_SAFE_MESSAGES[ToolExecutionStatus.FAILED]


def test_blank_tool_names_are_dropped_and_list_is_capped():
    names = [" ", ""] + [f"tool_{i}" for i in range(15)]
    contract = build_tool_ack_contract("success", names)
    assert len(contract.executed_tools) == MAX_EXECUTED_TOOLS
    assert contract.executed_tools[0] == "tool_0"


def test_to_dict_shape():
    data = build_tool_ack_contract("blocked", ["track_progress"], "Pas encore.").to_dict()
    assert data == {
        "version": 1,
        "status": "blocked",
        "attempted": True,
        "success_confirmed": False,
        "allow_success_claim": False,
        "executed_tools": ["track_progress"],
        "tool_name": "track_progress",
        "user_safe_message": "Pas encore.",
    }


class TestApplyToolAck:
    def test_appends_message_when_claim_not_allowed(self):
        contract = build_tool_ack_contract("uncertain", ["track_progress"])
        text = apply_tool_ack("C'est noté !", contract)
        assert text.endswith(DEFAULT_SAFE_MESSAGES[ToolExecutionStatus.UNCERTAIN])

    def test_message_not_duplicated(self):
        contract = build_tool_ack_contract("failed", ["x"], "Souci technique.")
        assert apply_tool_ack("Souci technique.", contract) == "Souci technique."

    def test_success_leaves_text_untouched(self):
        contract = build_tool_ack_contract("success", ["x"])
        assert apply_tool_ack("Fait.", contract) == "Fait."


@given(
    status=st.sampled_from(list(ToolExecutionStatus)),
    tools=st.lists(st.text(max_size=12), max_size=20),
)
def test_claim_requires_success_and_attempt(status, tools):
    contract = build_tool_ack_contract(status, tools)
    if contract.allow_success_claim:
        assert contract.status is ToolExecutionStatus.SUCCESS
        assert contract.attempted
    assert len(contract.executed_tools) <= MAX_EXECUTED_TOOLS
