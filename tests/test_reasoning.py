import pytest

from recallbot.agent.reasoning import StructuredReasoner
from recallbot.exceptions import BackendTimeout, CompletionError

import test_utils as tutils


def test_three_phases_run_in_order():
    agent = tutils.ScriptedAgent(["the plan", "the reasoning", "the answer"])
    reasoner = StructuredReasoner(agent, system_prompt="You are terse.")

    trace = reasoner.trace("What's 2+2?")

    assert trace.plan == "the plan"
    assert trace.reasoning == "the reasoning"
    assert trace.answer == "the answer"
    assert len(agent.calls) == 3

    planning, reasoning, summary = (messages[0]["content"] for messages in agent.calls)
    assert planning.startswith("You are terse.\n\n")
    assert "PHASE 1: PLANNING" in planning
    assert "PHASE 2: REASONING" in reasoning
    assert "the plan" in reasoning
    assert "PHASE 3: SUMMARY" in summary
    assert "the plan" in summary
    assert "the reasoning" in summary
    for messages in agent.calls:
        assert messages[-1] == {"role": "user", "content": "What's 2+2?"}


def test_run_returns_only_the_answer():
    agent = tutils.ScriptedAgent(["plan", "reasoning", "4"])
    assert StructuredReasoner(agent).run("What's 2+2?") == "4"


def test_history_is_carried_into_every_phase():
    history = [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello!"},
        {"role": "tool", "content": "ignored"},
    ]
    agent = tutils.ScriptedAgent(["p", "r", "a"])
    StructuredReasoner(agent).run("And now?", history=history)

    for messages in agent.calls:
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[1]["content"] == "Hi"
        assert messages[2]["content"] == "Hello!"


def test_system_prompt_is_optional():
    agent = tutils.ScriptedAgent(["p", "r", "a"])
    StructuredReasoner(agent).run("question")
    assert agent.calls[0][0]["content"].startswith("STRUCTURED THINKING - PHASE 1: PLANNING")


@pytest.mark.parametrize(
    "replies, phase, calls",
    [
        ([BackendTimeout("slow")], "planning", 1),
        (["plan", BackendTimeout("slow")], "reasoning", 2),
        (["plan", "reasoning", RuntimeError("boom")], "summary", 3),
    ],
)
def test_phase_failure_raises_completion_error(replies, phase, calls):
    agent = tutils.ScriptedAgent(replies)
    with pytest.raises(CompletionError) as info:
        StructuredReasoner(agent).run("question")
    assert info.value.phase == phase
    assert len(agent.calls) == calls
