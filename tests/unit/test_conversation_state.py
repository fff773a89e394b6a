import dataclasses

import pytest

from infra_analyst.agent.orchestrator import SessionStore
from infra_analyst.types import AccountScope, CollectedData, ConversationState


def test_transitions_return_new_instances() -> None:
    state = ConversationState(session_id="s")

    updated = state.with_message("user", "hi").with_message("assistant", "hello")

    assert state.messages == ()
    assert [m.role for m in updated.messages] == ["user", "assistant"]
    with pytest.raises(dataclasses.FrozenInstanceError):
        updated.session_id = "other"  # type: ignore[misc]


def test_scope_replaced_only_when_given() -> None:
    state = ConversationState(session_id="s").with_scope(AccountScope.of(3, 1, 3))

    assert state.scope.account_ids == (1, 3)
    assert state.with_scope(None).scope == state.scope
    assert state.with_scope(AccountScope.all()).scope.is_all
    assert state.scope.describe() == "accounts 1, 3"


def test_collected_data_union_merge() -> None:
    first = CollectedData(
        resources=({"resource_id": "i-1", "status": "running"},),
        statistics={"get_resources": {"total": 1}},
    )
    second = CollectedData(
        resources=(
            {"resource_id": "i-1", "status": "stopped", "age_days": 4},
            {"resource_id": "i-2", "status": "running"},
        ),
        statistics={"get_costs": {"total": 0}},
        tool_errors={"get_alerts": "boom"},
    )

    merged = ConversationState(session_id="s").with_data(first).with_data(second).collected

    assert [r["resource_id"] for r in merged.resources] == ["i-1", "i-2"]
    assert merged.resources[0]["status"] == "stopped"
    assert set(merged.statistics) == {"get_resources", "get_costs"}
    assert merged.tool_errors == {"get_alerts": "boom"}
    assert not merged.is_empty
    assert CollectedData().is_empty


def test_history_limit() -> None:
    state = ConversationState(session_id="s")
    for i in range(5):
        state = state.with_message("user", f"m{i}")

    assert [m["content"] for m in state.history(2)] == ["m3", "m4"]


def test_session_store_commit_and_discard() -> None:
    sessions = SessionStore()
    state, generation = sessions.checkout("s")

    assert sessions.commit("s", state.with_message("user", "hi"), generation)
    assert "s" in sessions
    assert len(sessions.get("s").messages) == 1

    stale_state, stale_generation = sessions.checkout("s")
    assert sessions.discard("s")
    assert not sessions.commit("s", stale_state.with_message("user", "late"), stale_generation)
    assert "s" not in sessions
    with pytest.raises(KeyError):
        sessions.get("s")

    fresh, fresh_generation = sessions.checkout("s")
    assert fresh.messages == ()
    assert sessions.commit("s", fresh, fresh_generation)
