import threading

import pytest

from stepkit.engine.state import (
    STATE_CANCELLED,
    STATE_HALTED,
    StateBag,
    StateContractError,
    get_error,
    put_error,
    put_error_if_absent,
)


def test_put_get_and_overwrite():
    state = StateBag()
    state.put("mount_path", "/mnt/a")
    state.put("mount_path", "/mnt/b")

    assert state.get("mount_path", str) == "/mnt/b"
    assert state.get_ok("mount_path") == ("/mnt/b", True)
    assert "mount_path" in state


def test_get_missing_key_is_contract_violation():
    state = StateBag()

    with pytest.raises(StateContractError, match="Required state key is missing: ui") as excinfo:
        state.get("ui")
    assert excinfo.value.key == "ui"


def test_get_wrong_type_is_contract_violation():
    state = StateBag({"mount_path": 42})

    with pytest.raises(StateContractError, match=r"has type int \(expected str\)"):
        state.get("mount_path", str)


def test_get_ok_never_fails_for_absent_key():
    state = StateBag()

    assert state.get_ok("error") == (None, False)
    assert "error" not in state


def test_flags_are_monotonic():
    state = StateBag()
    assert not state.is_cancelled()
    assert not state.is_halted()

    state.mark_cancelled()
    state.mark_cancelled()
    state.put(STATE_HALTED, True)

    assert state.is_cancelled()
    assert state.is_halted()
    assert state.get_ok(STATE_CANCELLED) == (True, True)

    with pytest.raises(ValueError, match="cannot be cleared"):
        state.put(STATE_CANCELLED, False)
    assert state.is_cancelled()


def test_unset_flag_reads_as_absent():
    state = StateBag()

    assert state.get_ok(STATE_HALTED) == (None, False)
    state.put(STATE_HALTED, False)
    assert not state.is_halted()


def test_flag_requires_boolean():
    state = StateBag()

    with pytest.raises(TypeError, match="must be a boolean"):
        state.put(STATE_CANCELLED, "yes")


def test_keys_and_snapshot_include_set_flags():
    state = StateBag({"a": 1})
    state.mark_halted()

    assert state.keys() == ("a", STATE_HALTED)
    assert state.snapshot() == {"a": 1, STATE_HALTED: True}


def test_error_slot_first_error_wins():
    state = StateBag()
    first = RuntimeError("first")
    second = RuntimeError("second")

    assert get_error(state) == (None, False)
    assert put_error_if_absent(state, first) is True
    assert put_error_if_absent(state, second) is False
    assert get_error(state) == (first, True)

    put_error(state, second)
    assert get_error(state) == (second, True)


def test_error_slot_rejects_non_exception_values():
    state = StateBag({"error": "boom"})

    with pytest.raises(StateContractError):
        get_error(state)


def test_concurrent_flag_and_value_writes():
    state = StateBag()
    start = threading.Barrier(3)

    def _writer(prefix: str) -> None:
        start.wait()
        for i in range(200):
            state.put(f"{prefix}{i}", i)

    def _canceller() -> None:
        start.wait()
        for _ in range(200):
            state.mark_cancelled()

    threads = [
        threading.Thread(target=_writer, args=("a",)),
        threading.Thread(target=_writer, args=("b",)),
        threading.Thread(target=_canceller),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert state.is_cancelled()
    assert state.get("a199", int) == 199
    assert state.get("b0", int) == 0
