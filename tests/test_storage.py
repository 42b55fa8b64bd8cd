import json

import pytest

from job_applier.errors import StateError
from job_applier.storage import JOBS_KEY, STATE_KEY, KeyValueStore


def test_values_survive_a_new_instance(tmp_path):
    path = tmp_path / "state.json"
    KeyValueStore(path).set(STATE_KEY, {"is_processing": True})
    assert KeyValueStore(path).get(STATE_KEY) == {"is_processing": True}


def test_get_returns_a_copy(tmp_path):
    store = KeyValueStore(tmp_path / "state.json")
    store.set(JOBS_KEY, [{"id": "A"}])
    got = store.get(JOBS_KEY)
    got.append({"id": "B"})
    assert store.get(JOBS_KEY) == [{"id": "A"}]


def test_writes_to_one_key_keep_the_others(tmp_path):
    store = KeyValueStore(tmp_path / "state.json")
    store.set(JOBS_KEY, [])
    store.set(STATE_KEY, {"is_paused": True})
    store.set(JOBS_KEY, [{"id": "A"}])
    data = json.loads((tmp_path / "state.json").read_text())
    assert data == {JOBS_KEY: [{"id": "A"}], STATE_KEY: {"is_paused": True}}


def test_missing_empty_and_corrupt_files_read_as_empty(tmp_path):
    path = tmp_path / "state.json"
    store = KeyValueStore(path)
    assert store.get(STATE_KEY, "default") == "default"
    path.write_text("")
    assert store.get(STATE_KEY) is None
    path.write_text("{not json")
    assert store.get(STATE_KEY) is None
    store.set(STATE_KEY, {"is_paused": False})
    assert store.get(STATE_KEY) == {"is_paused": False}


def test_unwritable_location_raises_state_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    store = KeyValueStore(blocker / "state.json")
    with pytest.raises(StateError) as info:
        store.set(STATE_KEY, {})
    assert info.value.key == STATE_KEY
    assert info.value.kind == StateError.PERSIST_FAILED


def test_unserializable_value_is_a_state_error(tmp_path):
    store = KeyValueStore(tmp_path / "state.json")
    with pytest.raises(StateError):
        store.set(JOBS_KEY, [object()])


def test_clear_drops_everything(tmp_path):
    store = KeyValueStore(tmp_path / "state.json")
    store.set(JOBS_KEY, [1])
    store.set(STATE_KEY, {})
    store.clear()
    assert store.get(JOBS_KEY) is None
    assert store.get(STATE_KEY) is None


def test_update_sees_writes_from_another_instance(tmp_path):
    path = tmp_path / "state.json"
    mine, theirs = KeyValueStore(path), KeyValueStore(path)
    mine.set(STATE_KEY, {"is_paused": False, "current_job_id": "A"})
    theirs.set(STATE_KEY, {"is_paused": True, "current_job_id": "A"})

    merged = mine.update(STATE_KEY, lambda current: {**current, "current_job_id": "B"})
    assert merged == {"is_paused": True, "current_job_id": "B"}
    assert theirs.get(STATE_KEY) == merged


def test_update_that_raises_writes_nothing(tmp_path):
    store = KeyValueStore(tmp_path / "state.json")
    store.set(JOBS_KEY, [{"id": "A"}])

    def refuse(current):
        current.append({"id": "B"})
        raise KeyError("B")

    with pytest.raises(KeyError):
        store.update(JOBS_KEY, refuse)
    assert store.get(JOBS_KEY) == [{"id": "A"}]


def test_lease_is_exclusive_until_released(tmp_path):
    path = tmp_path / "state.json"
    first = KeyValueStore(path).try_lease()
    assert first is not None
    assert KeyValueStore(path).try_lease() is None

    KeyValueStore.release_lease(first)
    second = KeyValueStore(path).try_lease()
    assert second is not None
    KeyValueStore.release_lease(second)
