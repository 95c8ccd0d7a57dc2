"""Tests for storyteller.storage."""

import os

import pytest

from storyteller.models import Message, SaveSlot


@pytest.fixture
def slot(hero_info, hero_state) -> SaveSlot:
    return SaveSlot(
        id="lyra-1a2b3c4d",
        character_info=hero_info,
        player_state=hero_state,
        chat_history=[Message(role="user", text="I wake up."), Message(role="model", text="Gulls cry.")],
    )


def test_save_and_get(storage, slot):
    storage.save(slot)
    assert storage.get(slot.id) == slot


def test_saves_camel_case_file(storage, slot):
    storage.save(slot)
    text = (storage.base_path / "saves" / f"{slot.id}.json").read_text()
    assert '"playerState"' in text
    assert '"currentModelIndex": 0' in text


def test_get_missing(storage):
    assert storage.get("nobody") is None


def test_get_corrupt_file(storage, slot):
    storage.save(slot)
    (storage.base_path / "saves" / f"{slot.id}.json").write_text("{not json")
    assert storage.get(slot.id) is None


def test_get_invalid_shape(storage):
    (storage.base_path / "saves" / "broken.json").write_text('{"id": "broken"}')
    assert storage.get("broken") is None


def test_unsafe_id_rejected(storage):
    with pytest.raises(ValueError, match="Invalid character id"):
        storage.get("../config")


def test_update_deep_merges(storage, slot):
    storage.save(slot)
    updated = storage.update(slot.id, {"playerState": {"health": {"current": 3}}, "currentModelIndex": 1})
    assert updated.player_state.health.current == 3
    assert updated.player_state.health.max == 12
    assert updated.current_model_index == 1
    assert storage.get(slot.id) == updated


def test_update_missing(storage):
    assert storage.update("nobody", {"currentModelIndex": 1}) is None


def test_delete(storage, slot):
    storage.save(slot)
    assert storage.delete(slot.id) is True
    assert storage.get(slot.id) is None
    assert storage.delete(slot.id) is False


def test_list_saves_newest_first(storage, slot):
    older = slot.model_copy(update={"id": "older"})
    storage.save(older)
    storage.save(slot)
    old_path = storage.base_path / "saves" / "older.json"
    os.utime(old_path, (1_000_000, 1_000_000))
    (storage.base_path / "saves" / "junk.json").write_text("[]")
    assert [s.id for s in storage.list_saves()] == [slot.id, "older"]
