from __future__ import annotations

from chat_transcripts.models import Author
from chat_transcripts.profiles import ProfileRegistry


def test_register_is_idempotent_and_first_write_wins() -> None:
    registry = ProfileRegistry()

    first = registry.register("1", Author(id="1", name="Ann", color="#ff0000"))
    again = registry.register("1", Author(id="1", name="Renamed"))

    assert first == again == 0
    assert len(registry) == 1
    assert registry.entry(0).name == "Ann"
    assert registry.entry(0).color == "#ff0000"


def test_keys_follow_first_appearance() -> None:
    registry = ProfileRegistry()
    authors = ["a", "b", "c"]

    keys = [
        registry.register(authors[i % 3], {"name": authors[i % 3].upper()})
        for i in range(50)
    ]

    assert keys[:3] == [0, 1, 2]
    assert set(keys) == {0, 1, 2}
    assert [entry["name"] for entry in registry.export()] == ["A", "B", "C"]
    assert registry.key_for("c") == 2
    assert registry.key_for("missing") is None


def test_mapping_data_defaults() -> None:
    registry = ProfileRegistry()

    registry.register(7, {"color": 0x00FF00, "bot": 1})

    entry = registry.export()[0]
    assert entry["author_id"] == "7"
    assert entry["name"] == "7"
    assert entry["color"] == "#00ff00"
    assert entry["bot"] is True
