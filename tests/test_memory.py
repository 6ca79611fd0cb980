"""
Tests for per-directory conversation memory.
"""

import pytest
import json
import os

from jump_code.llm.base import ImageBlock, Role, TextBlock, ToolResultBlock, ToolUseBlock, Turn
from jump_code.memory import Session, SessionStore, directory_hash, truncate_history


def exchange(n):
    """``n`` operator/assistant pairs."""
    turns = []
    for i in range(n):
        turns.append(Turn.operator(f"question {i}"))
        turns.append(Turn(role=Role.ASSISTANT, content=[TextBlock(text=f"answer {i}")]))
    return turns


class TestDirectoryHash:

    def test_stable_and_short(self, tmp_path):
        assert directory_hash(tmp_path) == directory_hash(str(tmp_path))
        assert len(directory_hash(tmp_path)) == 12

    def test_distinct_directories(self, tmp_path):
        assert directory_hash(tmp_path / "a") != directory_hash(tmp_path / "b")

    def test_relative_paths_are_made_absolute(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert directory_hash(".") == directory_hash(os.path.abspath("."))


class TestTruncate:

    def test_keeps_last_turns(self):
        turns = exchange(5)
        window = truncate_history(turns, 4)
        assert [t.text for t in window] == ["question 3", "answer 3", "question 4", "answer 4"]

    def test_shorter_history_untouched(self):
        turns = exchange(2)
        assert truncate_history(turns, 100) == turns

    def test_window_never_starts_with_orphan_results(self):
        turns = [
            Turn.operator("go"),
            Turn(role=Role.ASSISTANT, content=[ToolUseBlock(id="t", name="Glob", input={})]),
            Turn(role=Role.OPERATOR, content=[ToolResultBlock(tool_use_id="t", output="x")]),
            Turn(role=Role.ASSISTANT, content=[TextBlock(text="done")]),
        ]
        window = truncate_history(turns, 2)
        assert [t.role for t in window] == [Role.ASSISTANT]
        assert window[0].text == "done"

    def test_zero(self):
        assert truncate_history(exchange(1), 0) == []


class TestSessionStore:

    @pytest.fixture
    def store(self, tmp_path):
        return SessionStore(tmp_path / "memory", max_turns=6)

    def test_load_missing_starts_fresh(self, store, tmp_path):
        session = store.load(tmp_path / "work", model="m")
        assert session.history == []
        assert session.selected_model == "m"
        assert session.working_directory_hash == directory_hash(tmp_path / "work")

    def test_round_trip_keeps_last_n_in_order(self, store, tmp_path):
        session = Session.for_directory(tmp_path / "work")
        for turn in exchange(5):
            session.append(turn)

        path = store.save(session)
        restored = store.load(tmp_path / "work")

        assert path == store.path_for(tmp_path / "work")
        assert [t.text for t in restored.history] == [t.text for t in session.history[-6:]]

    def test_round_trip_shorter_than_limit(self, store, tmp_path):
        session = Session.for_directory(tmp_path / "work")
        for turn in exchange(2):
            session.append(turn)
        store.save(session)
        assert store.load(tmp_path / "work").history == session.history

    def test_file_layout(self, store, tmp_path):
        session = Session.for_directory(tmp_path / "work", model="gpt-4o")
        session.append(Turn.operator("hi"))
        path = store.save(session)

        data = json.loads(path.read_text())
        assert path.name == f"{directory_hash(tmp_path / 'work')}.json"
        assert data["working_directory"] == str(tmp_path / "work")
        assert data["selected_model"] == "gpt-4o"
        assert data["history"][0]["content"][0] == {"type": "text", "text": "hi"}

    def test_images_replaced_on_save(self, store, tmp_path):
        session = Session.for_directory(tmp_path / "work")
        session.append(Turn.operator("see", ImageBlock(data="QUJD")))
        store.save(session)

        restored = store.load(tmp_path / "work")
        assert [b.text for b in restored.history[0].content] == ["see", "[screen capture omitted]"]
        assert isinstance(session.history[0].content[1], ImageBlock)

    def test_no_temp_files_left(self, store, tmp_path):
        session = Session.for_directory(tmp_path / "work")
        session.append(Turn.operator("hi"))
        store.save(session)
        store.save(session)
        assert [p.name for p in store.memory_dir.iterdir()] == [store.path_for(tmp_path / "work").name]

    def test_corrupt_file_ignored(self, store, tmp_path):
        path = store.path_for(tmp_path / "work")
        path.parent.mkdir(parents=True)
        path.write_text("{ not json")

        session = store.load(tmp_path / "work")
        assert session.history == []

    def test_forget(self, store, tmp_path):
        session = Session.for_directory(tmp_path / "work")
        store.save(session)
        assert store.forget(tmp_path / "work") is True
        assert store.forget(tmp_path / "work") is False
        assert store.list_sessions() == []

    def test_list_sessions(self, store, tmp_path):
        for name in ("a", "b"):
            store.save(Session.for_directory(tmp_path / name))
        assert len(store.list_sessions()) == 2

    def test_sessions_are_independent(self, store, tmp_path):
        first = Session.for_directory(tmp_path / "a")
        first.append(Turn.operator("from a"))
        store.save(first)

        assert store.load(tmp_path / "b").history == []
        assert store.load(tmp_path / "a").history[0].text == "from a"


class TestSession:

    def test_append_and_clear(self, tmp_path):
        session = Session.for_directory(tmp_path)
        before = session.updated_at
        session.append(Turn.operator("x"))
        assert len(session) == 1
        assert session.updated_at >= before
        session.clear()
        assert len(session) == 0
