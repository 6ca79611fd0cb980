"""Per-directory conversation memory persisted as JSON."""

import hashlib
import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union
from pydantic import BaseModel, Field, ValidationError
from ..llm.base import ImageBlock, Role, TextBlock, Turn

logger = logging.getLogger(__name__)


def directory_hash(path: Union[str, Path]) -> str:
    """Stable key for a working directory: md5 of its absolute path, 12 hex chars."""
    absolute = os.path.abspath(os.path.expanduser(str(path)))
    return hashlib.md5(absolute.encode("utf-8")).hexdigest()[:12]


def truncate_history(turns: List[Turn], max_turns: int) -> List[Turn]:
    """Keep the last ``max_turns`` turns.

    The window never starts with an operator turn that only carries tool
    results, since its tool-use request was cut off.
    """
    window = list(turns[-max_turns:]) if max_turns > 0 else []
    while window and window[0].role == Role.OPERATOR and window[0].tool_results and not window[0].text:
        window.pop(0)
    return window


def strip_images(turn: Turn) -> Turn:
    """Replace screen captures with a placeholder so memory files stay small."""
    if not any(isinstance(b, ImageBlock) for b in turn.content):
        return turn
    content = [
        TextBlock(text="[screen capture omitted]") if isinstance(b, ImageBlock) else b
        for b in turn.content
    ]
    return Turn(role=turn.role, content=content)


class Session(BaseModel):
    """Conversation state for one working directory."""
    working_directory: str
    working_directory_hash: str
    history: List[Turn] = Field(default_factory=list)
    selected_model: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def for_directory(cls, path: Union[str, Path], model: Optional[str] = None) -> "Session":
        absolute = os.path.abspath(os.path.expanduser(str(path)))
        return cls(
            working_directory=absolute,
            working_directory_hash=directory_hash(absolute),
            selected_model=model,
        )

    def append(self, turn: Turn) -> None:
        self.history.append(turn)
        self.updated_at = datetime.now()

    def clear(self) -> None:
        self.history = []
        self.updated_at = datetime.now()

    def __len__(self) -> int:
        return len(self.history)


class SessionStore:
    """Reads and writes ``<memory_dir>/<hash>.json``.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace`` so a crash never leaves a half-written file.
    """

    def __init__(self, memory_dir: Path, max_turns: int = 100):
        self.memory_dir = Path(memory_dir)
        self.max_turns = max_turns

    def path_for(self, working_directory: Union[str, Path]) -> Path:
        return self.memory_dir / f"{directory_hash(working_directory)}.json"

    def load(self, working_directory: Union[str, Path], model: Optional[str] = None) -> Session:
        """Hydrate the session for ``working_directory``, or start a new one."""
        path = self.path_for(working_directory)
        if not path.exists():
            return Session.for_directory(working_directory, model)

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            session = Session.model_validate(data)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable memory file {path}: {e}")
            return Session.for_directory(working_directory, model)

        session.history = truncate_history(session.history, self.max_turns)
        if model and not session.selected_model:
            session.selected_model = model
        logger.debug("Loaded %d turns from %s", len(session.history), path)
        return session

    def save(self, session: Session) -> Path:
        """Persist the most recent turns of ``session`` atomically."""
        self.memory_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(session.working_directory)

        history = [strip_images(t) for t in truncate_history(session.history, self.max_turns)]
        snapshot = session.model_copy(update={"history": history})
        payload = snapshot.model_dump_json(indent=2)

        fd, temp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=".tmp", dir=str(self.memory_dir))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_name, path)
        except BaseException:
            try:
                os.unlink(temp_name)
            except OSError:
                pass
            raise

        logger.debug("Saved %d turns to %s", len(snapshot.history), path)
        return path

    def forget(self, working_directory: Union[str, Path]) -> bool:
        """Delete the memory file for ``working_directory``; True if one existed."""
        path = self.path_for(working_directory)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.info(f"Deleted memory file {path}")
        return True

    def list_sessions(self) -> List[Path]:
        if not self.memory_dir.exists():
            return []
        return sorted(self.memory_dir.glob("*.json"))
