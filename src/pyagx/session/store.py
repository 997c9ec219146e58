from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from platformdirs import user_state_dir

from .models import Message, history_to_obj
from ..util.fs import path_to_dirname

logger = logging.getLogger(__name__)

APP_NAME = "pyagx"


def _state_root() -> Path:
    return Path(user_state_dir(APP_NAME))


def session_dir_for(cwd: Path, root: Path | None = None, now: datetime | None = None) -> Path:
    stamp = (now or datetime.now()).strftime("%Y-%m-%d-%H-%M-%S")
    return (root or _state_root()) / "projects" / path_to_dirname(cwd) / "chats" / stamp


def load_transcript(path: Path) -> list[Message]:
    obj = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(obj, list):
        raise ValueError(f"{path}: expected a JSON list of messages")
    return [Message.from_obj(m) for m in obj]


@dataclass
class TranscriptStore:
    """Writes one ``turn-NNNN.json`` snapshot of the history per turn.

    Saving never raises: a failed write is logged and reported to the caller
    through the return value.
    """

    cwd: Path
    root: Path | None = None
    session_dir: Path = field(init=False)
    turn: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        self.session_dir = session_dir_for(self.cwd, self.root)

    def new_session(self) -> Path:
        candidate = session_dir_for(self.cwd, self.root)
        n = 1
        while candidate == self.session_dir or candidate.exists():
            candidate = candidate.with_name(f"{candidate.name.split('_')[0]}_{n}")
            n += 1
        self.session_dir = candidate
        self.turn = 0
        return self.session_dir

    def save(self, history: list[Message]) -> Path | None:
        self.turn += 1
        path = self.session_dir / f"turn-{self.turn:04d}.json"
        try:
            self.session_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(history_to_obj(history), ensure_ascii=False, indent=2), encoding="utf-8")
        except (OSError, TypeError, ValueError):
            logger.exception("couldn't write transcript %s", path)
            return None
        logger.debug("transcript written: %s", path)
        return path
