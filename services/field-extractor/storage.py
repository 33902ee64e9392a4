"""Template persistence.

A store keeps templates keyed by id, the active template id, a capped
prompt history per template and trained per-field instructions. Writes are
last-write-wins per template id; there are no transactions.
"""

import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel

from config import settings
from models import PromptVersion, Template

logger = logging.getLogger(__name__)


class TemplateStore(Protocol):
    def load(self) -> list[Template]: ...
    def get(self, template_id: str) -> Template | None: ...
    def save(self, template: Template) -> None: ...
    def delete(self, template_id: str) -> None: ...
    def get_active_id(self) -> str | None: ...
    def set_active_id(self, template_id: str | None) -> None: ...
    def record_prompt_version(self, version: PromptVersion) -> None: ...
    def prompt_history(self, template_id: str) -> list[PromptVersion]: ...
    def get_trained_instructions(self, template_id: str) -> dict[str, str]: ...
    def save_trained_instructions(self, template_id: str, instructions: dict[str, str]) -> None: ...


class StoreSnapshot(BaseModel):
    templates: list[Template] = []
    active_id: str | None = None
    prompt_history: dict[str, list[PromptVersion]] = {}
    trained_instructions: dict[str, dict[str, str]] = {}


class _SnapshotStore:
    """Store operations over a whole-state snapshot; subclasses read and write it."""

    def __init__(self, history_limit: int | None = None):
        self._history_limit = history_limit if history_limit is not None else settings.PROMPT_HISTORY_LIMIT

    def _read(self) -> StoreSnapshot:
        raise NotImplementedError

    def _write(self, snapshot: StoreSnapshot) -> None:
        raise NotImplementedError

    def load(self) -> list[Template]:
        return self._read().templates

    def get(self, template_id: str) -> Template | None:
        return next((t for t in self.load() if t.id == template_id), None)

    def save(self, template: Template) -> None:
        snapshot = self._read()
        for index, current in enumerate(snapshot.templates):
            if current.id == template.id:
                snapshot.templates[index] = template.model_copy(update={"updated_at": time.time()})
                break
        else:
            snapshot.templates.append(template)
        self._write(snapshot)
        logger.info("Saved template %s (%d fields)", template.id, len(template.fields))

    def delete(self, template_id: str) -> None:
        snapshot = self._read()
        snapshot.templates = [t for t in snapshot.templates if t.id != template_id]
        snapshot.prompt_history.pop(template_id, None)
        snapshot.trained_instructions.pop(template_id, None)
        if snapshot.active_id == template_id:
            snapshot.active_id = None
        self._write(snapshot)
        logger.info("Deleted template %s", template_id)

    def get_active_id(self) -> str | None:
        return self._read().active_id

    def set_active_id(self, template_id: str | None) -> None:
        snapshot = self._read()
        snapshot.active_id = template_id
        self._write(snapshot)

    def record_prompt_version(self, version: PromptVersion) -> None:
        snapshot = self._read()
        history = snapshot.prompt_history.setdefault(version.template_id, [])
        history.append(version)
        # Keep only the most recent versions
        del history[:-self._history_limit]
        self._write(snapshot)

    def prompt_history(self, template_id: str) -> list[PromptVersion]:
        return self._read().prompt_history.get(template_id, [])

    def get_trained_instructions(self, template_id: str) -> dict[str, str]:
        return dict(self._read().trained_instructions.get(template_id, {}))

    def save_trained_instructions(self, template_id: str, instructions: dict[str, str]) -> None:
        snapshot = self._read()
        snapshot.trained_instructions[template_id] = dict(instructions)
        self._write(snapshot)


class InMemoryTemplateStore(_SnapshotStore):
    def __init__(self, history_limit: int | None = None):
        super().__init__(history_limit)
        self._snapshot = StoreSnapshot()

    def _read(self) -> StoreSnapshot:
        return self._snapshot.model_copy(deep=True)

    def _write(self, snapshot: StoreSnapshot) -> None:
        self._snapshot = snapshot.model_copy(deep=True)


class JsonFileTemplateStore(_SnapshotStore):
    """Whole store in one JSON file, replaced atomically on every write."""

    def __init__(self, path: str | Path, history_limit: int | None = None):
        super().__init__(history_limit)
        self._path = Path(path)

    def _read(self) -> StoreSnapshot:
        if not self._path.exists():
            return StoreSnapshot()
        return StoreSnapshot.model_validate_json(self._path.read_text(encoding="utf-8"))

    def _write(self, snapshot: StoreSnapshot) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".templates-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(snapshot.model_dump_json(indent=2))
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


def create_template_store() -> TemplateStore:
    if settings.TEMPLATE_STORE_PATH:
        logger.info("Using template store at %s", settings.TEMPLATE_STORE_PATH)
        return JsonFileTemplateStore(settings.TEMPLATE_STORE_PATH)
    logger.info("TEMPLATE_STORE_PATH is empty, templates kept in memory")
    return InMemoryTemplateStore()
