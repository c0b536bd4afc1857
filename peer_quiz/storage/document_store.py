"""Key to JSON-document stores used to persist quizzes, scores and evaluations."""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass
import json
from pathlib import Path
import re
from threading import Lock
from typing import Any, Protocol

Document = dict[str, Any]

_UNSAFE_CHARS = re.compile(r"[^a-z0-9]+")


def sanitize_file_name(name: str) -> str:
    """Lower-case, non-alphanumerics collapsed to single dashes."""
    cleaned = _UNSAFE_CHARS.sub("-", name.lower()).strip("-")
    return cleaned or "unnamed"


@dataclass(slots=True, frozen=True)
class DocumentKey:
    """Address of one document: a collection plus a host name and optional room code."""

    collection: str
    host_name: str
    room_code: str | None = None

    def file_stem(self) -> str:
        stem = sanitize_file_name(self.host_name)
        if self.room_code:
            stem = f"{stem}-{sanitize_file_name(self.room_code)}"
        return stem


class DocumentStore(Protocol):
    def get(self, key: DocumentKey) -> Document | None: ...

    def put(self, key: DocumentKey, document: Document) -> None: ...

    def exists(self, key: DocumentKey) -> bool: ...


class JsonFileDocumentStore:
    """Stores each document as ``<base_dir>/<collection>/<stem>.json``.

    Writes go to a temporary file that then replaces the target, so readers
    never see a half-written document.
    """

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = Path(base_dir)
        self._lock = Lock()

    def path_for(self, key: DocumentKey) -> Path:
        return self._base_dir / sanitize_file_name(key.collection) / f"{key.file_stem()}.json"

    def get(self, key: DocumentKey) -> Document | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def put(self, key: DocumentKey, document: Document) -> None:
        path = self.path_for(key)
        payload = json.dumps(document, indent=2, ensure_ascii=False)
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = path.with_suffix(".json.tmp")
            temp_path.write_text(payload, encoding="utf-8")
            temp_path.replace(path)

    def exists(self, key: DocumentKey) -> bool:
        return self.path_for(key).exists()


class MemoryDocumentStore:
    """In-process store with the same copy semantics as the file store."""

    def __init__(self) -> None:
        self._documents: dict[tuple[str, str], Document] = {}
        self._lock = Lock()

    @staticmethod
    def _slot(key: DocumentKey) -> tuple[str, str]:
        return (key.collection, key.file_stem())

    def get(self, key: DocumentKey) -> Document | None:
        with self._lock:
            document = self._documents.get(self._slot(key))
            return deepcopy(document) if document is not None else None

    def put(self, key: DocumentKey, document: Document) -> None:
        # Round-trip through JSON so unserializable documents fail like the file store.
        snapshot = json.loads(json.dumps(document))
        with self._lock:
            self._documents[self._slot(key)] = snapshot

    def exists(self, key: DocumentKey) -> bool:
        with self._lock:
            return self._slot(key) in self._documents
