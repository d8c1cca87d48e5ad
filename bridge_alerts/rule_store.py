"""Read-only access to alert rule documents.

The admin UI owns rule documents; this side only reads them. Every fetch builds
new frozen rule values, so callers never share objects with the store.
"""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from threading import Lock
from typing import Iterable, Protocol

from .errors import RuleDocumentError, RuleNotFound, StoreUnavailable
from .models.rules import AlertRule, rule_from_document

logger = logging.getLogger(__name__)


class RuleStore(Protocol):
    def list_enabled_rules(self) -> list[AlertRule]: ...

    def get_rule(self, rule_id: str) -> AlertRule: ...

    def rule_ids(self) -> set[str]: ...

    def change_token(self) -> object: ...


def _parse_documents(docs: Iterable[dict]) -> list[AlertRule]:
    rules: list[AlertRule] = []
    seen: set[str] = set()
    for doc in docs:
        try:
            rule = rule_from_document(doc)
        except RuleDocumentError as exc:
            doc_id = doc.get("_id") if isinstance(doc, dict) else None
            logger.warning("Skipping invalid rule document %s: %s", doc_id, exc)
            continue
        if rule.id in seen:
            logger.warning("Skipping duplicate rule id %s", rule.id)
            continue
        seen.add(rule.id)
        rules.append(rule)
    return rules


def _document_ids(docs: Iterable[dict]) -> set[str]:
    return {
        str(doc["_id"]).strip()
        for doc in docs
        if isinstance(doc, dict) and doc.get("_id") is not None
    }


class InMemoryRuleStore:
    """Rule store over a list of documents held in process."""

    def __init__(self, documents: Iterable[dict] | None = None) -> None:
        self._lock = Lock()
        self._documents: list[dict] = [copy.deepcopy(d) for d in documents or []]
        self._version = 0

    def replace(self, documents: Iterable[dict]) -> None:
        """Swap the whole collection, as an external editor would."""
        docs = [copy.deepcopy(d) for d in documents]
        with self._lock:
            self._documents = docs
            self._version += 1

    def _documents_copy(self) -> list[dict]:
        with self._lock:
            return copy.deepcopy(self._documents)

    def list_enabled_rules(self) -> list[AlertRule]:
        return [r for r in _parse_documents(self._documents_copy()) if r.enabled]

    def get_rule(self, rule_id: str) -> AlertRule:
        for rule in _parse_documents(self._documents_copy()):
            if rule.id == rule_id:
                return rule
        raise RuleNotFound(rule_id)

    def rule_ids(self) -> set[str]:
        return _document_ids(self._documents_copy())

    def change_token(self) -> int:
        with self._lock:
            return self._version


class JsonRuleStore:
    """Rule store backed by a JSON file holding a list of rule documents.

    A missing file is an empty collection. An unreadable or corrupt file raises
    ``StoreUnavailable`` so the engine can keep its previous snapshot.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _load_documents(self) -> list[dict]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StoreUnavailable(f"Cannot read rules from {self._path}: {exc}") from exc
        if isinstance(data, dict):
            data = data.get("rules", [])
        if not isinstance(data, list):
            raise StoreUnavailable(f"Rules file {self._path} must hold a list")
        return data

    def list_enabled_rules(self) -> list[AlertRule]:
        return [r for r in _parse_documents(self._load_documents()) if r.enabled]

    def get_rule(self, rule_id: str) -> AlertRule:
        for rule in _parse_documents(self._load_documents()):
            if rule.id == rule_id:
                return rule
        raise RuleNotFound(rule_id)

    def rule_ids(self) -> set[str]:
        """Ids of every stored rule, disabled ones included."""
        return _document_ids(self._load_documents())

    def change_token(self) -> tuple[int, int] | None:
        """Modification time and size of the rules file, ``None`` if missing."""
        try:
            stat = self._path.stat()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreUnavailable(f"Cannot stat {self._path}: {exc}") from exc
        return stat.st_mtime_ns, stat.st_size


__all__ = ["InMemoryRuleStore", "JsonRuleStore", "RuleStore"]
