"""Raw label sources: the upstream generator's output per record."""

from __future__ import annotations

import json
import os

from .config import log
from .utils import _normalize_text


def _clean_labels(values) -> list[str]:
    if isinstance(values, str):
        values = [values]
    labels = []
    for value in values or []:
        text = _normalize_text(str(value)) if value is not None else ""
        if text:
            labels.append(text)
    return labels


class JsonlLabelSource:
    """Raw labels from a JSONL file: one {"record_id": ..., "labels": [...]} per line."""

    def __init__(self, path: str):
        self.path = path
        self._labels: dict[str, list[str]] = {}
        self.load()

    def load(self):
        self._labels = {}
        if not os.path.exists(self.path):
            log.warning(f"Label file not found: {self.path}")
            return
        skipped = 0
        with open(self.path, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    row = json.loads(line)
                except json.JSONDecodeError:
                    skipped += 1
                    log.debug("Line %d in %s is not valid JSON", line_no, self.path)
                    continue
                if not isinstance(row, dict) or row.get("record_id") is None:
                    skipped += 1
                    continue
                record_id = str(row["record_id"])
                # Later lines for the same record replace earlier ones
                self._labels.pop(record_id, None)
                self._labels[record_id] = _clean_labels(row.get("labels") or row.get("themes"))
        if skipped:
            log.warning(f"[yellow]{skipped} invalid lines skipped[/yellow] in {self.path}")

    def list_record_ids(self) -> list[str]:
        return list(self._labels)

    def get_raw_labels(self, record_id: str) -> list[str]:
        return list(self._labels.get(str(record_id), []))


class StaticLabelSource:
    """In-memory labels keyed by record id (insertion order is the record order)."""

    def __init__(self, labels_by_record: dict):
        self._labels = {str(k): _clean_labels(v) for k, v in labels_by_record.items()}

    def list_record_ids(self) -> list[str]:
        return list(self._labels)

    def get_raw_labels(self, record_id: str) -> list[str]:
        return list(self._labels.get(str(record_id), []))
