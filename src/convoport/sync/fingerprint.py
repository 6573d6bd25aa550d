"""Content fingerprints for skipping unchanged re-exports."""

import time
from typing import Callable

from convoport.models import ExportRecord, ThreadDetail
from convoport.store import KeyValueStore

RECORD_PREFIX = "export_record_"
BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    value = abs(value)
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(BASE36_DIGITS[rem])
    return sign + "".join(reversed(digits))


def simple_hash(text: str) -> str:
    """32-bit signed polynomial rolling hash (h * 31 + c), in base 36.

    Cheap and deterministic across processes. Not collision resistant.
    """
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return _to_base36(h)


def compute_fingerprint(detail: ThreadDetail) -> str:
    """Fingerprint a thread by id, title, entry count, first and last query."""
    entries = detail.entries
    first_query = entries[0].query if entries else ""
    last_query = entries[-1].query if entries else ""
    content = "|".join([detail.id, detail.title or "", str(len(entries)), first_query, last_query])
    return simple_hash(content)


class FingerprintStore:
    """Owns ExportRecords: which thread was exported, with which fingerprint."""

    def __init__(self, store: KeyValueStore, clock: Callable[[], float] = time.time) -> None:
        self._store = store
        self._clock = clock

    def compute_fingerprint(self, detail: ThreadDetail) -> str:
        return compute_fingerprint(detail)

    def get(self, thread_id: str) -> ExportRecord | None:
        data = self._store.get(RECORD_PREFIX + thread_id)
        return ExportRecord.from_dict(data) if data else None

    def has_changed(self, thread_id: str, fingerprint: str) -> bool:
        """True if the thread was never exported or its fingerprint differs."""
        record = self.get(thread_id)
        return record is None or record.fingerprint != fingerprint

    def save(self, thread_id: str, fingerprint: str) -> ExportRecord:
        """Record a successful export, overwriting any previous record."""
        record = ExportRecord(id=thread_id, fingerprint=fingerprint, exported_at=self._clock())
        self._store.set(RECORD_PREFIX + thread_id, record.to_dict())
        return record

    def is_exported(self, thread_id: str) -> bool:
        return self.get(thread_id) is not None

    def exported_ids(self) -> list[str]:
        return [key[len(RECORD_PREFIX):] for key in self._store.keys(RECORD_PREFIX)]

    def clear(self) -> int:
        """Forget every export record. Returns how many were removed."""
        keys = self._store.keys(RECORD_PREFIX)
        self._store.remove(keys)
        return len(keys)
