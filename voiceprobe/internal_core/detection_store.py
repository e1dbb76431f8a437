from __future__ import annotations

from abc import ABC, abstractmethod
from itertools import count
from threading import RLock
from typing import Dict, List, Optional, Tuple

from .contracts import Detection


class DetectionStore(ABC):
    @abstractmethod
    def save(self, detection: Detection) -> Detection: ...

    @abstractmethod
    def find_by_id(self, detection_id: str) -> Optional[Detection]: ...

    @abstractmethod
    def find_page_by_owner(self, owner_id: str, page: int, size: int) -> List[Detection]: ...

    @abstractmethod
    def count_by_owner(self, owner_id: str) -> int: ...

    @abstractmethod
    def delete(self, detection_id: str) -> bool: ...


class InMemoryDetectionStore(DetectionStore):
    def __init__(self) -> None:
        self._lock = RLock()
        self._seq = count()
        # detection_id -> (insertion sequence, record)
        self._records: Dict[str, Tuple[int, Detection]] = {}

    def save(self, detection: Detection) -> Detection:
        if not detection.owner_id:
            raise ValueError("Only owned detections can be stored.")
        with self._lock:
            existing = self._records.get(detection.id)
            if existing is not None:
                # Records are append-only.
                raise ValueError(f"Detection already stored: {detection.id}")
            self._records[detection.id] = (next(self._seq), detection)
        return detection

    def find_by_id(self, detection_id: str) -> Optional[Detection]:
        with self._lock:
            entry = self._records.get(detection_id)
        return entry[1] if entry is not None else None

    def _owned(self, owner_id: str) -> List[Tuple[int, Detection]]:
        with self._lock:
            return [entry for entry in self._records.values() if entry[1].owner_id == owner_id]

    def find_page_by_owner(self, owner_id: str, page: int, size: int) -> List[Detection]:
        if page < 0:
            raise ValueError("page must be >= 0")
        if size < 1:
            raise ValueError("size must be >= 1")
        owned = self._owned(owner_id)
        owned.sort(key=lambda entry: (entry[1].created_at, entry[0]), reverse=True)
        start = page * size
        return [detection for _, detection in owned[start : start + size]]

    def count_by_owner(self, owner_id: str) -> int:
        return len(self._owned(owner_id))

    def delete(self, detection_id: str) -> bool:
        with self._lock:
            return self._records.pop(detection_id, None) is not None
