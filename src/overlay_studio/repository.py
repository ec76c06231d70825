"""편집 결과 기록 저장소

작업(job)별 EditedImageRecord 는 추가만 가능하고 삭제·수정하지 않습니다.
파이프라인에 주입하므로 테스트에서는 인메모리 구현으로 교체할 수 있습니다.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Protocol

from overlay_studio.models.records import EditedImageRecord


class EditedImageStore(Protocol):
    async def append(self, job_id: str, record: EditedImageRecord) -> None: ...

    async def list_records(self, job_id: str) -> list[EditedImageRecord]: ...

    async def latest(self, job_id: str, source_image_id: str) -> EditedImageRecord | None: ...


class InMemoryEditedImageStore:
    def __init__(self) -> None:
        self._records: dict[str, list[EditedImageRecord]] = defaultdict(list)

    async def append(self, job_id: str, record: EditedImageRecord) -> None:
        self._records[job_id].append(record)

    async def list_records(self, job_id: str) -> list[EditedImageRecord]:
        return list(self._records.get(job_id, []))

    async def latest(self, job_id: str, source_image_id: str) -> EditedImageRecord | None:
        candidates = [
            record
            for record in self._records.get(job_id, [])
            if record.source_image_id == source_image_id
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda record: record.version)
