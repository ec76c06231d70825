"""블롭 스토리지 인터페이스와 로컬 폴더 구현

네트워크 스토리지는 일시적으로 실패할 수 있으며, 재시도는 호출자 책임입니다.
"""
from __future__ import annotations

import asyncio
import re
import uuid
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel


class StoredFile(BaseModel):
    id: str
    name: str
    mime_type: str


class StorageProvider(Protocol):
    async def upload(self, data: bytes, name: str, mime_type: str, folder_ref: str) -> StoredFile: ...

    async def download(self, file_id: str) -> bytes: ...

    def public_url(self, file_id: str) -> str: ...


def _safe_name(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "-", name).strip("-") or "file"


class LocalFolderStorage:
    """파일 ID = 루트 기준 상대 경로 ("<folder>/<uuid>_<name>")."""

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, file_id: str) -> Path:
        path = (self.root / file_id).resolve()
        if self.root.resolve() not in path.parents:
            raise FileNotFoundError(file_id)
        return path

    async def upload(self, data: bytes, name: str, mime_type: str, folder_ref: str) -> StoredFile:
        file_id = f"{_safe_name(folder_ref)}/{uuid.uuid4().hex[:12]}_{_safe_name(name)}"
        path = self._path(file_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, data)
        return StoredFile(id=file_id, name=name, mime_type=mime_type)

    async def download(self, file_id: str) -> bytes:
        return await asyncio.to_thread(self._path(file_id).read_bytes)

    def public_url(self, file_id: str) -> str:
        return str(self._path(file_id))
