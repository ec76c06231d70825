from enum import Enum

from pydantic import BaseModel, Field

from .image_spec import ImageSpec
from .parameters import OverlayParameters


class MatchKind(str, Enum):
    DIRECT = "direct"
    CYCLIC = "cyclic"


class SourceImage(BaseModel):
    storage_id: str
    name: str
    data: bytes = Field(repr=False)
    mime_type: str = "image/jpeg"


class ImageSpecMatch(BaseModel):
    image_index: int
    image: SourceImage
    spec_index: int
    spec: ImageSpec
    match_kind: MatchKind


class EditedImageRecord(BaseModel):
    """배치 아이템 하나가 성공할 때마다 생성되는 편집 결과 기록 (불변, 추가 전용)."""

    id: str = Field(description="스토리지에 업로드된 편집본 ID")
    name: str
    source_image_id: str
    original_name: str
    url: str
    parameters: OverlayParameters
    version: int
    logo_applied: bool = False
    spec_index: int = 0
    match_kind: MatchKind = MatchKind.DIRECT
