from enum import Enum

from pydantic import BaseModel, Field


class LogoPosition(str, Enum):
    TOP_LEFT = "top-left"
    TOP_RIGHT = "top-right"
    BOTTOM_LEFT = "bottom-left"
    BOTTOM_RIGHT = "bottom-right"


class LogoAsset(BaseModel):
    canonical_key: str = Field(description="브랜드 로고의 안정 식별자 (예: intel-core)")
    display_name: str
    raster: bytes = Field(repr=False)


class LogoPlacement(BaseModel):
    canonical_key: str
    display_name: str
    position: LogoPosition
    size_percent: float | None = Field(
        default=None, description="이미지 너비 대비 로고 너비 (%). 없으면 적응형 크기 사용"
    )
    source_raster: bytes = Field(default=b"", repr=False)


class LogoPlacementPlan(BaseModel):
    placements: list[LogoPlacement] = Field(default_factory=list)
    analyzed_by_ai: bool = False
