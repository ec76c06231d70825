from enum import Enum

from pydantic import BaseModel, Field


class Alignment(str, Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


class TextPosition(BaseModel):
    x: int = Field(description="텍스트 기준점 x 좌표 (px)")
    y: int = Field(description="텍스트 베이스라인 y 좌표 (px)")
    alignment: Alignment = Alignment.LEFT


class TextShadow(BaseModel):
    offset_x: float = 0
    offset_y: float = 1.5
    blur: float = 3
    opacity: float = 0.25


class TextBlock(BaseModel):
    text: str = ""
    font_size: int = Field(description="폰트 크기 (px)")
    font_family: str
    font_weight: str
    color: str = "#FFFFFF"
    text_case: str = Field(description="uppercase | sentence")
    position: TextPosition
    shadow: TextShadow = Field(default_factory=TextShadow)
    line_height_factor: float
    max_width_percent: float = 85


class GradientStop(BaseModel):
    offset: float = Field(description="그라디언트 내 위치 (0=시작, 1=끝)")
    opacity: float


class GradientSettings(BaseModel):
    enabled: bool = True
    position: str = "top"
    height_percent: float = Field(description="이미지 높이 대비 그라디언트 커버리지 (%)")
    opacity: float = Field(description="시작 지점 불투명도")
    opacity_stops: list[GradientStop] = Field(min_length=2, max_length=2)


class LogoSettings(BaseModel):
    enabled: bool = False
    position: str = "bottom-right"
    size_percent: float = 15
    margin_percent: float = 3


class Margins(BaseModel):
    top: int = Field(description="상단 여백 (px)")
    left: int = Field(description="좌측 여백 (px)")
    top_percent: float
    left_percent: float


class OverlayParameters(BaseModel):
    """이미지 한 장의 픽셀 크기에 종속된 오버레이 파라미터 (버전 관리)."""

    version: int = 1
    image_width: int
    image_height: int
    title: TextBlock
    subtitle: TextBlock
    gradient: GradientSettings
    logo: LogoSettings = Field(default_factory=LogoSettings)
    margins: Margins


# ── 부분 업데이트 (None = 변경 없음) ──────────────────────────────────────


class TitleUpdate(BaseModel):
    text: str | None = None
    font_size: int | None = None
    alignment: Alignment | None = None


class SubtitleUpdate(BaseModel):
    text: str | None = None
    font_size: int | None = None


class GradientUpdate(BaseModel):
    height_percent: float | None = None
    opacity: float | None = None


class MarginsUpdate(BaseModel):
    top_percent: float | None = None
    left_percent: float | None = None


class LogoUpdate(BaseModel):
    enabled: bool | None = None
    position: str | None = None
    size_percent: float | None = None
    margin_percent: float | None = None


class ParameterUpdates(BaseModel):
    title: TitleUpdate | None = None
    subtitle: SubtitleUpdate | None = None
    gradient: GradientUpdate | None = None
    margins: MarginsUpdate | None = None
    logo: LogoUpdate | None = None

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class ImageAnalysis(BaseModel):
    """Vision 분석이 추천하는 오버레이 값 (모두 선택)."""

    recommended_title_size: int | None = None
    recommended_margin_top: float | None = None
    recommended_margin_left: float | None = None
    recommended_gradient_coverage: float | None = None
    text_alignment: Alignment | None = None
