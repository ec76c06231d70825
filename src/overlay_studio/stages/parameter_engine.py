"""오버레이 파라미터 엔진

이미지 픽셀 크기와 카피 텍스트로부터 결정론적인 오버레이 파라미터를 만들고,
채팅/UI에서 들어온 부분 업데이트를 버전을 올리며 병합합니다.

텍스트 위치(title/subtitle position)는 저장값이 아니라 항상 여백과 폰트 크기로부터
다시 계산됩니다. 병합할 때마다 재계산하므로 위치가 stale 상태로 남지 않습니다.
"""
from __future__ import annotations

import math
import re

from overlay_studio.models.parameters import (
    Alignment,
    GradientSettings,
    GradientStop,
    ImageAnalysis,
    LogoSettings,
    Margins,
    OverlayParameters,
    ParameterUpdates,
    TextBlock,
    TextPosition,
    TextShadow,
)

TITLE_WIDTH_RATIO = 0.045
TITLE_MIN_SIZE = 36
TITLE_MAX_SIZE = 72
SUBTITLE_RATIO = 0.35

DEFAULT_TOP_PERCENT = 8
DEFAULT_LEFT_PERCENT = 5

DEFAULT_GRADIENT_HEIGHT_PERCENT = 22
DEFAULT_GRADIENT_OPACITY = 0.35

# parse_parameter_updates 가 적용하는 경계값
TITLE_SIZE_STEP, TITLE_SIZE_BOUNDS = 8, (24, 96)
SUBTITLE_SIZE_STEP, SUBTITLE_SIZE_BOUNDS = 4, (12, 48)
OPACITY_STEP, OPACITY_BOUNDS = 0.1, (0.1, 0.6)
GRADIENT_HEIGHT_STEP, GRADIENT_HEIGHT_BOUNDS = 5, (10, 40)
MARGIN_STEP = 2
TOP_MARGIN_BOUNDS = (2, 25)
LEFT_MARGIN_BOUNDS = (2, 20)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value, low, high):
    return max(low, min(high, value))


def _subtitle_size_for(title_size: int) -> int:
    return _round_half_up(title_size * SUBTITLE_RATIO)


def _percent_of(total: int, percent: float) -> int:
    return math.floor(total * percent / 100)


def _recalculate_positions(params: OverlayParameters) -> None:
    """여백과 폰트 크기로부터 두 텍스트 블록의 위치를 처음부터 다시 계산합니다."""
    title_size = params.title.font_size
    params.title.position.x = params.margins.left
    params.title.position.y = params.margins.top + title_size
    params.subtitle.position.x = params.margins.left
    params.subtitle.position.y = (
        params.title.position.y + (title_size * 6) // 10 + params.subtitle.font_size
    )


def calculate_default_parameters(
    width: int,
    height: int,
    title: str,
    subtitle: str,
) -> OverlayParameters:
    """이미지 크기에 비례하는 기본 오버레이 파라미터를 계산합니다.

    - 타이틀 폰트: 너비의 4.5%, [36, 72] px 로 클램핑
    - 서브타이틀 폰트: 타이틀의 0.35배
    - 여백: 상단 높이의 8%, 좌측 너비의 5%
    - 그라디언트: 상단 22% 커버리지, 0.35 → 0 선형 페이드

    같은 입력이면 항상 같은 결과를 반환합니다 (프롬프트 재현성).
    """
    title_size = _round_half_up(_clamp(width * TITLE_WIDTH_RATIO, TITLE_MIN_SIZE, TITLE_MAX_SIZE))
    subtitle_size = _subtitle_size_for(title_size)

    margins = Margins(
        top=_percent_of(height, DEFAULT_TOP_PERCENT),
        left=_percent_of(width, DEFAULT_LEFT_PERCENT),
        top_percent=DEFAULT_TOP_PERCENT,
        left_percent=DEFAULT_LEFT_PERCENT,
    )

    params = OverlayParameters(
        version=1,
        image_width=width,
        image_height=height,
        title=TextBlock(
            text=title or "",
            font_size=title_size,
            font_family="Saira-Bold",
            font_weight="Bold",
            text_case="uppercase",
            position=TextPosition(x=0, y=0),
            shadow=TextShadow(),
            line_height_factor=1.1,
        ),
        subtitle=TextBlock(
            text=subtitle or "",
            font_size=subtitle_size,
            font_family="Saira-Regular",
            font_weight="Regular",
            text_case="sentence",
            position=TextPosition(x=0, y=0),
            shadow=TextShadow(),
            line_height_factor=1.3,
        ),
        gradient=GradientSettings(
            enabled=True,
            position="top",
            height_percent=DEFAULT_GRADIENT_HEIGHT_PERCENT,
            opacity=DEFAULT_GRADIENT_OPACITY,
            opacity_stops=[
                GradientStop(offset=0, opacity=DEFAULT_GRADIENT_OPACITY),
                GradientStop(offset=1, opacity=0),
            ],
        ),
        logo=LogoSettings(),
        margins=margins,
    )
    _recalculate_positions(params)
    return params


def calculate_parameters_from_analysis(
    width: int,
    height: int,
    title: str,
    subtitle: str,
    analysis: ImageAnalysis | None,
) -> OverlayParameters:
    """Vision 분석 추천값으로 기본 파라미터를 덮어씁니다."""
    params = calculate_default_parameters(width, height, title, subtitle)
    if analysis is None:
        return params

    if analysis.recommended_title_size:
        params.title.font_size = analysis.recommended_title_size
        params.subtitle.font_size = _subtitle_size_for(analysis.recommended_title_size)
    if analysis.recommended_margin_top:
        params.margins.top_percent = analysis.recommended_margin_top
        params.margins.top = _percent_of(height, analysis.recommended_margin_top)
    if analysis.recommended_margin_left:
        params.margins.left_percent = analysis.recommended_margin_left
        params.margins.left = _percent_of(width, analysis.recommended_margin_left)
    if analysis.recommended_gradient_coverage:
        params.gradient.height_percent = analysis.recommended_gradient_coverage
    if analysis.text_alignment:
        params.title.position.alignment = analysis.text_alignment
        params.subtitle.position.alignment = analysis.text_alignment

    _recalculate_positions(params)
    return params


def merge_parameter_updates(
    existing: OverlayParameters,
    updates: ParameterUpdates | dict,
) -> OverlayParameters:
    """부분 업데이트를 적용한 새 파라미터를 반환합니다 (기존 객체는 변경하지 않음).

    - version 은 항상 1 증가
    - title.font_size 변경 시 subtitle 크기도 0.35 비율로 재계산
    - title.alignment 변경 시 subtitle 정렬도 동일하게 설정
    - margins.*_percent 변경 시 픽셀 여백 재계산
    - 마지막에 두 텍스트 블록 위치를 항상 재계산

    값 범위 검증은 호출자(parse_parameter_updates 등)의 책임입니다.
    """
    if isinstance(updates, dict):
        updates = ParameterUpdates.model_validate(updates)

    merged = existing.model_copy(deep=True)
    merged.version = existing.version + 1

    if updates.title is not None:
        if updates.title.text is not None:
            merged.title.text = updates.title.text
        if updates.title.font_size is not None:
            merged.title.font_size = updates.title.font_size
            merged.subtitle.font_size = _subtitle_size_for(updates.title.font_size)
        if updates.title.alignment is not None:
            merged.title.position.alignment = updates.title.alignment
            merged.subtitle.position.alignment = updates.title.alignment

    if updates.subtitle is not None:
        if updates.subtitle.text is not None:
            merged.subtitle.text = updates.subtitle.text
        if updates.subtitle.font_size is not None:
            merged.subtitle.font_size = updates.subtitle.font_size

    if updates.gradient is not None:
        if updates.gradient.height_percent is not None:
            merged.gradient.height_percent = updates.gradient.height_percent
        if updates.gradient.opacity is not None:
            merged.gradient.opacity = updates.gradient.opacity
            merged.gradient.opacity_stops[0].opacity = updates.gradient.opacity

    if updates.margins is not None:
        if updates.margins.top_percent is not None:
            merged.margins.top_percent = updates.margins.top_percent
            merged.margins.top = _percent_of(merged.image_height, updates.margins.top_percent)
        if updates.margins.left_percent is not None:
            merged.margins.left_percent = updates.margins.left_percent
            merged.margins.left = _percent_of(merged.image_width, updates.margins.left_percent)

    if updates.logo is not None:
        for field_name, value in updates.logo.model_dump(exclude_none=True).items():
            setattr(merged.logo, field_name, value)

    _recalculate_positions(merged)
    return merged


def parse_parameter_updates(message: str, current: OverlayParameters) -> ParameterUpdates:
    """자연어 수정 요청을 경계값이 적용된 ParameterUpdates 로 변환합니다.

    예) "make the title bigger", "darker gradient", "move the text up",
        "center align the text"
    """
    text = message.lower()
    updates: dict[str, dict] = {}

    def has(*words: str) -> bool:
        # 단어 앞 경계만 검사 ("subtitle" 이 "title" 로 잡히지 않도록)
        return any(re.search(rf"\b{re.escape(word)}", text) for word in words)

    if has("title", "headline"):
        if has("bigger", "larger", "increase"):
            updates["title"] = {
                "font_size": min(TITLE_SIZE_BOUNDS[1], current.title.font_size + TITLE_SIZE_STEP)
            }
        elif has("smaller", "decrease"):
            updates["title"] = {
                "font_size": max(TITLE_SIZE_BOUNDS[0], current.title.font_size - TITLE_SIZE_STEP)
            }

    if has("subtitle", "subheading"):
        if has("bigger", "larger"):
            updates["subtitle"] = {
                "font_size": min(
                    SUBTITLE_SIZE_BOUNDS[1], current.subtitle.font_size + SUBTITLE_SIZE_STEP
                )
            }
        elif has("smaller"):
            updates["subtitle"] = {
                "font_size": max(
                    SUBTITLE_SIZE_BOUNDS[0], current.subtitle.font_size - SUBTITLE_SIZE_STEP
                )
            }

    if has("gradient", "shading", "overlay"):
        gradient: dict[str, float] = {}
        if has("darker", "more", "increase"):
            gradient["opacity"] = round(
                min(OPACITY_BOUNDS[1], current.gradient.opacity + OPACITY_STEP), 2
            )
        elif has("lighter", "less", "decrease"):
            gradient["opacity"] = round(
                max(OPACITY_BOUNDS[0], current.gradient.opacity - OPACITY_STEP), 2
            )
        if has("extend", "taller"):
            gradient["height_percent"] = min(
                GRADIENT_HEIGHT_BOUNDS[1], current.gradient.height_percent + GRADIENT_HEIGHT_STEP
            )
        elif has("shorter", "less coverage"):
            gradient["height_percent"] = max(
                GRADIENT_HEIGHT_BOUNDS[0], current.gradient.height_percent - GRADIENT_HEIGHT_STEP
            )
        if gradient:
            updates["gradient"] = gradient

    if has("move", "position"):
        margins: dict[str, float] = {}
        if has("up", "higher"):
            margins["top_percent"] = max(
                TOP_MARGIN_BOUNDS[0], current.margins.top_percent - MARGIN_STEP
            )
        elif has("down", "lower"):
            margins["top_percent"] = min(
                TOP_MARGIN_BOUNDS[1], current.margins.top_percent + MARGIN_STEP
            )
        if has("left"):
            margins["left_percent"] = max(
                LEFT_MARGIN_BOUNDS[0], current.margins.left_percent - MARGIN_STEP
            )
        elif has("right"):
            margins["left_percent"] = min(
                LEFT_MARGIN_BOUNDS[1], current.margins.left_percent + MARGIN_STEP
            )
        if margins:
            updates["margins"] = margins

    alignment: Alignment | None = None
    if has("center") and has("text", "align"):
        alignment = Alignment.CENTER
    elif has("right") and has("align"):
        alignment = Alignment.RIGHT
    elif has("left") and has("align"):
        alignment = Alignment.LEFT
    if alignment is not None:
        updates.setdefault("title", {})["alignment"] = alignment

    return ParameterUpdates.model_validate(updates)
