"""오버레이 파라미터 → 이미지 편집 지시문 컴파일러

프로바이더가 숫자·CSS 표기를 이미지에 글자로 그려 넣는 문제가 있어
크기·불투명도·그림자·위치를 모두 산문으로 표현합니다. (px, %, rgba, #hex 미사용)
같은 파라미터는 항상 바이트 단위로 같은 문자열을 만듭니다.
"""
from __future__ import annotations

from pathlib import Path

from overlay_studio.models.image_spec import ImageSpec
from overlay_studio.models.parameters import Alignment, OverlayParameters, TextBlock, TextShadow

_TEMPLATE_PATH = Path(__file__).parent.parent / "utils/prompt_templates/overlay_edit.txt"

_FALLBACK_TITLE = "PRODUCT"

_NUMBER_WORDS = {
    0: "zero", 1: "one", 2: "two", 3: "three", 4: "four", 5: "five",
    6: "six", 7: "seven", 8: "eight", 9: "nine", 10: "ten",
    11: "eleven", 12: "twelve", 13: "thirteen", 14: "fourteen", 15: "fifteen",
    16: "sixteen", 17: "seventeen", 18: "eighteen", 19: "nineteen",
}
_TENS_WORDS = {
    20: "twenty", 30: "thirty", 40: "forty", 50: "fifty",
    60: "sixty", 70: "seventy", 80: "eighty", 90: "ninety",
}

_COLOR_NAMES = {
    "#FFFFFF": "pure white",
    "#000000": "pure black",
    "#141414": "near-black dark gray",
}


def _number_words(value: float) -> str:
    n = int(round(value))
    if n < 0:
        return "minus " + _number_words(-n)
    if n < 20:
        return _NUMBER_WORDS[n]
    if n < 100:
        tens, ones = divmod(n, 10)
        word = _TENS_WORDS[tens * 10]
        return word if ones == 0 else f"{word}-{_NUMBER_WORDS[ones]}"
    if n == 100:
        return "one hundred"
    return str(n)


def _share(percent: float) -> str:
    """비율을 "about twenty-two percent" 형태의 산문으로 변환합니다."""
    if percent >= 100:
        return "the full"
    return f"about {_number_words(percent)} percent"


def _strength(opacity: float) -> str:
    if opacity <= 0.15:
        return "very faint"
    if opacity <= 0.3:
        return "light"
    if opacity <= 0.4:
        return "moderate"
    if opacity <= 0.5:
        return "strong"
    return "heavy"


def _size_words(font_size: int, image_width: int) -> str:
    """폰트 크기를 이미지 너비 대비 상대 크기로 묘사합니다."""
    ratio = font_size / max(image_width, 1)
    if ratio >= 0.06:
        scale = "very large, dominant"
    elif ratio >= 0.04:
        scale = "large, prominent"
    elif ratio >= 0.025:
        scale = "medium"
    elif ratio >= 0.015:
        scale = "small but clearly legible"
    else:
        scale = "fine, discreet"
    return f"{scale} (letter height roughly {_share(ratio * 100)} of the image width)"


def _case_words(block: TextBlock) -> str:
    if block.text_case == "uppercase":
        return "all capital letters"
    return "exactly as provided, do not change capitalization"


def _color_words(color: str) -> str:
    return _COLOR_NAMES.get(color.upper(), "the exact color of the brand guideline")


def _weight_words(weight: str) -> str:
    return {"bold": "bold", "regular": "regular", "light": "light"}.get(
        weight.lower(), weight.lower()
    )


def _line_spacing_words(factor: float) -> str:
    if factor <= 1.15:
        return "tight"
    if factor <= 1.35:
        return "comfortable"
    return "airy"


def _shadow_direction(shadow: TextShadow) -> str:
    """이미지 좌표 기준 (y 양수 = 아래) 그림자 방향."""
    vertical = "downward" if shadow.offset_y > 0 else "upward" if shadow.offset_y < 0 else ""
    horizontal = "to the right" if shadow.offset_x > 0 else "to the left" if shadow.offset_x < 0 else ""
    if vertical and horizontal:
        return f"{vertical} and {horizontal}"
    return vertical or horizontal


def _shadow_words(shadow: TextShadow) -> str:
    if shadow.opacity <= 0 or (shadow.offset_y == 0 and shadow.offset_x == 0 and shadow.blur == 0):
        return "none"
    softness = "soft, diffused" if shadow.blur >= 3 else "crisp"
    distance = "slightly" if max(abs(shadow.offset_x), abs(shadow.offset_y)) <= 2 else "clearly"
    direction = _shadow_direction(shadow)
    if not direction:
        return f"a {_strength(shadow.opacity)}, {softness} dark glow centered behind the text"
    return (
        f"a {_strength(shadow.opacity)}, {softness} dark drop shadow "
        f"offset {distance} {direction}, just enough to lift the text off the image"
    )


def _gradient_clause(params: OverlayParameters) -> str:
    gradient = params.gradient
    if not gradient.enabled:
        return "- Do not add any gradient; place the text directly on the image"
    edge = gradient.position if gradient.position in ("top", "bottom") else "top"
    return "\n".join(
        [
            f"- Apply a smooth linear gradient starting at the {edge} edge",
            f"- Coverage: the {edge} {_share(gradient.height_percent)} of the image height",
            "- Color: a dark charcoal gray",
            f"- Strength: {_strength(gradient.opacity)} darkness at the {edge} edge, "
            "fading evenly to fully transparent where the gradient ends",
            "- No visible band or hard edge anywhere in the transition",
        ]
    )


def _positioning_clause(params: OverlayParameters) -> str:
    alignment = params.title.position.alignment
    top = _share(params.margins.top_percent)
    side = _share(params.margins.left_percent)
    if alignment == Alignment.CENTER:
        return (
            f"Center the title horizontally, placed {top} of the image height down from the top edge. "
            "Center the subtitle horizontally directly beneath the title, separated by a small gap."
        )
    if alignment == Alignment.RIGHT:
        return (
            f"Right-align the title, inset {side} of the image width from the right edge "
            f"and {top} of the image height down from the top edge. "
            "Right-align the subtitle on the same right edge, directly beneath the title "
            "with a small gap."
        )
    return (
        f"Left-align the title, inset {side} of the image width from the left edge "
        f"and {top} of the image height down from the top edge. "
        "Left-align the subtitle on the same left edge, directly beneath the title "
        "with a small gap."
    )


def _display_text(block: TextBlock, fallback: str = "") -> str:
    text = block.text or fallback
    return text.upper() if block.text_case == "uppercase" else text


def generate_prompt_from_parameters(params: OverlayParameters) -> str:
    """오버레이 파라미터를 결정론적인 편집 지시문으로 렌더링합니다."""
    template = _TEMPLATE_PATH.read_text(encoding="utf-8")
    title, subtitle = params.title, params.subtitle
    return template.format(
        title=_display_text(title, _FALLBACK_TITLE),
        subtitle=_display_text(subtitle),
        gradient_clause=_gradient_clause(params),
        title_font=title.font_family.split("-")[0],
        title_weight=_weight_words(title.font_weight),
        title_size=_size_words(title.font_size, params.image_width),
        title_case=_case_words(title),
        title_color=_color_words(title.color),
        title_line_spacing=_line_spacing_words(title.line_height_factor),
        title_width=_share(title.max_width_percent),
        title_shadow=_shadow_words(title.shadow),
        subtitle_font=subtitle.font_family.split("-")[0],
        subtitle_weight=_weight_words(subtitle.font_weight),
        subtitle_size=_size_words(subtitle.font_size, params.image_width),
        subtitle_case=_case_words(subtitle),
        subtitle_color=_color_words(subtitle.color),
        subtitle_line_spacing=_line_spacing_words(subtitle.line_height_factor),
        subtitle_width=_share(subtitle.max_width_percent),
        subtitle_shadow=_shadow_words(subtitle.shadow),
        positioning_clause=_positioning_clause(params),
    )


def compile_spec_prompt(spec: ImageSpec, params: OverlayParameters) -> str:
    """오버레이 지시문 뒤에 스펙의 추가 크리에이티브 지시문을 덧붙입니다."""
    prompt = generate_prompt_from_parameters(params)
    base_prompt = spec.base_prompt.strip()
    if not base_prompt:
        return prompt
    return (
        f"{prompt}\n\nADDITIONAL CREATIVE DIRECTION "
        f"(never overrides the rules above):\n{base_prompt}"
    )
