"""제품 이미지 레이아웃 분석 (Vision)

제품 위치와 배경 복잡도를 보고 오버레이 추천값(타이틀 크기, 여백, 그라디언트 커버리지)을
ImageAnalysis 로 반환합니다. 추천값은 허용 범위로 클램핑되며,
범위를 알 수 없는 값은 버려 기본 파라미터가 쓰이게 합니다.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Awaitable, Callable

from overlay_studio.config import get_settings
from overlay_studio.models.parameters import Alignment, ImageAnalysis
from overlay_studio.utils.http_client import create_openai_client
from overlay_studio.utils.image_utils import decode_image, image_to_bytes, image_to_data_url

logger = logging.getLogger(__name__)

_TEMPLATE_PATH = Path(__file__).parent.parent / "utils/prompt_templates/image_analyzer.txt"

_MAX_VISION_EDGE = 1024

TITLE_SIZE_RANGE = (36, 72)
GRADIENT_COVERAGE_RANGE = (15, 28)
MARGIN_TOP_RANGE = (3, 8)
MARGIN_LEFT_RANGE = (3, 6)

ImageAnalyzer = Callable[[bytes], Awaitable[ImageAnalysis]]


def _bounded(value, bounds: tuple[int, int]) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    low, high = bounds
    return int(round(max(low, min(high, value))))


def parse_analysis(raw: dict) -> ImageAnalysis:
    """모델 JSON 응답을 경계값이 적용된 ImageAnalysis 로 변환합니다."""
    alignment = raw.get("text_alignment")
    return ImageAnalysis(
        recommended_title_size=_bounded(raw.get("recommended_title_size"), TITLE_SIZE_RANGE),
        recommended_margin_top=_bounded(raw.get("recommended_margin_top"), MARGIN_TOP_RANGE),
        recommended_margin_left=_bounded(raw.get("recommended_margin_left"), MARGIN_LEFT_RANGE),
        recommended_gradient_coverage=_bounded(
            raw.get("recommended_gradient_coverage"), GRADIENT_COVERAGE_RANGE
        ),
        text_alignment=alignment if alignment in {a.value for a in Alignment} else None,
    )


async def analyze_image(raster: bytes) -> ImageAnalysis:
    """원본 이미지를 분석해 오버레이 추천값을 반환합니다."""
    settings = get_settings()
    client = create_openai_client()

    image = decode_image(raster)
    width, height = image.size
    image.thumbnail((_MAX_VISION_EDGE, _MAX_VISION_EDGE))
    image_url = image_to_data_url(image_to_bytes(image, format="JPEG", quality=90), "image/jpeg")

    prompt = _TEMPLATE_PATH.read_text(encoding="utf-8").format(width=width, height=height)
    response = await client.chat.completions.create(
        model=settings.image_analyzer_model,
        messages=[
            {
                "role": "user",
                "content": [
                    {"type": "image_url", "image_url": {"url": image_url, "detail": "low"}},
                    {"type": "text", "text": prompt},
                ],
            }
        ],
        response_format={"type": "json_object"},
        max_tokens=300,
    )

    raw = json.loads(response.choices[0].message.content)
    analysis = parse_analysis(raw)
    logger.info(
        "Image analysis: title=%s top=%s left=%s gradient=%s (%s)",
        analysis.recommended_title_size,
        analysis.recommended_margin_top,
        analysis.recommended_margin_left,
        analysis.recommended_gradient_coverage,
        raw.get("reasoning", ""),
    )
    return analysis
