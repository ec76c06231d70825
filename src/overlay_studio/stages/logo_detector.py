"""이미 이미지에 보이는 브랜드 로고 감지 (Vision)

중복 브랜딩을 막기 위해, 합성 후보 로고 중 이미지에 이미 보이는 것을
canonical key 집합으로 반환합니다.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Awaitable, Callable

from overlay_studio.config import get_settings
from overlay_studio.models.logo import LogoAsset
from overlay_studio.utils.http_client import create_openai_client
from overlay_studio.utils.image_utils import decode_image, image_to_bytes, image_to_data_url

logger = logging.getLogger(__name__)

_TEMPLATE_PATH = Path(__file__).parent.parent / "utils/prompt_templates/logo_detector.txt"

# Vision 입력 해상도 상한 (긴 변 기준)
_MAX_VISION_EDGE = 1024

LogoDetector = Callable[[bytes, list[LogoAsset]], Awaitable[set[str]]]


def _prepare_vision_image(raster: bytes) -> str:
    image = decode_image(raster)
    image.thumbnail((_MAX_VISION_EDGE, _MAX_VISION_EDGE))
    return image_to_data_url(image_to_bytes(image, format="JPEG", quality=90), "image/jpeg")


async def detect_existing_logos(raster: bytes, candidates: list[LogoAsset]) -> set[str]:
    """이미지에 이미 보이는 후보 로고의 canonical key 를 반환합니다."""
    if not candidates:
        return set()

    settings = get_settings()
    client = create_openai_client()
    known = {logo.canonical_key for logo in candidates}

    template = _TEMPLATE_PATH.read_text(encoding="utf-8")
    prompt = template.format(
        candidates="\n".join(f"- {logo.canonical_key}: {logo.display_name}" for logo in candidates)
    )

    response = await client.chat.completions.create(
        model=settings.logo_detector_model,
        messages=[
            {
                "role": "user",
                "content": [
                    {
                        "type": "image_url",
                        "image_url": {"url": _prepare_vision_image(raster), "detail": "high"},
                    },
                    {"type": "text", "text": prompt},
                ],
            }
        ],
        response_format={"type": "json_object"},
        max_tokens=256,
    )

    raw = json.loads(response.choices[0].message.content)
    visible = {key for key in raw.get("visible_logos", []) if key in known}
    logger.info("Logo detector: visible=%s (%s)", sorted(visible), raw.get("reasoning", ""))
    return visible
