"""로고 배치·크기 계산 및 합성

- plan_placement: 이미 이미지에 보이는 로고 제외 → AI 배치안 우선 → 모서리 순환 배치
- calculate_adaptive_logo_size: 가로로 긴 배너형 로고는 작게
- composite_logos: 한 번의 알파 합성으로 모든 로고를 올리고, 실패한 로고는 건너뜀
"""
from __future__ import annotations

import logging
import re

from PIL import Image

from overlay_studio.errors import RasterDecodeError
from overlay_studio.models.logo import LogoAsset, LogoPlacement, LogoPlacementPlan, LogoPosition
from overlay_studio.utils.image_utils import decode_image

logger = logging.getLogger(__name__)

MAX_LOGOS_PER_IMAGE = 8
DEFAULT_MARGIN_PERCENT = 3.0

# AI 배치안이 없을 때 후보 순서대로 순환하는 모서리
FALLBACK_CYCLE = (
    LogoPosition.BOTTOM_LEFT,
    LogoPosition.BOTTOM_RIGHT,
    LogoPosition.TOP_LEFT,
    LogoPosition.TOP_RIGHT,
)

BASE_SIZE_RATIO = 0.10
WIDE_SIZE_RATIO = 0.08     # 장단변 비율 (2, 3]
BANNER_SIZE_RATIO = 0.06   # 장단변 비율 > 3

# 이보다 작은 로고 데이터는 손상된 것으로 간주
_MIN_RASTER_BYTES = 32


def canonical_logo_key(name: str) -> str:
    """로고 표기("Intel® Core™", "intel_core")를 안정 키("intel-core")로 정규화합니다."""
    normalized = re.sub(r"[®™©]", "", name.lower())
    normalized = re.sub(r"[^a-z0-9]+", "-", normalized)
    return normalized.strip("-")


def plan_placement(
    candidate_logos: list[LogoAsset],
    existing_logos_in_image: set[str] | None = None,
    ai_plan: list[LogoPlacement] | None = None,
    max_logos: int = MAX_LOGOS_PER_IMAGE,
) -> LogoPlacementPlan:
    """후보 로고의 배치 계획을 만듭니다.

    Args:
        candidate_logos: 합성 후보 로고 (순서 = 우선순위)
        existing_logos_in_image: 외부 감지기가 이미지에서 찾은 canonical key
        ai_plan: 업스트림 AI 배치안 (canonical key 또는 표시 이름으로 매칭)
        max_logos: 이미지당 최대 로고 수
    """
    existing = {canonical_logo_key(key) for key in existing_logos_in_image or set()}
    ai_by_key: dict[str, LogoPlacement] = {}
    for entry in ai_plan or []:
        ai_by_key.setdefault(canonical_logo_key(entry.canonical_key), entry)
        ai_by_key.setdefault(canonical_logo_key(entry.display_name), entry)

    placements: list[LogoPlacement] = []
    seen: set[str] = set()
    used_ai = False

    for logo in candidate_logos:
        key = canonical_logo_key(logo.canonical_key)
        if key in existing:
            logger.info("Skipping logo '%s': already visible in image", logo.display_name)
            continue
        if key in seen:
            continue
        if len(placements) >= max_logos:
            logger.warning(
                "Logo cap reached (%d); dropping '%s'", max_logos, logo.display_name
            )
            break
        seen.add(key)

        ai_entry = ai_by_key.get(key) or ai_by_key.get(canonical_logo_key(logo.display_name))
        if ai_entry is not None:
            used_ai = True
            position, size_percent = ai_entry.position, ai_entry.size_percent
        else:
            # TODO: 5개 이상이면 같은 모서리를 재사용해 겹칠 수 있음 (모서리 내 오프셋 필요)
            position = FALLBACK_CYCLE[len(placements) % len(FALLBACK_CYCLE)]
            size_percent = None

        placements.append(
            LogoPlacement(
                canonical_key=key,
                display_name=logo.display_name,
                position=position,
                size_percent=size_percent,
                source_raster=logo.raster,
            )
        )

    return LogoPlacementPlan(placements=placements, analyzed_by_ai=used_ai)


def calculate_adaptive_logo_size(image_width: int, logo_width: int, logo_height: int) -> int:
    """이미지 너비 대비 로고 목표 너비(px)를 계산합니다.

    기본 10%, 장단변 비율 (2, 3] 이면 8%, 3 초과면 6%.
    """
    if logo_width <= 0 or logo_height <= 0:
        raise ValueError(f"Invalid logo dimensions: {logo_width}x{logo_height}")
    aspect = max(logo_width, logo_height) / min(logo_width, logo_height)
    if aspect > 3:
        ratio = BANNER_SIZE_RATIO
    elif aspect > 2:
        ratio = WIDE_SIZE_RATIO
    else:
        ratio = BASE_SIZE_RATIO
    return round(image_width * ratio)


def _corner_offset(
    position: LogoPosition,
    canvas: tuple[int, int],
    logo: tuple[int, int],
    margin: int,
) -> tuple[int, int]:
    canvas_w, canvas_h = canvas
    logo_w, logo_h = logo
    left = margin if position in (LogoPosition.TOP_LEFT, LogoPosition.BOTTOM_LEFT) else canvas_w - logo_w - margin
    top = margin if position in (LogoPosition.TOP_LEFT, LogoPosition.TOP_RIGHT) else canvas_h - logo_h - margin
    return max(0, left), max(0, top)


def _prepare_logo(placement: LogoPlacement, image_width: int) -> Image.Image:
    if len(placement.source_raster) < _MIN_RASTER_BYTES:
        raise RasterDecodeError(f"Logo data too small ({len(placement.source_raster)} bytes)")
    logo = decode_image(placement.source_raster).convert("RGBA")
    native_w, native_h = logo.size

    if placement.size_percent:
        target_w = round(image_width * placement.size_percent / 100)
    else:
        target_w = calculate_adaptive_logo_size(image_width, native_w, native_h)
    # 원본 해상도 이상으로 확대하지 않음
    target_w = max(1, min(target_w, native_w))
    target_h = max(1, round(target_w * native_h / native_w))

    if (target_w, target_h) != (native_w, native_h):
        logo = logo.resize((target_w, target_h), Image.LANCZOS)
    return logo


def composite_logos(
    base: Image.Image,
    plan: LogoPlacementPlan,
    margin_percent: float = DEFAULT_MARGIN_PERCENT,
) -> Image.Image:
    """배치 계획의 모든 로고를 한 번의 패스로 합성합니다.

    개별 로고 실패(손상·과소 데이터)는 로그만 남기고 건너뜁니다.
    모든 로고가 실패하면 원본 이미지를 그대로 반환합니다.
    """
    if not plan.placements:
        return base

    canvas_size = base.size
    margin = round(canvas_size[0] * margin_percent / 100)
    layer = Image.new("RGBA", canvas_size, (0, 0, 0, 0))
    applied = 0

    for placement in plan.placements:
        try:
            logo = _prepare_logo(placement, canvas_size[0])
        except (RasterDecodeError, ValueError) as exc:
            logger.warning("Skipping logo '%s': %s", placement.display_name, exc)
            continue
        left, top = _corner_offset(placement.position, canvas_size, logo.size, margin)
        layer.alpha_composite(logo, dest=(left, top))
        applied += 1
        logger.info(
            "Placed logo '%s' at %s (%dx%d)",
            placement.display_name,
            placement.position.value,
            logo.width,
            logo.height,
        )

    if applied == 0:
        logger.warning("No logos could be composited; returning base image")
        return base

    composed = Image.alpha_composite(base.convert("RGBA"), layer)
    return composed.convert(base.mode) if base.mode in ("RGB", "RGBA") else composed
