"""원본 + AI 편집본 → 레이어 PSD 문서

두 래스터를 디코딩해 큰 쪽 크기의 흰색 캔버스에 각각 그린 뒤(잘라내지 않음)
아래→위 "Original Image", "AI Edited" 순서의 RGB 8-bit PSD 로 직렬화합니다.
디코딩 실패는 재시도하지 않는 치명적 오류입니다.
"""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from pathlib import PurePath

from PIL import Image, ImageChops
from psd_tools import PSDImage
from psd_tools.api.layers import PixelLayer
from psd_tools.constants import BlendMode

from overlay_studio.errors import LayeredDocumentError, RasterDecodeError
from overlay_studio.utils.image_utils import decode_image, flatten_onto_white

logger = logging.getLogger(__name__)

PSD_MIME_TYPE = "application/octet-stream"

ORIGINAL_LAYER_NAME = "Original Image"
EDITED_LAYER_NAME = "AI Edited"
DIFFERENCE_LAYER_NAME = "Difference Highlight"

_BLEND_MODES = {
    "normal": BlendMode.NORMAL,
    "multiply": BlendMode.MULTIPLY,
    "screen": BlendMode.SCREEN,
    "difference": BlendMode.DIFFERENCE,
}


@dataclass
class DocumentLayer:
    name: str
    raster: Image.Image
    opacity: int = 255
    blend_mode: str = "normal"
    visible: bool = True


@dataclass
class LayeredDocument:
    width: int
    height: int
    color_channels: int = 3
    bits_per_channel: int = 8
    layers: list[DocumentLayer] = field(default_factory=list)


def _decode(data: bytes, label: str) -> Image.Image:
    try:
        return decode_image(data)
    except RasterDecodeError as exc:
        raise LayeredDocumentError(f"Cannot decode {label} raster: {exc}") from exc


def build_layered_document(
    original: bytes,
    edited: bytes,
    include_difference: bool = False,
) -> LayeredDocument:
    """원본·편집본 래스터로 레이어 문서를 구성합니다.

    include_difference=True 이면 두 레이어의 픽셀 차이를 보여주는
    숨김 레이어를 맨 위에 추가합니다.
    """
    original_image = _decode(original, "original")
    edited_image = _decode(edited, "edited")

    width = max(original_image.width, edited_image.width)
    height = max(original_image.height, edited_image.height)

    original_canvas = flatten_onto_white(original_image, (width, height))
    edited_canvas = flatten_onto_white(edited_image, (width, height))

    layers = [
        DocumentLayer(name=ORIGINAL_LAYER_NAME, raster=original_canvas),
        DocumentLayer(name=EDITED_LAYER_NAME, raster=edited_canvas),
    ]
    if include_difference:
        layers.append(
            DocumentLayer(
                name=DIFFERENCE_LAYER_NAME,
                raster=ImageChops.difference(original_canvas, edited_canvas),
                visible=False,
            )
        )
    return LayeredDocument(width=width, height=height, layers=layers)


def serialize_document(document: LayeredDocument) -> bytes:
    """레이어 문서를 PSD (RGB, 8-bit) 바이트로 직렬화합니다.

    레이어는 목록 순서대로 아래→위로 쌓이며, 병합 이미지는 가장 위의 보이는 레이어입니다.
    """
    if not document.layers:
        raise LayeredDocumentError("Layered document requires at least one layer")
    size = (document.width, document.height)
    for layer in document.layers:
        if layer.raster.size != size:
            raise LayeredDocumentError(
                f"Layer '{layer.name}' is {layer.raster.size}, expected {size}"
            )
        if layer.blend_mode not in _BLEND_MODES:
            raise LayeredDocumentError(f"Unsupported blend mode: {layer.blend_mode}")

    visible = [layer for layer in document.layers if layer.visible] or document.layers
    psd = PSDImage.frompil(visible[-1].raster.convert("RGB"))
    for layer in document.layers:
        pixel_layer = PixelLayer.frompil(layer.raster.convert("RGB"), psd, layer.name)
        pixel_layer.opacity = layer.opacity
        pixel_layer.blend_mode = _BLEND_MODES[layer.blend_mode]
        pixel_layer.visible = layer.visible
        psd.append(pixel_layer)

    buffer = io.BytesIO()
    psd.save(buffer)
    return buffer.getvalue()


def build_two_layer_document(original: bytes, edited: bytes) -> bytes:
    """원본·편집본 래스터로 2-레이어 PSD 바이트를 만듭니다.

    Raises:
        LayeredDocumentError: 어느 한쪽이라도 디코딩할 수 없는 경우
    """
    document = build_layered_document(original, edited)
    buffer = serialize_document(document)
    logger.info(
        "Built layered document %dx%d (%d layers, %d bytes)",
        document.width,
        document.height,
        len(document.layers),
        len(buffer),
    )
    return buffer


def export_filename(original_name: str) -> str:
    """원본 에셋 이름의 확장자를 바꿔 다운로드 파일 이름을 만듭니다."""
    stem = PurePath(original_name).stem or "image"
    return f"{stem}_edited.psd"
