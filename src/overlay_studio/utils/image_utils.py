from __future__ import annotations

import base64
import binascii
import io
import re
from pathlib import Path

import httpx
from PIL import Image, UnidentifiedImageError

from overlay_studio.errors import RasterDecodeError
from overlay_studio.models.batch import RasterRef

_DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[^;,]+)?(?P<b64>;base64)?,(?P<data>.*)$", re.DOTALL)

_MIME_MAP = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".heic": "image/heic",
    ".psd": "image/vnd.adobe.photoshop",
}

_FORMAT_MIME = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
}


def guess_mime_type(name: str, default: str = "image/jpeg") -> str:
    """파일 이름 확장자로 MIME 타입을 추정합니다."""
    return _MIME_MAP.get(Path(name).suffix.lower(), default)


def mime_type_for_format(format: str) -> str:
    return _FORMAT_MIME.get(format.upper(), "application/octet-stream")


def parse_data_url(data_url: str) -> tuple[str, str]:
    """data URL 을 (mime_type, payload) 로 분리합니다. payload 는 디코딩하지 않습니다."""
    match = _DATA_URL_PATTERN.match(data_url)
    if not match:
        raise RasterDecodeError("Invalid data URL format")
    return match.group("mime") or "application/octet-stream", match.group("data")


def decode_data_url(data_url: str) -> bytes:
    """base64 data URL 을 원본 바이트로 디코딩합니다."""
    _, payload = parse_data_url(data_url)
    try:
        return base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise RasterDecodeError(f"Invalid base64 payload in data URL: {exc}") from exc


def image_to_data_url(data: bytes, mime_type: str = "image/jpeg") -> str:
    b64 = base64.b64encode(data).decode("utf-8")
    return f"data:{mime_type};base64,{b64}"


def decode_image(data: bytes) -> Image.Image:
    """바이트를 PIL Image 로 디코딩합니다 (픽셀까지 즉시 로드).

    Raises:
        RasterDecodeError: 빈 데이터이거나 이미지로 인식할 수 없는 경우
    """
    if not data:
        raise RasterDecodeError("Empty raster data")
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise RasterDecodeError(f"Cannot decode raster ({len(data)} bytes): {exc}") from exc
    return image


def image_size(data: bytes) -> tuple[int, int]:
    """픽셀을 로드하지 않고 헤더만 읽어 (width, height) 를 반환합니다."""
    if not data:
        raise RasterDecodeError("Empty raster data")
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.size
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise RasterDecodeError(f"Cannot read raster header: {exc}") from exc


async def download_image_bytes(url: str, client: httpx.AsyncClient | None = None) -> bytes:
    """URL 에서 이미지 바이트를 다운로드합니다."""
    if client is not None:
        response = await client.get(url)
        response.raise_for_status()
        return response.content
    async with httpx.AsyncClient(timeout=30) as own_client:
        response = await own_client.get(url)
        response.raise_for_status()
    return response.content


async def load_image(path_or_url: str) -> Image.Image:
    """로컬 파일 경로, data URL 또는 HTTP URL 에서 PIL Image 를 로드합니다."""
    if path_or_url.startswith("data:"):
        return decode_image(decode_data_url(path_or_url))
    if path_or_url.startswith(("http://", "https://")):
        return decode_image(await download_image_bytes(path_or_url))
    return decode_image(Path(path_or_url).read_bytes())


async def fetch_raster(ref: RasterRef, client: httpx.AsyncClient | None = None) -> bytes:
    """정규화된 RasterRef 의 실제 바이트를 가져옵니다."""
    if ref.is_inline:
        return decode_data_url(ref.uri)
    return await download_image_bytes(ref.uri, client=client)


def image_to_bytes(image: Image.Image, format: str = "PNG", quality: int = 92) -> bytes:
    """PIL Image 를 bytes 로 변환합니다. JPEG 는 RGB 로 변환 후 저장합니다."""
    buffer = io.BytesIO()
    if format.upper() in ("JPEG", "JPG"):
        image.convert("RGB").save(buffer, format="JPEG", quality=quality)
    else:
        image.save(buffer, format=format)
    return buffer.getvalue()


def flatten_onto_white(image: Image.Image, size: tuple[int, int]) -> Image.Image:
    """흰색 RGB 캔버스 좌상단에 이미지를 그립니다 (잘라내지 않고 여백은 흰색)."""
    canvas = Image.new("RGB", size, (255, 255, 255))
    rgba = image.convert("RGBA")
    canvas.paste(rgba, (0, 0), mask=rgba.split()[3])
    return canvas
