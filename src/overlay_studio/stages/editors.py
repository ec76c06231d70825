"""외부 생성형 이미지 편집 프로바이더 클라이언트

두 프로바이더 모두 원본 응답 payload 를 그대로 반환하며,
응답 형태 정규화는 batch_orchestrator.normalize_provider_response 가 담당합니다.
재시도도 오케스트레이터 책임이므로 여기서는 한 번만 호출합니다.
"""
from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any

import fal_client
import httpx

from overlay_studio.config import Settings, get_settings
from overlay_studio.errors import ConfigurationError, InsufficientCreditsError, ProviderError
from overlay_studio.stages.batch_orchestrator import ImageEditor
from overlay_studio.utils.http_client import create_http_client

logger = logging.getLogger(__name__)


async def _get_fal_image_url(path_or_url: str) -> str:
    """로컬 파일 경로면 fal.ai에 업로드하고 URL을 반환합니다."""
    if path_or_url.startswith(("http://", "https://", "data:")):
        return path_or_url
    return await asyncio.to_thread(fal_client.upload_file, Path(path_or_url))


class FalImageEditor:
    """fal.ai nano-banana edit 엔드포인트 (응답: {"images": [{"url": ...}]})."""

    def __init__(self, api_key: str, model: str, output_format: str = "jpeg"):
        if not api_key:
            raise ConfigurationError("FAL_KEY is not configured")
        os.environ["FAL_KEY"] = api_key
        self.model = model
        self.output_format = output_format

    async def edit(self, image_url: str, prompt: str) -> Any:
        fal_url = await _get_fal_image_url(image_url)
        try:
            return await fal_client.run_async(
                self.model,
                arguments={
                    "prompt": prompt,
                    "image_urls": [fal_url],
                    "num_images": 1,
                    "output_format": self.output_format,
                },
            )
        except Exception as exc:
            raise ProviderError(f"fal.ai edit failed: {exc}") from exc


class WavespeedImageEditor:
    """Wavespeed nano-banana edit REST API (응답: {"data": {"outputs": [...]}})."""

    def __init__(
        self,
        api_key: str,
        endpoint: str,
        output_format: str = "jpeg",
        client: httpx.AsyncClient | None = None,
    ):
        if not api_key:
            raise ConfigurationError("WAVESPEED_API_KEY is not configured")
        self.api_key = api_key
        self.endpoint = endpoint
        self.output_format = output_format
        self._client = client

    async def edit(self, image_url: str, prompt: str) -> Any:
        payload = {
            "enable_base64_output": False,
            "enable_sync_mode": True,
            "images": [image_url],
            "output_format": self.output_format,
            "prompt": prompt,
            "num_images": 1,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        client = self._client or create_http_client()
        try:
            response = await client.post(self.endpoint, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Wavespeed request failed: {exc}") from exc
        finally:
            if self._client is None:
                await client.aclose()

        if response.is_error:
            body = response.text
            if "INSUFFICIENT_CREDITS" in body:
                raise InsufficientCreditsError(
                    "Wavespeed account has insufficient credits", status_code=response.status_code
                )
            raise ProviderError(
                f"Wavespeed API error: {response.status_code} - {body[:200]}",
                status_code=response.status_code,
            )
        return response.json()


def create_image_editor(settings: Settings | None = None) -> ImageEditor:
    """설정에 맞는 프로바이더 클라이언트를 생성합니다.

    Raises:
        ConfigurationError: 알 수 없는 프로바이더이거나 API 키가 없는 경우
    """
    settings = settings or get_settings()
    provider = settings.image_provider.lower()
    output_format = "png" if settings.edited_output_format.upper() == "PNG" else "jpeg"

    if provider == "fal":
        return FalImageEditor(settings.fal_key, settings.fal_edit_model, output_format)
    if provider == "wavespeed":
        return WavespeedImageEditor(
            settings.wavespeed_api_key, settings.wavespeed_edit_url, output_format
        )
    raise ConfigurationError(f"Unknown image provider: {settings.image_provider}")
