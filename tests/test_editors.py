"""이미지 편집 프로바이더 클라이언트 및 HTTP 클라이언트 팩토리 테스트"""
import json

import certifi
import httpx
import pytest
from unittest.mock import AsyncMock, patch

from overlay_studio.config import Settings
from overlay_studio.errors import ConfigurationError, InsufficientCreditsError, ProviderError
from overlay_studio.stages.batch_orchestrator import normalize_provider_response
from overlay_studio.stages.editors import FalImageEditor, WavespeedImageEditor, create_image_editor
from overlay_studio.utils import http_client

ENDPOINT = "https://api.wavespeed.test/edit"


def _wavespeed(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WavespeedImageEditor("ws-key", ENDPOINT, client=client)


@pytest.mark.asyncio
async def test_wavespeed_sends_prompt_and_returns_raw_payload():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"outputs": ["https://cdn.wavespeed.test/out.jpg"]}})

    payload = await _wavespeed(handler).edit("https://cdn.example.com/in.jpg", "add a title")

    assert seen["auth"] == "Bearer ws-key"
    assert seen["body"]["images"] == ["https://cdn.example.com/in.jpg"]
    assert seen["body"]["prompt"] == "add a title"
    assert normalize_provider_response(payload).uri == "https://cdn.wavespeed.test/out.jpg"


@pytest.mark.asyncio
async def test_wavespeed_insufficient_credits_is_not_retryable():
    editor = _wavespeed(lambda request: httpx.Response(402, text='{"code": "INSUFFICIENT_CREDITS"}'))

    with pytest.raises(InsufficientCreditsError) as exc_info:
        await editor.edit("https://cdn.example.com/in.jpg", "prompt")
    assert exc_info.value.retryable is False
    assert exc_info.value.status_code == 402


@pytest.mark.asyncio
async def test_wavespeed_server_error_is_retryable_provider_error():
    editor = _wavespeed(lambda request: httpx.Response(503, text="busy"))

    with pytest.raises(ProviderError) as exc_info:
        await editor.edit("https://cdn.example.com/in.jpg", "prompt")
    assert exc_info.value.retryable is True
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_fal_editor_wraps_sdk_errors():
    editor = FalImageEditor("fal-key", "fal-ai/nano-banana/edit")
    with patch("overlay_studio.stages.editors.fal_client.run_async", new=AsyncMock(side_effect=RuntimeError("boom"))):
        with pytest.raises(ProviderError):
            await editor.edit("https://cdn.example.com/in.jpg", "prompt")


@pytest.mark.asyncio
async def test_fal_editor_passes_image_urls():
    editor = FalImageEditor("fal-key", "fal-ai/nano-banana/edit", output_format="png")
    run_async = AsyncMock(return_value={"images": [{"url": "https://fal.media/out.png"}]})
    with patch("overlay_studio.stages.editors.fal_client.run_async", new=run_async):
        payload = await editor.edit("https://cdn.example.com/in.jpg", "prompt")

    args = run_async.await_args
    assert args.args[0] == "fal-ai/nano-banana/edit"
    assert args.kwargs["arguments"]["image_urls"] == ["https://cdn.example.com/in.jpg"]
    assert args.kwargs["arguments"]["output_format"] == "png"
    assert payload["images"][0]["url"] == "https://fal.media/out.png"


@pytest.mark.parametrize(
    "settings",
    [
        Settings(image_provider="fal", fal_key=""),
        Settings(image_provider="wavespeed", wavespeed_api_key=""),
        Settings(image_provider="midjourney", fal_key="x"),
    ],
)
def test_create_image_editor_requires_configuration(settings):
    with pytest.raises(ConfigurationError):
        create_image_editor(settings)


def test_create_image_editor_selects_provider():
    editor = create_image_editor(Settings(image_provider="wavespeed", wavespeed_api_key="k", edited_output_format="PNG"))
    assert isinstance(editor, WavespeedImageEditor)
    assert editor.output_format == "png"


def test_ssl_context_follows_settings():
    with patch.object(http_client, "get_settings", return_value=Settings(ssl_verify=False)):
        assert http_client._build_ssl_context() is False
    with patch.object(http_client, "get_settings", return_value=Settings(ssl_verify=True, ca_bundle_path="")):
        assert http_client._build_ssl_context() == certifi.where()
