"""배치 오케스트레이터

(이미지, 프롬프트) 쌍을 외부 이미지 편집 프로바이더로 보냅니다.

- 청크 단위 순차 처리: 청크 N 이 완전히 끝나야 청크 N+1 시작
- 청크 내부 아이템은 동시 호출 (asyncio.gather)
- 아이템별 최대 3회 시도, 시도 사이 2^attempt 초 지수 백오프
- 결과 리스트는 입력과 길이·인덱스가 항상 일치 (실패는 BatchFailure 로 표시)
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Protocol

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from overlay_studio.errors import MalformedProviderResponse, ProviderError
from overlay_studio.models.batch import (
    BatchFailure,
    BatchItem,
    BatchProgress,
    BatchResult,
    BatchSuccess,
    RasterRef,
)
from overlay_studio.utils.image_utils import parse_data_url

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 15
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 2.0

# 응답 래퍼로 알려진 키 (wavespeed: {"data": {...}}, 일부 SDK: {"result": {...}})
_WRAPPER_KEYS = ("data", "result", "response")

ProgressCallback = Callable[[BatchProgress], None]


class ImageEditor(Protocol):
    """외부 생성형 이미지 편집 프로바이더. 원본 응답 payload 를 그대로 반환합니다."""

    async def edit(self, image_url: str, prompt: str) -> Any: ...


def _raster_from_entry(entry: Any) -> RasterRef | None:
    if isinstance(entry, str):
        entry = entry.strip()
        if entry.startswith("data:"):
            mime_type, _ = parse_data_url(entry)
            return RasterRef(uri=entry, mime_type=mime_type)
        if entry.startswith(("http://", "https://")):
            return RasterRef(uri=entry)
        return None

    if isinstance(entry, dict):
        url = entry.get("url")
        if isinstance(url, str):
            ref = _raster_from_entry(url)
            if ref is not None:
                mime_type = entry.get("content_type") or entry.get("mime_type")
                return ref.model_copy(update={"mime_type": mime_type or ref.mime_type})
        inline = entry.get("data") or entry.get("b64_json")
        if isinstance(inline, str) and inline and not inline.startswith(("http://", "https://")):
            if inline.startswith("data:"):
                return _raster_from_entry(inline)
            mime_type = entry.get("mime_type") or entry.get("mimeType") or "image/png"
            return RasterRef(uri=f"data:{mime_type};base64,{inline}", mime_type=mime_type)
    return None


def normalize_provider_response(payload: Any) -> RasterRef:
    """프로바이더 응답 형태를 단일 RasterRef 로 정규화합니다.

    지원 형태:
      - "data:image/...;base64,..." 또는 "https://..." 문자열
      - {"outputs": [...]}
      - {"images": [{"url": ...} | {"data": ..., "mime_type": ...} | "..."]}
      - 위 형태를 감싼 {"data": ...} / {"result": ...} 래퍼 (중첩 가능)

    Raises:
        MalformedProviderResponse: 인식할 수 없는 형태
    """
    pending = [payload]
    while pending:
        current = pending.pop(0)
        if isinstance(current, str):
            ref = _raster_from_entry(current)
            if ref is not None:
                return ref
            continue
        if not isinstance(current, dict):
            continue
        for key in ("outputs", "images"):
            entries = current.get(key)
            if isinstance(entries, list):
                for entry in entries:
                    ref = _raster_from_entry(entry)
                    if ref is not None:
                        return ref
        for key in _WRAPPER_KEYS:
            if key in current:
                pending.append(current[key])

    raise MalformedProviderResponse(
        f"Unrecognized provider response shape: {type(payload).__name__}"
    )


def _is_retryable(error: BaseException) -> bool:
    if isinstance(error, ProviderError):
        return error.retryable
    return isinstance(error, Exception)


def chunk_items(items: list[BatchItem], size: int) -> list[list[BatchItem]]:
    if size < 1:
        raise ValueError(f"batch_size must be >= 1, got {size}")
    return [items[start:start + size] for start in range(0, len(items), size)]


async def _edit_item(
    item: BatchItem,
    editor: ImageEditor,
    max_attempts: int,
    backoff_base: float,
    sleep: Callable[[float], Awaitable[None]],
) -> BatchResult:
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        # 1회차 실패 후 base^1 초, 2회차 실패 후 base^2 초
        wait=wait_exponential(multiplier=backoff_base, exp_base=backoff_base),
        retry=retry_if_exception(_is_retryable),
        sleep=sleep,
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                payload = await editor.edit(item.image_url, item.compiled_prompt)
                raster = normalize_provider_response(payload)
    except Exception as exc:
        logger.error("Item %d failed after retries: %s", item.index, exc)
        return BatchFailure(index=item.index, reason=str(exc) or type(exc).__name__)
    return BatchSuccess(index=item.index, raster=raster)


async def edit_batch(
    items: list[BatchItem],
    editor: ImageEditor,
    batch_size: int = DEFAULT_BATCH_SIZE,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff_base: float = DEFAULT_BACKOFF_BASE,
    on_progress: ProgressCallback | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> list[BatchResult]:
    """아이템 목록을 청크 단위로 편집하고 입력 순서에 맞춘 결과를 반환합니다.

    Args:
        items: 편집할 아이템 (index 는 결과 상관관계 식별자)
        editor: 외부 이미지 편집 프로바이더
        batch_size: 청크 크기 (기본 15)
        max_attempts: 아이템별 최대 시도 횟수 (기본 3)
        on_progress: 아이템이 끝날 때마다 호출되는 진행 콜백
        sleep: 백오프 대기 함수 (테스트에서 교체)

    Returns:
        len(items) 와 같은 길이의 BatchSuccess | BatchFailure 리스트
    """
    chunks = chunk_items(items, batch_size)
    total = len(items)
    results: list[BatchResult | None] = [None] * total
    completed = 0

    async def run(position: int, item: BatchItem) -> None:
        nonlocal completed
        result = await _edit_item(item, editor, max_attempts, backoff_base, sleep)
        results[position] = result
        completed += 1
        if on_progress is not None:
            try:
                on_progress(
                    BatchProgress(completed_count=completed, total_count=total, last_index=item.index)
                )
            except Exception:
                logger.exception("Progress callback failed for item %d", item.index)

    position = 0
    for chunk_no, chunk in enumerate(chunks, start=1):
        logger.info("Chunk %d/%d: dispatching %d items", chunk_no, len(chunks), len(chunk))
        await asyncio.gather(*[run(position + offset, item) for offset, item in enumerate(chunk)])
        position += len(chunk)

    failures = sum(1 for result in results if isinstance(result, BatchFailure))
    logger.info("Batch finished: %d succeeded, %d failed", total - failures, failures)
    return [result for result in results if result is not None]
