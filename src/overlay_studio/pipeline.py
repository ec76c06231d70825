"""메인 파이프라인 오케스트레이터

이미지·스펙 매칭 → 오버레이 파라미터 계산 → 프롬프트 컴파일
→ 배치 편집 (청크 순차 / 청크 내 동시) → 로고 합성 → 업로드 및 기록 추가

재편집(re_edit_image)과 레이어 PSD 내보내기(export_layered_document)도 여기서 제공합니다.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Awaitable, Callable

import httpx

from overlay_studio.config import Settings, get_settings
from overlay_studio.errors import JobPreconditionError, RasterDecodeError, ReEditError
from overlay_studio.models.batch import BatchFailure, BatchItem, BatchSuccess
from overlay_studio.models.image_spec import ImageSpec
from overlay_studio.models.logo import LogoAsset, LogoPlacement, LogoPlacementPlan
from overlay_studio.models.parameters import ImageAnalysis, OverlayParameters, ParameterUpdates
from overlay_studio.models.records import EditedImageRecord, ImageSpecMatch, SourceImage
from overlay_studio.repository import EditedImageStore
from overlay_studio.stages.batch_orchestrator import ImageEditor, ProgressCallback, edit_batch
from overlay_studio.stages.editors import create_image_editor
from overlay_studio.stages.image_analyzer import ImageAnalyzer
from overlay_studio.stages.layered_document import (
    PSD_MIME_TYPE,
    build_layered_document,
    build_two_layer_document,
    export_filename,
    serialize_document,
)
from overlay_studio.stages.logo_compositor import canonical_logo_key, composite_logos, plan_placement
from overlay_studio.stages.logo_detector import LogoDetector
from overlay_studio.stages.matching import match_images_to_specs
from overlay_studio.stages.parameter_engine import (
    calculate_parameters_from_analysis,
    merge_parameter_updates,
    parse_parameter_updates,
)
from overlay_studio.stages.prompt_compiler import compile_spec_prompt, generate_prompt_from_parameters
from overlay_studio.utils.http_client import create_http_client
from overlay_studio.utils.image_utils import (
    decode_image,
    fetch_raster,
    image_size,
    image_to_bytes,
    mime_type_for_format,
)
from overlay_studio.utils.storage import StorageProvider

logger = logging.getLogger(__name__)

Archiver = Callable[[EditedImageRecord], Awaitable[None]]

# 분리 실행한 부수효과 태스크 (GC 방지용 참조)
_background_tasks: set[asyncio.Task] = set()


@dataclass
class JobResult:
    job_id: str
    total_images: int
    records: list[EditedImageRecord] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return 0 < len(self.records) < self.total_images


@dataclass
class LayeredExport:
    filename: str
    content: bytes
    mime_type: str = PSD_MIME_TYPE


@dataclass
class _PreparedItem:
    match: ImageSpecMatch
    parameters: OverlayParameters
    item: BatchItem


def _spawn_detached(coro: Awaitable[None], label: str) -> None:
    """주 흐름을 막지 않는 부수효과를 실행합니다. 실패는 로그만 남깁니다."""

    async def runner() -> None:
        try:
            await coro
        except Exception:
            logger.exception("Background task '%s' failed", label)

    task = asyncio.create_task(runner())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


def _edited_name(original_name: str, suffix: str, output_format: str) -> str:
    extension = "png" if output_format.upper() == "PNG" else "jpg"
    return f"{PurePath(original_name).stem}_{suffix}.{extension}"


def _logo_candidates(spec: ImageSpec, catalog: dict[str, LogoAsset]) -> list[LogoAsset]:
    by_key = {canonical_logo_key(key): asset for key, asset in catalog.items()}
    candidates: list[LogoAsset] = []
    for name in spec.logo_names:
        asset = by_key.get(canonical_logo_key(name))
        if asset is None:
            logger.warning("Requested logo '%s' is not in the logo catalog", name)
            continue
        candidates.append(asset)
    return candidates


def _apply_logos(
    raster: bytes,
    plan: LogoPlacementPlan,
    margin_percent: float,
    output_format: str,
) -> tuple[bytes, bool]:
    base = decode_image(raster)
    composed = composite_logos(base, plan, margin_percent=margin_percent)
    if composed is base:
        return raster, False
    return image_to_bytes(composed, format=output_format), True


def _prepare_items(
    matches: list[ImageSpecMatch],
    public_url: Callable[[str], str],
    analyses: dict[int, ImageAnalysis] | None = None,
) -> tuple[list[_PreparedItem], list[BatchFailure]]:
    prepared: list[_PreparedItem] = []
    failures: list[BatchFailure] = []
    for match in matches:
        try:
            width, height = image_size(match.image.data)
        except RasterDecodeError as exc:
            logger.error("Image #%d (%s) cannot be decoded: %s", match.image_index, match.image.name, exc)
            failures.append(BatchFailure(index=match.image_index, reason=str(exc)))
            continue

        parameters = calculate_parameters_from_analysis(
            width,
            height,
            match.spec.title,
            match.spec.subtitle,
            (analyses or {}).get(match.image_index),
        )
        prompt = compile_spec_prompt(match.spec, parameters)
        prepared.append(
            _PreparedItem(
                match=match,
                parameters=parameters,
                item=BatchItem(
                    index=match.image_index,
                    image_url=public_url(match.image.storage_id),
                    compiled_prompt=prompt,
                ),
            )
        )
    return prepared, failures


async def _analyze_sources(
    matches: list[ImageSpecMatch],
    analyzer: ImageAnalyzer,
) -> dict[int, ImageAnalysis]:
    """원본 이미지별 Vision 분석을 동시에 실행합니다. 실패한 이미지는 기본 파라미터를 씁니다."""

    async def analyze(match: ImageSpecMatch) -> ImageAnalysis | None:
        try:
            return await analyzer(match.image.data)
        except Exception as exc:
            logger.warning(
                "Image analysis failed for image #%d (%s), using defaults: %s",
                match.image_index,
                match.image.name,
                exc,
            )
            return None

    analyses = await asyncio.gather(*[analyze(match) for match in matches])
    return {
        match.image_index: analysis
        for match, analysis in zip(matches, analyses)
        if analysis is not None
    }


async def _finalize_item(
    prepared: _PreparedItem,
    success: BatchSuccess,
    *,
    storage: StorageProvider,
    http_client: httpx.AsyncClient,
    settings: Settings,
    logo_catalog: dict[str, LogoAsset],
    logo_detector: LogoDetector | None,
    ai_logo_plans: dict[int, list[LogoPlacement]],
) -> EditedImageRecord:
    match = prepared.match
    raster = await fetch_raster(success.raster, client=http_client)
    parameters = prepared.parameters
    logo_applied = False

    if match.spec.logo_requested:
        candidates = _logo_candidates(match.spec, logo_catalog)
        existing: set[str] = set()
        if candidates and logo_detector is not None:
            try:
                existing = await logo_detector(raster, candidates)
            except Exception as exc:
                logger.warning("Logo detection failed for image #%d: %s", match.image_index, exc)
        plan = plan_placement(
            candidates,
            existing,
            ai_plan=ai_logo_plans.get(match.spec_index),
            max_logos=settings.max_logos_per_image,
        )
        if plan.placements:
            raster, logo_applied = await asyncio.to_thread(
                _apply_logos,
                raster,
                plan,
                settings.logo_margin_percent,
                settings.edited_output_format,
            )
        if logo_applied:
            parameters = parameters.model_copy(deep=True)
            parameters.logo.enabled = True
            parameters.logo.position = plan.placements[0].position.value
            parameters.logo.margin_percent = settings.logo_margin_percent

    name = _edited_name(match.image.name, "edited", settings.edited_output_format)
    stored = await storage.upload(
        raster,
        name,
        mime_type_for_format(settings.edited_output_format),
        settings.edited_folder_ref,
    )
    return EditedImageRecord(
        id=stored.id,
        name=name,
        source_image_id=match.image.storage_id,
        original_name=match.image.name,
        url=storage.public_url(stored.id),
        parameters=parameters,
        version=parameters.version,
        logo_applied=logo_applied,
        spec_index=match.spec_index,
        match_kind=match.match_kind,
    )


async def run_edit_job(
    job_id: str,
    images: list[SourceImage],
    specs: list[ImageSpec],
    *,
    storage: StorageProvider,
    store: EditedImageStore,
    editor: ImageEditor | None = None,
    logo_catalog: dict[str, LogoAsset] | None = None,
    logo_detector: LogoDetector | None = None,
    ai_logo_plans: dict[int, list[LogoPlacement]] | None = None,
    image_analyzer: ImageAnalyzer | None = None,
    on_progress: ProgressCallback | None = None,
    archiver: Archiver | None = None,
    settings: Settings | None = None,
) -> JobResult:
    """이미지 묶음에 스펙별 오버레이를 입히는 편집 작업을 실행합니다.

    Args:
        job_id: 작업 식별자 (기록 저장소 키)
        images: 원본 이미지 (스토리지 ID + 바이트)
        specs: 브리프에서 추출된 이미지 스펙
        storage: 업로드/다운로드/공개 URL 제공자
        store: EditedImageRecord 저장소 (추가 전용)
        editor: 이미지 편집 프로바이더 (없으면 설정으로 생성)
        logo_catalog: canonical key → 로고 에셋
        logo_detector: 이미지에 이미 보이는 로고 감지기
        ai_logo_plans: 스펙 인덱스 → AI 로고 배치안
        image_analyzer: 원본 레이아웃 분석기 (없거나 실패하면 기본 파라미터)
        on_progress: 배치 진행 콜백
        archiver: 기록마다 분리 실행되는 부수효과 (실패는 로그만)

    Returns:
        JobResult (성공 기록 + 실패 목록). 일부만 성공해도 예외 없이 반환합니다.

    Raises:
        JobPreconditionError: 이미지나 스펙이 없는 경우
        ConfigurationError: 프로바이더 자격 증명이 없는 경우
    """
    settings = settings or get_settings()
    if not images:
        raise JobPreconditionError("No images found for this job")
    if not specs:
        raise JobPreconditionError("No image specs found for this job")
    editor = editor or create_image_editor(settings)

    # ── Stage 1: 매칭 + 파라미터 + 프롬프트 ───────────────────────────────
    matches = match_images_to_specs(images, specs)
    analyses = await _analyze_sources(matches, image_analyzer) if image_analyzer else {}
    prepared, failures = _prepare_items(matches, storage.public_url, analyses)
    logger.info(
        "Job %s: %d images, %d specs, %d prepared items",
        job_id,
        len(images),
        len(specs),
        len(prepared),
    )

    # ── Stage 2: 배치 편집 ───────────────────────────────────────────────
    results = await edit_batch(
        [entry.item for entry in prepared],
        editor,
        settings.batch_size,
        max_attempts=settings.max_edit_attempts,
        backoff_base=settings.retry_backoff_base,
        on_progress=on_progress,
    )

    # ── Stage 3: 다운로드 + 로고 합성 + 업로드 ───────────────────────────
    finalize_jobs: list[tuple[_PreparedItem, Awaitable[EditedImageRecord]]] = []
    async with create_http_client() as http_client:
        for entry, result in zip(prepared, results):
            if isinstance(result, BatchFailure):
                failures.append(result)
                continue
            finalize_jobs.append(
                (
                    entry,
                    _finalize_item(
                        entry,
                        result,
                        storage=storage,
                        http_client=http_client,
                        settings=settings,
                        logo_catalog=logo_catalog or {},
                        logo_detector=logo_detector,
                        ai_logo_plans=ai_logo_plans or {},
                    ),
                )
            )
        outcomes = await asyncio.gather(
            *[job for _, job in finalize_jobs], return_exceptions=True
        )

    records: list[EditedImageRecord] = []
    for (entry, _), outcome in zip(finalize_jobs, outcomes):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            logger.error("Image #%d post-processing failed: %s", entry.item.index, outcome)
            failures.append(BatchFailure(index=entry.item.index, reason=str(outcome)))
            continue
        await store.append(job_id, outcome)
        records.append(outcome)
        if archiver is not None:
            _spawn_detached(archiver(outcome), f"archive:{outcome.id}")

    failures.sort(key=lambda failure: failure.index)
    logger.info(
        "Job %s finished: %d/%d images edited", job_id, len(records), len(images)
    )
    return JobResult(job_id=job_id, total_images=len(images), records=records, failures=failures)


async def re_edit_image(
    job_id: str,
    record: EditedImageRecord,
    request: ParameterUpdates | dict | str,
    *,
    storage: StorageProvider,
    store: EditedImageStore,
    editor: ImageEditor | None = None,
    logo_plan: LogoPlacementPlan | None = None,
    settings: Settings | None = None,
) -> EditedImageRecord:
    """수정 요청을 반영해 원본 이미지를 다시 편집하고 새 버전 기록을 추가합니다.

    기존 기록은 변경하지 않습니다. 문자열 요청은 parse_parameter_updates 로
    경계값이 적용된 업데이트로 변환됩니다.

    전달된 기록보다 높은 버전이 저장소에 있으면 그 최신 기록 위에 병합하므로,
    오래된 기록으로 호출해도 버전이 중복되거나 이전 수정이 사라지지 않습니다.

    Raises:
        ReEditError: 프로바이더가 재시도 후에도 실패한 경우
    """
    settings = settings or get_settings()
    editor = editor or create_image_editor(settings)

    latest = await store.latest(job_id, record.source_image_id)
    if latest is not None and latest.version > record.version:
        logger.info(
            "Re-edit of %s v%d rebased onto stored v%d",
            record.original_name,
            record.version,
            latest.version,
        )
        record = latest

    if isinstance(request, str):
        updates = parse_parameter_updates(request, record.parameters)
    else:
        updates = request
    parameters = merge_parameter_updates(record.parameters, updates)
    prompt = generate_prompt_from_parameters(parameters)

    item = BatchItem(
        index=0,
        image_url=storage.public_url(record.source_image_id),
        compiled_prompt=prompt,
    )
    [result] = await edit_batch(
        [item],
        editor,
        batch_size=1,
        max_attempts=settings.max_edit_attempts,
        backoff_base=settings.retry_backoff_base,
    )
    if isinstance(result, BatchFailure):
        raise ReEditError(f"Re-edit of {record.name} failed: {result.reason}")

    async with create_http_client() as http_client:
        raster = await fetch_raster(result.raster, client=http_client)

    logo_applied = False
    if logo_plan is not None and logo_plan.placements:
        raster, logo_applied = await asyncio.to_thread(
            _apply_logos,
            raster,
            logo_plan,
            settings.logo_margin_percent,
            settings.edited_output_format,
        )
    parameters = parameters.model_copy(deep=True)
    parameters.logo.enabled = logo_applied
    if logo_applied:
        parameters.logo.position = logo_plan.placements[0].position.value
        parameters.logo.margin_percent = settings.logo_margin_percent

    name = _edited_name(record.original_name, f"v{parameters.version}", settings.edited_output_format)
    stored = await storage.upload(
        raster,
        name,
        mime_type_for_format(settings.edited_output_format),
        settings.edited_folder_ref,
    )
    new_record = record.model_copy(
        update={
            "id": stored.id,
            "name": name,
            "url": storage.public_url(stored.id),
            "parameters": parameters,
            "version": parameters.version,
            "logo_applied": logo_applied,
        }
    )
    await store.append(job_id, new_record)
    logger.info("Re-edited %s → version %d", record.original_name, parameters.version)
    return new_record


async def export_layered_document(
    record: EditedImageRecord,
    storage: StorageProvider,
    include_difference: bool = False,
) -> LayeredExport:
    """원본과 최종 편집본을 내려받아 레이어 PSD 로 내보냅니다."""
    original, edited = await asyncio.gather(
        storage.download(record.source_image_id),
        storage.download(record.id),
    )
    if include_difference:
        document = await asyncio.to_thread(
            build_layered_document, original, edited, include_difference=True
        )
        content = await asyncio.to_thread(serialize_document, document)
    else:
        content = await asyncio.to_thread(build_two_layer_document, original, edited)
    return LayeredExport(filename=export_filename(record.original_name), content=content)
