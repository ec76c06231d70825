"""Pipeline 오케스트레이터 테스트: 편집 작업, 재편집, PSD 내보내기"""
import asyncio
import io

import pytest
from unittest.mock import AsyncMock
from PIL import Image
from psd_tools import PSDImage

from overlay_studio.config import Settings
from overlay_studio.errors import InsufficientCreditsError, JobPreconditionError, ReEditError
from overlay_studio.models import ImageAnalysis, ImageSpec, LogoAsset, MatchKind, SourceImage
from overlay_studio.pipeline import export_layered_document, re_edit_image, run_edit_job
from overlay_studio.repository import InMemoryEditedImageStore
from overlay_studio.stages.parameter_engine import calculate_default_parameters
from overlay_studio.utils.image_utils import image_to_data_url
from overlay_studio.utils.storage import LocalFolderStorage


def _png(size=(200, 120), color=(0, 0, 255)):
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def _settings():
    return Settings(batch_size=2, max_edit_attempts=1, edited_output_format="PNG", logo_margin_percent=3.0)


class FakeEditor:
    """이름에 fail_marker 가 들어간 이미지만 크레딧 부족으로 실패하는 가짜 프로바이더."""

    def __init__(self, fail_marker=None):
        self.calls = []
        self.fail_marker = fail_marker

    async def edit(self, image_url, prompt):
        self.calls.append((image_url, prompt))
        if self.fail_marker and self.fail_marker in image_url:
            raise InsufficientCreditsError("no credits")
        return {"images": [{"url": image_to_data_url(_png(color=(0, 0, 255)), "image/png")}]}


async def _upload_sources(storage, names, data=None):
    images = []
    for name in names:
        content = _png(color=(255, 0, 0)) if data is None else data
        stored = await storage.upload(content, name, "image/png", "sources")
        images.append(SourceImage(storage_id=stored.id, name=name, data=content, mime_type="image/png"))
    return images


@pytest.mark.asyncio
async def test_job_reports_partial_success(tmp_path):
    """3장 중 1장이 실패해도 나머지 기록은 저장되고 실패는 구조화된 데이터로 반환."""
    storage = LocalFolderStorage(tmp_path)
    store = InMemoryEditedImageStore()
    images = await _upload_sources(storage, ["shoe.png", "broken-credit.png", "bag.png"])
    specs = [ImageSpec(title="Millennium", subtitle="Built to last"), ImageSpec(title="Aurora")]
    progress = []

    result = await run_edit_job(
        "job-1",
        images,
        specs,
        storage=storage,
        store=store,
        editor=FakeEditor(fail_marker="broken-credit"),
        on_progress=progress.append,
        settings=_settings(),
    )

    assert result.partial is True
    assert [record.original_name for record in result.records] == ["shoe.png", "bag.png"]
    assert [failure.index for failure in result.failures] == [1]
    assert "no credits" in result.failures[0].reason
    assert len(progress) == 3

    shoe, bag = result.records
    assert shoe.name == "shoe_edited.png"
    assert shoe.version == 1
    assert shoe.parameters.title.text == "Millennium"
    assert shoe.match_kind == MatchKind.DIRECT
    assert bag.spec_index == 0
    assert bag.match_kind == MatchKind.CYCLIC
    assert await storage.download(shoe.id) == _png(color=(0, 0, 255))
    assert await store.list_records("job-1") == result.records


@pytest.mark.asyncio
async def test_job_sends_compiled_prompt_and_public_url(tmp_path):
    storage = LocalFolderStorage(tmp_path)
    images = await _upload_sources(storage, ["shoe.png"])
    editor = FakeEditor()

    await run_edit_job(
        "job-2",
        images,
        [ImageSpec(title="Millennium", base_prompt="Warm light")],
        storage=storage,
        store=InMemoryEditedImageStore(),
        editor=editor,
        settings=_settings(),
    )

    [(image_url, prompt)] = editor.calls
    assert image_url == storage.public_url(images[0].storage_id)
    assert 'Title: "MILLENNIUM"' in prompt
    assert prompt.endswith("Warm light")


@pytest.mark.asyncio
@pytest.mark.parametrize("images_count, specs", [(0, [ImageSpec(title="A")]), (1, [])])
async def test_job_preconditions(tmp_path, images_count, specs):
    storage = LocalFolderStorage(tmp_path)
    images = await _upload_sources(storage, ["a.png"][:images_count])

    with pytest.raises(JobPreconditionError):
        await run_edit_job(
            "job-3", images, specs, storage=storage, store=InMemoryEditedImageStore(), editor=FakeEditor(), settings=_settings()
        )


@pytest.mark.asyncio
async def test_undecodable_source_is_reported_as_failure(tmp_path):
    storage = LocalFolderStorage(tmp_path)
    good = await _upload_sources(storage, ["good.png"])
    bad = await _upload_sources(storage, ["bad.png"], data=b"not an image")
    editor = FakeEditor()

    result = await run_edit_job(
        "job-4", good + bad, [ImageSpec(title="A")], storage=storage, store=InMemoryEditedImageStore(), editor=editor, settings=_settings()
    )

    assert [record.original_name for record in result.records] == ["good.png"]
    assert [failure.index for failure in result.failures] == [1]
    assert len(editor.calls) == 1


@pytest.mark.asyncio
async def test_requested_logo_is_composited(tmp_path):
    storage = LocalFolderStorage(tmp_path)
    images = await _upload_sources(storage, ["shoe.png"])
    logo = LogoAsset(canonical_key="intel-core", display_name="Intel Core", raster=_png((400, 400), (0, 255, 0)))
    detector = AsyncMock(return_value=set())

    result = await run_edit_job(
        "job-5",
        images,
        [ImageSpec(title="A", logo_requested=True, logo_names=["Intel® Core™"])],
        storage=storage,
        store=InMemoryEditedImageStore(),
        editor=FakeEditor(),
        logo_catalog={"intel-core": logo},
        logo_detector=detector,
        settings=_settings(),
    )

    [record] = result.records
    assert record.logo_applied is True
    assert record.parameters.logo.enabled is True
    assert record.parameters.logo.position == "bottom-left"
    detector.assert_awaited_once()
    edited = Image.open(io.BytesIO(await storage.download(record.id))).convert("RGB")
    # 200px 너비 → 로고 20px, 여백 6px
    assert edited.getpixel((10, 120 - 10)) == (0, 255, 0)
    assert edited.getpixel((100, 60)) == (0, 0, 255)


@pytest.mark.asyncio
async def test_logo_already_in_image_is_not_added_again(tmp_path):
    storage = LocalFolderStorage(tmp_path)
    images = await _upload_sources(storage, ["shoe.png"])
    logo = LogoAsset(canonical_key="intel-core", display_name="Intel Core", raster=_png((400, 400), (0, 255, 0)))

    result = await run_edit_job(
        "job-6",
        images,
        [ImageSpec(title="A", logo_requested=True, logo_names=["Intel Core"])],
        storage=storage,
        store=InMemoryEditedImageStore(),
        editor=FakeEditor(),
        logo_catalog={"intel-core": logo},
        logo_detector=AsyncMock(return_value={"intel-core"}),
        settings=_settings(),
    )

    assert result.records[0].logo_applied is False
    assert result.records[0].parameters.logo.enabled is False


@pytest.mark.asyncio
async def test_archiver_failure_does_not_affect_job(tmp_path):
    storage = LocalFolderStorage(tmp_path)
    images = await _upload_sources(storage, ["shoe.png"])
    archiver = AsyncMock(side_effect=RuntimeError("archive down"))

    result = await run_edit_job(
        "job-7",
        images,
        [ImageSpec(title="A")],
        storage=storage,
        store=InMemoryEditedImageStore(),
        editor=FakeEditor(),
        archiver=archiver,
        settings=_settings(),
    )
    await asyncio.sleep(0)

    assert len(result.records) == 1
    archiver.assert_called_once_with(result.records[0])


@pytest.mark.asyncio
async def test_re_edit_appends_new_version(tmp_path):
    """'darker gradient' 재편집 → version 2 기록 추가, 기존 기록은 유지."""
    storage = LocalFolderStorage(tmp_path)
    store = InMemoryEditedImageStore()
    images = await _upload_sources(storage, ["shoe.png"])
    editor = FakeEditor()
    result = await run_edit_job(
        "job-8", images, [ImageSpec(title="A")], storage=storage, store=store, editor=editor, settings=_settings()
    )
    [original] = result.records

    updated = await re_edit_image(
        "job-8", original, "make the gradient darker", storage=storage, store=store, editor=editor, settings=_settings()
    )

    assert updated.version == 2
    assert updated.name == "shoe_v2.png"
    assert updated.parameters.gradient.opacity == pytest.approx(0.45)
    assert updated.source_image_id == original.source_image_id
    assert original.version == 1
    assert editor.calls[-1][0] == storage.public_url(original.source_image_id)
    assert "strong darkness" in editor.calls[-1][1]
    assert len(await store.list_records("job-8")) == 2
    assert (await store.latest("job-8", original.source_image_id)).id == updated.id


@pytest.mark.asyncio
async def test_re_edit_failure_raises(tmp_path):
    storage = LocalFolderStorage(tmp_path)
    store = InMemoryEditedImageStore()
    images = await _upload_sources(storage, ["shoe-fail.png"])
    result = await run_edit_job(
        "job-9", images, [ImageSpec(title="A")], storage=storage, store=store, editor=FakeEditor(), settings=_settings()
    )
    [record] = result.records

    with pytest.raises(ReEditError):
        await re_edit_image(
            "job-9", record, {"title": {"font_size": 60}}, storage=storage, store=store,
            editor=FakeEditor(fail_marker="shoe-fail"), settings=_settings(),
        )
    assert len(await store.list_records("job-9")) == 1


@pytest.mark.asyncio
async def test_export_layered_document(tmp_path):
    storage = LocalFolderStorage(tmp_path)
    images = await _upload_sources(storage, ["shoe.png"])
    result = await run_edit_job(
        "job-10", images, [ImageSpec(title="A")], storage=storage, store=InMemoryEditedImageStore(), editor=FakeEditor(), settings=_settings()
    )

    export = await export_layered_document(result.records[0], storage)

    assert export.filename == "shoe_edited.psd"
    assert export.mime_type == "application/octet-stream"
    psd = PSDImage.open(io.BytesIO(export.content))
    assert [layer.name for layer in psd] == ["Original Image", "AI Edited"]
    assert (psd.width, psd.height) == (200, 120)


@pytest.mark.asyncio
async def test_image_analysis_overrides_default_parameters(tmp_path):
    """분석 추천값(타이틀 60px, 그라디언트 20%)이 편집 기록 파라미터에 반영된다."""
    storage = LocalFolderStorage(tmp_path)
    images = await _upload_sources(storage, ["shoe.png"])
    analyzer = AsyncMock(
        return_value=ImageAnalysis(recommended_title_size=60, recommended_gradient_coverage=20)
    )
    editor = FakeEditor()

    result = await run_edit_job(
        "job-11",
        images,
        [ImageSpec(title="A")],
        storage=storage,
        store=InMemoryEditedImageStore(),
        editor=editor,
        image_analyzer=analyzer,
        settings=_settings(),
    )

    analyzer.assert_awaited_once_with(images[0].data)
    [record] = result.records
    assert record.parameters.title.font_size == 60
    assert record.parameters.gradient.height_percent == 20


@pytest.mark.asyncio
async def test_failed_image_analysis_falls_back_to_defaults(tmp_path):
    storage = LocalFolderStorage(tmp_path)
    images = await _upload_sources(storage, ["shoe.png"])
    analyzer = AsyncMock(side_effect=RuntimeError("vision down"))

    result = await run_edit_job(
        "job-12",
        images,
        [ImageSpec(title="A")],
        storage=storage,
        store=InMemoryEditedImageStore(),
        editor=FakeEditor(),
        image_analyzer=analyzer,
        settings=_settings(),
    )

    [record] = result.records
    assert record.parameters == calculate_default_parameters(200, 120, "A", "")


@pytest.mark.asyncio
async def test_re_edit_without_logo_clears_logo_flag(tmp_path):
    """로고 없이 재편집하면 새 기록의 logo.enabled 도 False 가 된다."""
    storage = LocalFolderStorage(tmp_path)
    store = InMemoryEditedImageStore()
    images = await _upload_sources(storage, ["shoe.png"])
    logo = LogoAsset(canonical_key="intel-core", display_name="Intel Core", raster=_png((400, 400), (0, 255, 0)))
    result = await run_edit_job(
        "job-13",
        images,
        [ImageSpec(title="A", logo_requested=True, logo_names=["Intel Core"])],
        storage=storage,
        store=store,
        editor=FakeEditor(),
        logo_catalog={"intel-core": logo},
        logo_detector=AsyncMock(return_value=set()),
        settings=_settings(),
    )
    [original] = result.records
    assert original.parameters.logo.enabled is True

    updated = await re_edit_image(
        "job-13", original, "make the gradient darker", storage=storage, store=store, editor=FakeEditor(), settings=_settings()
    )

    assert updated.logo_applied is False
    assert updated.parameters.logo.enabled is False
    assert original.parameters.logo.enabled is True


@pytest.mark.asyncio
async def test_re_edit_of_stale_record_builds_on_latest_version(tmp_path):
    """v1 기록으로 두 번 재편집해도 v2, v3 이 되고 v2 의 수정이 유지된다."""
    storage = LocalFolderStorage(tmp_path)
    store = InMemoryEditedImageStore()
    images = await _upload_sources(storage, ["shoe.png"])
    editor = FakeEditor()
    result = await run_edit_job(
        "job-14", images, [ImageSpec(title="A")], storage=storage, store=store, editor=editor, settings=_settings()
    )
    [original] = result.records

    second = await re_edit_image(
        "job-14", original, {"title": {"font_size": 60}}, storage=storage, store=store, editor=editor, settings=_settings()
    )
    third = await re_edit_image(
        "job-14", original, "make the gradient darker", storage=storage, store=store, editor=editor, settings=_settings()
    )

    assert (second.version, third.version) == (2, 3)
    assert third.name == "shoe_v3.png"
    assert third.parameters.title.font_size == 60
    assert third.parameters.gradient.opacity == pytest.approx(0.45)
    assert (await store.latest("job-14", original.source_image_id)).id == third.id
    assert len(await store.list_records("job-14")) == 3
