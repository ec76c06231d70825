"""
사용법:
  uv run python -m overlay_studio [이미지 경로 ...]

예시 입력값으로 편집 작업을 실행하고 결과를 PSD 로 내보내는 CLI 진입점.
실제 운영 시에는 아래 example_* 변수를 교체하여 사용.
"""
import asyncio
import logging
import sys
import uuid
from pathlib import Path

from overlay_studio.utils.http_client import configure_ssl_globally

# SSL 전역 패치: 반드시 다른 import보다 먼저 실행 (fal_client 포함 모든 라이브러리에 적용)
configure_ssl_globally()

from overlay_studio.config import get_settings  # noqa: E402
from overlay_studio.models import ImageSpec, LogoAsset, SourceImage  # noqa: E402
from overlay_studio.pipeline import export_layered_document, run_edit_job  # noqa: E402
from overlay_studio.repository import InMemoryEditedImageStore  # noqa: E402
from overlay_studio.stages.image_analyzer import analyze_image  # noqa: E402
from overlay_studio.stages.logo_detector import detect_existing_logos  # noqa: E402
from overlay_studio.utils.image_utils import guess_mime_type  # noqa: E402
from overlay_studio.utils.storage import LocalFolderStorage  # noqa: E402

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

# ── 예시 입력값 (실제 사용 시 교체) ──────────────────────────
example_images = ["./example/img/product_1.jpg", "./example/img/product_2.jpg"]
example_specs = [
    ImageSpec(title="Millennium", subtitle="Performance that lasts", logo_requested=True, logo_names=["Intel Core"]),
    ImageSpec(title="Aurora", subtitle="Light meets precision"),
]
example_logos = {"intel-core": "./example/img/logo_intel_core.png"}


async def main() -> None:
    settings = get_settings()
    storage = LocalFolderStorage(Path(settings.output_dir) / "storage")
    store = InMemoryEditedImageStore()
    job_id = uuid.uuid4().hex[:8]

    paths = sys.argv[1:] or example_images
    images = []
    for path in paths:
        data = Path(path).read_bytes()
        stored = await storage.upload(data, Path(path).name, guess_mime_type(path), "sources")
        images.append(SourceImage(storage_id=stored.id, name=stored.name, data=data, mime_type=stored.mime_type))

    logo_catalog = {
        key: LogoAsset(canonical_key=key, display_name=key, raster=Path(path).read_bytes())
        for key, path in example_logos.items()
        if Path(path).exists()
    }

    result = await run_edit_job(
        job_id,
        images,
        example_specs,
        storage=storage,
        store=store,
        logo_catalog=logo_catalog,
        logo_detector=detect_existing_logos if settings.openai_api_key else None,
        image_analyzer=analyze_image if settings.openai_api_key else None,
        on_progress=lambda p: print(f"  진행: {p.completed_count}/{p.total_count}"),
    )

    print(f"\n✓ 완료: {len(result.records)}/{result.total_images}장 편집")
    for failure in result.failures:
        print(f"  ✗ #{failure.index}: {failure.reason}")

    output_dir = Path(settings.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    for record in result.records:
        export = await export_layered_document(record, storage)
        target = output_dir / export.filename
        target.write_bytes(export.content)
        print(f"\n💾 PSD 저장: {target} (v{record.version}, 로고 {'적용' if record.logo_applied else '없음'})")


def main_sync() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    main_sync()
