from __future__ import annotations

from overlay_studio.errors import JobPreconditionError
from overlay_studio.models.image_spec import ImageSpec
from overlay_studio.models.records import ImageSpecMatch, MatchKind, SourceImage


def match_images_to_specs(
    images: list[SourceImage],
    specs: list[ImageSpec],
) -> list[ImageSpecMatch]:
    """이미지와 스펙을 짝지웁니다.

    이미지 i 는 스펙이 남아 있는 동안 스펙 i 와 직접 매칭되고(direct),
    이미지가 더 많으면 specs[i % len(specs)] 로 순환 매칭됩니다(cyclic).
    남는 스펙은 사용하지 않습니다.
    """
    if not images:
        raise JobPreconditionError("No images to match")
    if not specs:
        raise JobPreconditionError("No image specs to match")

    matches: list[ImageSpecMatch] = []
    for index, image in enumerate(images):
        spec_index = index % len(specs)
        matches.append(
            ImageSpecMatch(
                image_index=index,
                image=image,
                spec_index=spec_index,
                spec=specs[spec_index],
                match_kind=MatchKind.DIRECT if index < len(specs) else MatchKind.CYCLIC,
            )
        )
    return matches
