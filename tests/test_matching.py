"""이미지·스펙 매칭 테스트"""
import pytest

from overlay_studio.errors import JobPreconditionError
from overlay_studio.models.image_spec import ImageSpec
from overlay_studio.models.records import MatchKind, SourceImage
from overlay_studio.stages.matching import match_images_to_specs


def _images(count):
    return [SourceImage(storage_id=f"sources/{i}.jpg", name=f"{i}.jpg", data=b"") for i in range(count)]


def test_more_images_than_specs_cycle():
    specs = [ImageSpec(title="A"), ImageSpec(title="B")]
    matches = match_images_to_specs(_images(5), specs)

    assert [m.spec_index for m in matches] == [0, 1, 0, 1, 0]
    assert [m.match_kind for m in matches] == [MatchKind.DIRECT, MatchKind.DIRECT] + [MatchKind.CYCLIC] * 3
    assert matches[3].spec.title == "B"


def test_extra_specs_are_unused():
    specs = [ImageSpec(title=t) for t in "ABC"]
    matches = match_images_to_specs(_images(2), specs)

    assert [m.spec.title for m in matches] == ["A", "B"]
    assert all(m.match_kind == MatchKind.DIRECT for m in matches)


@pytest.mark.parametrize("images, specs", [([], [ImageSpec(title="A")]), (_images(1), [])])
def test_missing_inputs_raise(images, specs):
    with pytest.raises(JobPreconditionError):
        match_images_to_specs(images, specs)
