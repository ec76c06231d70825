"""PromptCompiler 테스트: 결정론, 텍스트 보존, 수치 표기 금지"""
import re

from overlay_studio.models.image_spec import ImageSpec
from overlay_studio.stages.parameter_engine import calculate_default_parameters, merge_parameter_updates
from overlay_studio.stages.prompt_compiler import compile_spec_prompt, generate_prompt_from_parameters


def _params(title="Millennium", subtitle="Performance that lasts"):
    return calculate_default_parameters(2000, 1200, title, subtitle)


def test_prompt_is_deterministic():
    params = _params()
    assert generate_prompt_from_parameters(params) == generate_prompt_from_parameters(params)


def test_prompt_contains_text_verbatim():
    """타이틀은 대문자로, 서브타이틀은 입력 그대로 따옴표 안에 들어간다."""
    prompt = generate_prompt_from_parameters(_params())

    assert 'Title: "MILLENNIUM"' in prompt
    assert 'Subtitle: "Performance that lasts"' in prompt


def test_prompt_uses_fallback_title():
    prompt = generate_prompt_from_parameters(_params(title="", subtitle=""))
    assert 'Title: "PRODUCT"' in prompt


def test_prompt_has_no_numeric_styling_tokens():
    """프로바이더가 글자로 그려 넣지 않도록 px, %, rgba, # 표기를 쓰지 않는다."""
    prompt = generate_prompt_from_parameters(_params())

    assert not re.search(r"\d\s*px", prompt)
    assert "%" not in prompt
    assert "rgba" not in prompt.lower()
    assert "#" not in prompt


def test_prompt_describes_gradient_in_words():
    prompt = generate_prompt_from_parameters(_params())

    assert "about twenty-two percent" in prompt
    assert "moderate darkness" in prompt


def test_disabled_gradient_is_described():
    params = _params()
    params.gradient.enabled = False
    assert "Do not add any gradient" in generate_prompt_from_parameters(params)


def test_alignment_clauses_are_distinct():
    params = _params()
    left = generate_prompt_from_parameters(params)
    center = generate_prompt_from_parameters(merge_parameter_updates(params, {"title": {"alignment": "center"}}))
    right = generate_prompt_from_parameters(merge_parameter_updates(params, {"title": {"alignment": "right"}}))

    assert "Left-align the title" in left
    assert "Center the title horizontally" in center
    assert "Right-align the title" in right
    assert len({left, center, right}) == 3


def test_spec_prompt_appends_creative_direction():
    params = _params()
    spec = ImageSpec(title="Millennium", base_prompt="  Warm evening light mood  ")
    prompt = compile_spec_prompt(spec, params)

    assert prompt.startswith(generate_prompt_from_parameters(params))
    assert prompt.rstrip().endswith("Warm evening light mood")
    assert "ADDITIONAL CREATIVE DIRECTION" in prompt


def test_spec_prompt_without_base_prompt_is_unchanged():
    params = _params()
    assert compile_spec_prompt(ImageSpec(title="Millennium"), params) == generate_prompt_from_parameters(params)


def test_default_shadow_points_downward():
    assert "offset slightly downward" in generate_prompt_from_parameters(_params())


def test_shadow_direction_follows_offsets():
    """그림자 방향은 offset 부호와 축을 따른다."""
    params = _params()
    params.title.shadow.offset_x = -4
    params.title.shadow.offset_y = -4
    params.subtitle.shadow.offset_x = 2
    params.subtitle.shadow.offset_y = 0
    prompt = generate_prompt_from_parameters(params)

    assert "offset clearly upward and to the left" in prompt
    assert "offset slightly to the right" in prompt
    assert "downward" not in prompt


def test_shadow_without_offset_is_a_glow():
    params = _params()
    params.title.shadow.offset_y = 0
    prompt = generate_prompt_from_parameters(params)
    assert "dark glow centered behind the text" in prompt
