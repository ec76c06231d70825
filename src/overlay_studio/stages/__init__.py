from .batch_orchestrator import edit_batch, normalize_provider_response
from .editors import create_image_editor
from .image_analyzer import analyze_image
from .layered_document import build_two_layer_document, export_filename
from .logo_compositor import composite_logos, plan_placement
from .logo_detector import detect_existing_logos
from .matching import match_images_to_specs
from .parameter_engine import (
    calculate_default_parameters,
    calculate_parameters_from_analysis,
    merge_parameter_updates,
    parse_parameter_updates,
)
from .prompt_compiler import compile_spec_prompt, generate_prompt_from_parameters

__all__ = [
    "calculate_default_parameters",
    "calculate_parameters_from_analysis",
    "merge_parameter_updates",
    "parse_parameter_updates",
    "generate_prompt_from_parameters",
    "compile_spec_prompt",
    "edit_batch",
    "normalize_provider_response",
    "create_image_editor",
    "plan_placement",
    "composite_logos",
    "detect_existing_logos",
    "analyze_image",
    "match_images_to_specs",
    "build_two_layer_document",
    "export_filename",
]
