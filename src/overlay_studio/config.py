from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Image Editing Provider: "fal" | "wavespeed"
    image_provider: str = "fal"
    fal_key: str = ""
    fal_edit_model: str = "fal-ai/nano-banana/edit"
    wavespeed_api_key: str = ""
    wavespeed_edit_url: str = "https://api.wavespeed.ai/api/v3/google/nano-banana/edit"
    provider_timeout_seconds: float = 120.0

    # Logo Detector / Image Analyzer (Vision)
    openai_api_key: str = ""
    logo_detector_model: str = "gpt-4o-mini"
    image_analyzer_model: str = "gpt-4o-mini"

    # Batch Configuration
    # 청크는 순차 처리, 청크 내부 아이템은 동시 호출
    batch_size: int = 15
    max_edit_attempts: int = 3
    retry_backoff_base: float = 2.0

    # Output Configuration
    edited_output_format: str = "JPEG"
    edited_folder_ref: str = "edited"
    output_dir: str = "output"

    # Logo Configuration
    max_logos_per_image: int = 8
    logo_margin_percent: float = 3.0

    # SSL / Proxy Configuration
    # 기업 프록시 환경에서 SSL 검증 오류 발생 시 false로 설정
    ssl_verify: bool = True
    # 커스텀 CA 인증서 경로 (비워두면 certifi 기본값 사용)
    ca_bundle_path: str = ""


@lru_cache
def get_settings() -> Settings:
    return Settings()
