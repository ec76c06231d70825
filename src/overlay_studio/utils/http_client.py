"""공유 HTTP / OpenAI 클라이언트 팩토리

기업 프록시 환경의 SSL 인증서 오류를 처리합니다.
SSL_VERIFY=false 또는 CA_BUNDLE_PATH 설정으로 동작을 제어합니다.
"""
import logging
import os
import ssl

import certifi
import httpx
from openai import AsyncOpenAI

from overlay_studio.config import get_settings

logger = logging.getLogger(__name__)


def _disable_ssl_verification() -> None:
    # httpx 는 ssl.create_default_context() 를 직접 호출하므로 함수 자체를 교체
    original = ssl.create_default_context

    def unverified(*args, **kwargs):
        ctx = original(*args, **kwargs)
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        return ctx

    ssl.create_default_context = unverified  # type: ignore[assignment]
    ssl._create_default_https_context = ssl._create_unverified_context  # noqa: SLF001


def configure_ssl_globally() -> None:
    """프로세스 전역 SSL 설정을 적용합니다 (CLI 시작 시 가장 먼저 호출).

    fal_client 는 자체 httpx 클라이언트를 만들기 때문에 create_http_client 설정이
    닿지 않습니다. 검증 비활성화는 ssl 모듈 패치로, 커스텀 CA 는 환경변수로 전달합니다.
    """
    settings = get_settings()
    if not settings.ssl_verify:
        logger.warning(
            "SSL verification disabled for all HTTPS connections (SSL_VERIFY=false); "
            "use only behind a corporate proxy"
        )
        _disable_ssl_verification()
    elif settings.ca_bundle_path:
        logger.info("Using custom CA bundle: %s", settings.ca_bundle_path)
        os.environ["SSL_CERT_FILE"] = settings.ca_bundle_path
        os.environ["REQUESTS_CA_BUNDLE"] = settings.ca_bundle_path


def _build_ssl_context() -> ssl.SSLContext | bool | str:
    """환경설정에 따라 httpx verify 값을 반환합니다.

    Returns:
        - ssl.SSLContext: 커스텀 CA 번들 사용 시 (certifi 번들과 병합)
        - str (certifi 경로): 기본 동작
        - False: SSL 검증 비활성화 (프록시 환경 임시 우회용)
    """
    settings = get_settings()

    if not settings.ssl_verify:
        return False

    if settings.ca_bundle_path:
        ctx = ssl.create_default_context(cafile=certifi.where())
        ctx.load_verify_locations(cafile=settings.ca_bundle_path)
        return ctx

    return certifi.where()


def create_http_client(timeout: float | None = None) -> httpx.AsyncClient:
    """SSL 설정이 적용된 httpx.AsyncClient 를 생성합니다."""
    settings = get_settings()
    return httpx.AsyncClient(
        verify=_build_ssl_context(),
        timeout=timeout if timeout is not None else settings.provider_timeout_seconds,
    )


def create_openai_client() -> AsyncOpenAI:
    """SSL 설정이 적용된 AsyncOpenAI 클라이언트를 생성합니다."""
    settings = get_settings()
    return AsyncOpenAI(
        api_key=settings.openai_api_key,
        http_client=httpx.AsyncClient(verify=_build_ssl_context()),
    )
