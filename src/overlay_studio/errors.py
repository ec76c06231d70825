"""파이프라인 전역 예외 계층

컴포넌트 내부 실패(단일 로고, 단일 배치 아이템)는 구조화된 데이터로 흡수되고,
작업 단위 전제조건 위반만 호출자에게 예외로 전파됩니다.
"""


class OverlayStudioError(Exception):
    """모든 파이프라인 예외의 기반 클래스"""


class ConfigurationError(OverlayStudioError):
    """필수 설정(프로바이더 API 키 등)이 누락된 경우"""


class JobPreconditionError(OverlayStudioError):
    """이미지나 스펙이 없는 등, 배치 작업을 시작할 수 없는 경우"""


class ProviderError(OverlayStudioError):
    """외부 이미지 편집 프로바이더 호출 실패"""

    retryable = True

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class InsufficientCreditsError(ProviderError):
    """크레딧 부족. 재시도해도 성공할 수 없으므로 즉시 실패 처리합니다."""

    retryable = False


class MalformedProviderResponse(ProviderError):
    """프로바이더 응답에서 래스터를 찾을 수 없는 경우"""


class RasterDecodeError(OverlayStudioError):
    """이미지 바이트를 디코딩할 수 없는 경우"""


class LayeredDocumentError(OverlayStudioError):
    """레이어 문서를 만들 수 없는 경우 (재시도하지 않음)"""


class ReEditError(OverlayStudioError):
    """재편집 요청이 프로바이더에서 최종 실패한 경우"""
