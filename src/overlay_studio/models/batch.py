from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class RasterRef(BaseModel):
    """프로바이더 응답을 정규화한 래스터 참조 (http(s) URL 또는 data URL)."""

    uri: str = Field(repr=False)
    mime_type: str | None = None

    @property
    def is_inline(self) -> bool:
        return self.uri.startswith("data:")


class BatchItem(BaseModel):
    index: int
    image_url: str = Field(repr=False)
    compiled_prompt: str = Field(repr=False)


class BatchSuccess(BaseModel):
    status: Literal["success"] = "success"
    index: int
    raster: RasterRef


class BatchFailure(BaseModel):
    status: Literal["failure"] = "failure"
    index: int
    reason: str


BatchResult = Annotated[Union[BatchSuccess, BatchFailure], Field(discriminator="status")]


class BatchProgress(BaseModel):
    completed_count: int
    total_count: int
    last_index: int
