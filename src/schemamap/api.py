"""
Request models for the service operations.
"""
from __future__ import annotations

from typing import Any, Dict, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from schemamap.errors import ValidationError
from schemamap.urls import normalize_url

MAX_PAGES_PER_SCAN = 100
MAX_CRAWL_DEPTH = 3

RequestModel = TypeVar("RequestModel", bound=BaseModel)


def _check_url(value: str) -> str:
    if not normalize_url(value.strip()):
        raise ValueError("must be an absolute http(s) URL")
    return value.strip()


class AnalyzeOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    include_recommendations: bool = True
    check_consistency: bool = True
    analyze_entities: bool = True
    timeout: float = Field(30.0, ge=5, le=60)
    renderer: Optional[Literal["browser", "static"]] = None


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str
    options: AnalyzeOptions = Field(default_factory=AnalyzeOptions)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _check_url(v)


class ScanOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_pages: int = Field(25, ge=1, le=MAX_PAGES_PER_SCAN)
    crawl_depth: int = Field(3, ge=1, le=MAX_CRAWL_DEPTH)
    crawl_delay: float = Field(1.0, ge=0.5, le=5.0)
    include_sitemaps: bool = True
    renderer: Optional[Literal["browser", "static"]] = None


class ScanSiteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start_url: str
    options: ScanOptions = Field(default_factory=ScanOptions)

    @field_validator("start_url")
    @classmethod
    def validate_start_url(cls, v: str) -> str:
        return _check_url(v)


def parse_request(model: Type[RequestModel], payload: Any) -> RequestModel:
    """Validate a raw payload, raising ValidationError with per-field details."""
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        details = [_detail(err) for err in e.errors()]
        raise ValidationError("Validation failed", details) from e


def _detail(err: Dict[str, Any]) -> Dict[str, str]:
    field = ".".join(str(part) for part in err.get("loc", ())) or "body"
    return {"field": field, "message": err.get("msg", "invalid value")}
