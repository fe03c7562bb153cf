"""Request models for creating and searching ads."""
from typing import Any, List, Optional, Type, TypeVar
from urllib.parse import urlparse

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .exceptions import ValidationError

MAX_INTERESTS = 5

M = TypeVar('M', bound=BaseModel)

def _split_csv(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(',')
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    return value

class CreateAdRequest(BaseModel):
    """Fields a client may supply for a new ad.
    
    The author is deliberately absent: it is taken from the verified payment.
    """
    model_config = ConfigDict(extra='ignore', str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    call_to_action: Optional[str] = Field(None, max_length=100)
    link_url: Optional[str] = Field(None, max_length=2048)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    location: Optional[str] = Field(None, max_length=200)
    min_age: Optional[int] = Field(None, ge=0, le=150)
    max_age: Optional[int] = Field(None, ge=0, le=150)
    interests: List[str] = Field(default_factory=list)
    days: int = Field(1, ge=1, le=365)
    media_key: Optional[str] = Field(None, max_length=512)
    payment_tx: Optional[str] = Field(None, min_length=32, max_length=128)

    @field_validator('interests', mode='before')
    @classmethod
    def split_interests(cls, value):
        return _split_csv(value)

    @field_validator('interests')
    @classmethod
    def limit_interests(cls, value: List[str]) -> List[str]:
        if len(value) > MAX_INTERESTS:
            raise ValueError(f"At most {MAX_INTERESTS} interests allowed")
        for interest in value:
            if ',' in interest or len(interest) > 50:
                raise ValueError(f"Invalid interest: {interest!r}")
        return value

    @field_validator('link_url')
    @classmethod
    def check_link_url(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        parsed = urlparse(value)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ValueError("link_url must be an http(s) URL")
        return value

    @field_validator('description', 'call_to_action', 'location', 'link_url', 'media_key', 'payment_tx', mode='before')
    @classmethod
    def empty_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode='after')
    def check_pairs(self):
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        if self.min_age is not None and self.max_age is not None and self.min_age > self.max_age:
            raise ValueError("min_age must not exceed max_age")
        return self

    @property
    def has_media(self) -> bool:
        return bool(self.media_key)

    @property
    def interests_text(self) -> Optional[str]:
        return ','.join(self.interests) if self.interests else None

class SearchFilters(BaseModel):
    """Structured filters shared by keyword, structured and semantic search."""
    model_config = ConfigDict(extra='ignore')

    query: Optional[str] = Field(
        None, max_length=500, description='Free-text description of what to look for'
    )
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    radius: Optional[float] = Field(None, ge=0)
    min_age: Optional[int] = Field(None, ge=0)
    max_age: Optional[int] = Field(None, ge=0)
    interests: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    limit: int = Field(50, ge=1, le=100)
    offset: int = Field(0, ge=0)

    @field_validator('interests', 'tags', mode='before')
    @classmethod
    def split_lists(cls, value):
        return _split_csv(value)

    @field_validator('tags')
    @classmethod
    def lowercase_tags(cls, value: List[str]) -> List[str]:
        return [tag.lower() for tag in value]

    @model_validator(mode='after')
    def check_geo(self):
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        if self.radius is not None and self.latitude is None:
            raise ValueError("radius requires latitude and longitude")
        if self.min_age is not None and self.max_age is not None and self.min_age > self.max_age:
            raise ValueError("min_age must not exceed max_age")
        return self

    @property
    def has_geo(self) -> bool:
        return self.latitude is not None and self.longitude is not None and self.radius is not None

def parse_model(model: Type[M], data: Any) -> M:
    """Validate data into a model, raising the service ValidationError on failure."""
    try:
        return model.model_validate(data or {})
    except pydantic.ValidationError as e:
        problems = '; '.join(
            f"{'.'.join(str(part) for part in err['loc']) or 'request'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"Invalid request: {problems}") from e
