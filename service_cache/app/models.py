"""
Request and response models for the cache HTTP API.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


class CacheWriteRequest(BaseModel):
    """Body of PUT /cache/{key}."""
    value: Any
    ttl_seconds: Optional[int] = Field(default=None, gt=0)


class CacheValueResponse(BaseModel):
    key: str
    value: Any
    degraded: bool = False


class CacheWriteResponse(BaseModel):
    key: str
    stored: bool = True
    degraded: bool = False
    ttl_seconds: int


class CacheDeleteResponse(BaseModel):
    key: str
    deleted: bool = True
    degraded: bool = False
