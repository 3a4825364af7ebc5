from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


SequenceId = Union[int, str]


class ChangeEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    seq: SequenceId
    id: str
    deleted: bool = False


class ChangesResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    results: List[ChangeEntry] = Field(default_factory=list)
    last_seq: SequenceId


class DocumentEnvelope(BaseModel):
    """Fields every database document carries."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., alias="_id")
    rev: Optional[str] = Field(None, alias="_rev")
    type: Optional[str] = None


class Profile(DocumentEnvelope):
    name: Optional[str] = None
    device_tokens: List[str] = Field(default_factory=list, alias="deviceTokens")
    auth_system: Optional[str] = Field(None, alias="authSystem")

    @field_validator("device_tokens", mode="before")
    @classmethod
    def _null_tokens(cls, value: Any) -> Any:
        return [] if value is None else value


class Beacon(DocumentEnvelope):
    desc: Optional[str] = None
    location: Optional[str] = None
    uuid: Optional[str] = None
    major: int = 0
    minor: int = 0
    organization: Optional[str] = None


class GeofenceEventDocument(DocumentEnvelope):
    action: str = ""
    beacon: str
    profile: str
    created_at: Optional[datetime] = None

    @field_validator("created_at", mode="before")
    @classmethod
    def _blank_timestamp(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value
