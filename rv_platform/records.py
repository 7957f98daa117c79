# /rv_platform/records.py
# Record shapes for the restore engine.
# - VersionedRecord: known fields + extension bag (unknown fields are carried verbatim).
# - Pydantic models used to check structural invariants before commit.
# Copyright (c) 2025-2026 ReelVault

from __future__ import annotations

from dataclasses import dataclass, field
from collections.abc import Mapping, Sequence
from typing import Annotated, Any, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, model_validator
from pydantic import ValidationError as PydanticValidationError

VIDEO_FIELDS: Tuple[str, ...] = (
    "id", "title", "status", "tags", "listIds",
    "releaseDate", "javdbUrl", "javdbImage", "enhancedData",
    "createdAt", "updatedAt",
)
ACTOR_FIELDS: Tuple[str, ...] = (
    "id", "name", "aliases", "gender", "category",
    "avatarUrl", "profileUrl", "worksUrl", "blacklisted",
    "details", "syncInfo", "createdAt", "updatedAt",
)
SUBSCRIPTION_FIELDS: Tuple[str, ...] = (
    "actorId", "actorName", "avatarUrl", "enabled", "lastCheckTime", "subscribedAt", "updatedAt",
)
WORK_FIELDS: Tuple[str, ...] = (
    "id", "actorId", "actorName", "title", "releaseDate", "javdbUrl",
    "coverImage", "tags", "discoveredAt", "isRead", "status", "updatedAt",
)

ACTOR_GENDERS: Tuple[str, ...] = ("female", "male", "unknown")
ACTOR_CATEGORIES: Tuple[str, ...] = ("censored", "uncensored", "western", "unknown")

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
Timestamp = Optional[float]


@dataclass
class VersionedRecord:
    """A record split into the fields this version understands and everything else.

    ``fields`` may be rewritten freely; ``extensions`` is emitted back untouched,
    so a snapshot written by a newer client survives a round trip through an
    older engine.
    """

    fields: dict[str, Any]
    extensions: dict[str, Any]
    order: list[str] = field(default_factory=list)

    @classmethod
    def split(cls, raw: Mapping[str, Any], known: Sequence[str]) -> "VersionedRecord":
        known_set = set(known)
        fields: dict[str, Any] = {}
        ext: dict[str, Any] = {}
        for k, v in raw.items():
            if k in known_set:
                fields[k] = v
            else:
                ext[k] = v
        return cls(fields=fields, extensions=ext, order=[str(k) for k in raw.keys()])

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def set(self, name: str, value: Any) -> None:
        self.fields[name] = value

    def to_raw(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for k in self.order:
            if k in self.fields:
                out[k] = self.fields[k]
            elif k in self.extensions:
                out[k] = self.extensions[k]
        for k, v in self.fields.items():
            out.setdefault(k, v)
        for k, v in self.extensions.items():
            out.setdefault(k, v)
        return out


class VideoRecord(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: NonEmptyStr
    title: NonEmptyStr
    status: Literal["viewed", "want", "browsed", "untracked"]
    tags: list[Any] = Field(strict=True)
    created_at: Timestamp = Field(default=None, alias="createdAt")
    updated_at: Timestamp = Field(default=None, alias="updatedAt")

    @model_validator(mode="after")
    def _timestamps_ordered(self) -> "VideoRecord":
        if self.created_at is not None and self.updated_at is not None and self.updated_at < self.created_at:
            raise ValueError("updatedAt precedes createdAt")
        return self


class ActorRecord(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: NonEmptyStr
    name: NonEmptyStr
    gender: Literal["female", "male", "unknown"]
    category: Literal["censored", "uncensored", "western", "unknown"]
    aliases: list[Any] = Field(strict=True)


def _alias_of(model: type[BaseModel], name: str) -> str:
    info = model.model_fields.get(name)
    return (info.alias if info is not None and info.alias else name)


def first_violation(model: type[BaseModel], raw: Any) -> Optional[Tuple[str, str]]:
    """(field, message) of the first failed check, or None when ``raw`` is valid."""
    if not isinstance(raw, Mapping):
        return ("record", "record must be an object")
    try:
        model.model_validate(dict(raw))
    except PydanticValidationError as e:
        errs = e.errors()
        if not errs:
            return ("record", str(e))
        err = errs[0]
        loc = err.get("loc") or ()
        fname = _alias_of(model, str(loc[0])) if loc else "record"
        return (fname, str(err.get("msg") or "invalid"))
    return None


__all__ = [
    "VIDEO_FIELDS", "ACTOR_FIELDS", "SUBSCRIPTION_FIELDS", "WORK_FIELDS",
    "ACTOR_GENDERS", "ACTOR_CATEGORIES",
    "VersionedRecord", "VideoRecord", "ActorRecord", "first_violation",
]
