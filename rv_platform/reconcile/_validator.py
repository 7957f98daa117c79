# rv_platform/reconcile/_validator.py
# Structural checks on a merged candidate before anything is committed.
# Copyright (c) 2025-2026 ReelVault
from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from ..records import ActorRecord, VideoRecord, first_violation
from ._errors import ValidationError
from ._types import KEYED_DOMAINS, Dataset, Domain

_RECORD_MODELS: Dict[Domain, type[BaseModel]] = {
    Domain.VIDEO_RECORDS: VideoRecord,
    Domain.ACTOR_RECORDS: ActorRecord,
}

# record field carrying the identity checked for duplicates
_ID_FIELD: Dict[Domain, str] = {
    Domain.VIDEO_RECORDS: "id",
    Domain.ACTOR_RECORDS: "id",
    Domain.SUBSCRIPTIONS: "actorId",
    Domain.WORK_RECORDS: "id",
}


def validate_records(domain: Domain, records: Mapping[str, Any]) -> None:
    model = _RECORD_MODELS.get(domain)
    id_field = _ID_FIELD[domain]
    owners: Dict[str, str] = {}

    for key, rec in records.items():
        if model is not None:
            bad = first_violation(model, rec)
            if bad is not None:
                fname, msg = bad
                raise ValidationError(
                    f"{domain.value}['{key}'].{fname}: {msg}",
                    domain=domain.value,
                    key=key,
                    rule=fname,
                )
        rid = rec.get(id_field) if isinstance(rec, Mapping) else None
        if rid in (None, ""):
            continue
        rid = str(rid)
        prev = owners.get(rid)
        if prev is not None:
            raise ValidationError(
                f"{domain.value}: '{prev}' and '{key}' share {id_field} '{rid}'",
                domain=domain.value,
                key=key,
                rule="unique_id",
            )
        owners[rid] = key


def validate_settings(settings: Any, required_sections: Sequence[str]) -> List[str]:
    """Check required sections; an absent settings blob is reported as a warning, not checked."""
    if settings is None:
        if not required_sections:
            return []
        return [f"no settings in the restored data; required sections not checked: {', '.join(required_sections)}"]
    if not isinstance(settings, Mapping):
        raise ValidationError("settings must be an object", domain=Domain.SETTINGS.value, rule="settings")
    for section in required_sections:
        if section not in settings:
            raise ValidationError(
                f"settings is missing required section '{section}'",
                domain=Domain.SETTINGS.value,
                key=section,
                rule="required_section",
            )
    return []


def validate(candidate: Dataset, required_sections: Optional[Sequence[str]] = None) -> List[str]:
    """Raise ValidationError for the first violation and return the warnings.

    Domains absent from ``candidate`` are skipped.
    """
    for domain in KEYED_DOMAINS:
        recs = candidate.get(domain.value)
        if isinstance(recs, Mapping):
            validate_records(domain, recs)
    if Domain.SETTINGS.value in candidate:
        return validate_settings(candidate[Domain.SETTINGS.value], required_sections or ())
    return []


__all__ = ["validate", "validate_records", "validate_settings"]
