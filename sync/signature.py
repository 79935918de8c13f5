"""
Content signatures for change detection.

Third-party pages do not carry reliable timestamps, so the engine decides
whether a record really changed by comparing a fingerprint of its
semantically relevant fields. The fingerprint is independent of key order,
incidental whitespace and URL query/fragment/trailing-slash differences.
"""

import json
import logging
import re
from typing import Any, Dict, Iterable, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_url(url: Any) -> Optional[str]:
    """
    Normalize a URL for comparison.

    Lower-cases scheme, host and path and drops the query string, the
    fragment and trailing slashes. Anything that does not parse as an
    absolute URL falls back to the trimmed, lower-cased raw string without
    trailing slashes.
    """
    if url is None:
        return None
    raw = str(url).strip()
    if not raw:
        return None

    try:
        parts = urlsplit(raw)
        if not parts.scheme or not parts.netloc:
            raise ValueError(f"not an absolute URL: {raw}")
        path = parts.path.rstrip("/")
        return f"{parts.scheme.lower()}://{parts.netloc.lower()}{path.lower()}"
    except ValueError:
        return raw.lower().rstrip("/")


def _canonical(value: Any) -> Any:
    """Recursively normalize a value; empty values collapse to None"""
    if isinstance(value, BaseModel):
        value = value.model_dump()
    if isinstance(value, dict):
        cleaned = {str(k): _canonical(v) for k, v in value.items()}
        cleaned = {k: v for k, v in cleaned.items() if v is not None}
        return cleaned or None
    if isinstance(value, (list, tuple)):
        cleaned = [_canonical(v) for v in value]
        cleaned = [v for v in cleaned if v is not None]
        return cleaned or None
    if isinstance(value, str):
        text = _WHITESPACE.sub(" ", value).strip()
        return text or None
    return value


def _field_value(record: Any, field: str) -> Any:
    if isinstance(record, dict):
        return record.get(field)
    return getattr(record, field, None)


class ContentSignature:
    """
    Fingerprint of an allow-list of fields.

    Attributes:
        fields: Fields that carry semantic content
        url_fields: Subset of fields normalized as URLs
    """

    def __init__(self, fields: Iterable[str], url_fields: Iterable[str] = ("policy_url",)):
        self.url_fields = tuple(url_fields)
        self.fields = tuple(sorted(set(fields) | set(self.url_fields)))

    def relevant_fields(self, record: Any) -> Dict[str, Any]:
        selected = {}
        for field in self.fields:
            value = _field_value(record, field)
            if field in self.url_fields:
                selected[field] = normalize_url(value)
            else:
                selected[field] = _canonical(value)
        return selected

    def signature(self, record: Any) -> str:
        """Serialize the relevant fields with keys sorted at every level"""
        if record is None:
            return ""
        return json.dumps(
            self.relevant_fields(record),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            default=str
        )

    def changed(self, old: Any, new: Any) -> bool:
        """True when exactly one side is absent or the signatures differ"""
        if old is None and new is None:
            return False
        if old is None or new is None:
            return True

        old_signature = self.signature(old)
        new_signature = self.signature(new)
        if old_signature != new_signature:
            logger.debug(
                f"Content changed: old={old_signature[:100]}... new={new_signature[:100]}..."
            )
            return True
        return False


PET_POLICY_SIGNATURE = ContentSignature(
    fields=(
        "pet_types_allowed",
        "size_restrictions",
        "documentation_needed",
        "fees",
        "breed_restrictions",
        "carrier_requirements",
        "carrier_requirements_cabin",
        "carrier_requirements_cargo",
        "temperature_restrictions",
    ),
)

COUNTRY_POLICY_SIGNATURE = ContentSignature(
    fields=(
        "title",
        "description",
        "requirements",
        "documentation_needed",
        "fees",
        "restrictions",
        "quarantine_requirements",
        "vaccination_requirements",
    ),
)


def signature(record: Any) -> str:
    """Pet policy content signature"""
    return PET_POLICY_SIGNATURE.signature(record)


def changed(old: Any, new: Any) -> bool:
    """Whether two pet policies differ in content"""
    return PET_POLICY_SIGNATURE.changed(old, new)
