"""JSON codec for checkpoint metadata.

Stored payloads use camelCase keys (``recordCount``, ``controlTotalAmount``).
Decoding is lenient field by field: a value of the wrong shape becomes ``None``
for that field only, and unknown keys are ignored. Only a payload that is not
a JSON object at all raises ``MetadataDecodeError``.
"""

import json
from dataclasses import fields
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Mapping, Optional

from .errors import MetadataDecodeError
from .models import AuditDetails
from .ports import RawMetadata


def _parse_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _parse_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, str)):
        try:
            parsed = Decimal(str(value).strip())
        except InvalidOperation:
            return None
        return parsed if parsed.is_finite() else None
    if isinstance(value, float):
        # repr keeps 12.5 as Decimal("12.5") rather than its binary expansion
        parsed = Decimal(repr(value))
        return parsed if parsed.is_finite() else None
    if isinstance(value, Decimal):
        return value
    return None


def _parse_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _parse_mapping(value: Any) -> Optional[Mapping[str, Any]]:
    if isinstance(value, Mapping):
        return dict(value)
    return None


_FIELD_PARSERS: Dict[str, Callable[[Any], Any]] = {
    "file_size_bytes": _parse_int,
    "file_hash_sha256": _parse_str,
    "rows_read": _parse_int,
    "rows_loaded": _parse_int,
    "rows_rejected": _parse_int,
    "record_count": _parse_int,
    "record_count_before": _parse_int,
    "record_count_after": _parse_int,
    "control_total_debits": _parse_decimal,
    "control_total_credits": _parse_decimal,
    "control_total_amount": _parse_decimal,
    "rule_input": _parse_mapping,
    "rule_output": _parse_mapping,
    "rule_applied": _parse_str,
    "entity_identifier": _parse_str,
    "transformation_details": _parse_str,
}


def _camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


_WIRE_KEYS: Dict[str, str] = {name: _camel_case(name) for name in _FIELD_PARSERS}


class JsonMetadataCodec:
    """Decodes JSON text or already-decoded mappings into ``AuditDetails``."""

    def decode(self, raw: RawMetadata) -> Optional[AuditDetails]:
        if raw is None:
            return None
        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise MetadataDecodeError("Metadata is not valid UTF-8") from exc
        if isinstance(raw, str):
            if not raw.strip():
                return None
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise MetadataDecodeError(f"Metadata is not valid JSON: {exc.msg}") from exc
        if not isinstance(raw, Mapping):
            raise MetadataDecodeError(f"Metadata must be a JSON object, got {type(raw).__name__}")

        values = {}
        for name, parser in _FIELD_PARSERS.items():
            wire_key = _WIRE_KEYS[name]
            value = raw.get(wire_key, raw.get(name))
            values[name] = parser(value)
        return AuditDetails(**values)

    def encode(self, details: Optional[AuditDetails]) -> Optional[str]:
        if details is None:
            return None
        payload: Dict[str, Any] = {}
        for item in fields(AuditDetails):
            value = getattr(details, item.name)
            if value is None:
                continue
            if isinstance(value, Decimal):
                value = str(value)
            payload[_WIRE_KEYS[item.name]] = value
        return json.dumps(payload, sort_keys=True)
