# core/tus.py
import base64
import binascii
from datetime import datetime
from email.utils import format_datetime
from typing import Dict, Mapping, Optional
from util.errors import ValidationError


def parse_metadata(header: Optional[str]) -> Dict[str, str]:
    """
    Decode an Upload-Metadata header: comma separated `key base64(value)` pairs.
    A key without a value maps to "". Malformed base64 or duplicate keys are rejected.
    """
    out: Dict[str, str] = {}
    if not header:
        return out
    for pair in header.split(","):
        pair = pair.strip()
        if not pair:
            continue
        key, _, encoded = pair.partition(" ")
        key = key.strip()
        encoded = encoded.strip()
        if not key or " " in encoded:
            raise ValidationError(f"Malformed Upload-Metadata pair: {pair!r}", code="invalid_metadata")
        if key in out:
            raise ValidationError(f"Duplicate Upload-Metadata key: {key}", code="invalid_metadata")
        try:
            out[key] = base64.b64decode(encoded, validate=True).decode("utf-8") if encoded else ""
        except (binascii.Error, UnicodeDecodeError):
            raise ValidationError(
                f"Upload-Metadata value for {key} is not valid base64", code="invalid_metadata"
            )
    return out


def encode_metadata(values: Mapping[str, Optional[str]]) -> str:
    parts = []
    for key, value in values.items():
        if value is None:
            continue
        if value == "":
            parts.append(key)
        else:
            parts.append(f"{key} {base64.b64encode(value.encode('utf-8')).decode('ascii')}")
    return ",".join(parts)


def parse_non_negative_int(value: Optional[str]) -> Optional[int]:
    """Header integer per tus: digits only. Returns None when absent or invalid."""
    if value is None:
        return None
    value = value.strip()
    if not (value.isascii() and value.isdigit()):
        return None
    return int(value)


def http_date(moment: datetime) -> str:
    """RFC 7231 IMF-fixdate used by Upload-Expires."""
    return format_datetime(moment, usegmt=True)
