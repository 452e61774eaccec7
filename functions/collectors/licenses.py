"""
License field normalization.

npm manifests carry the license as a string ("MIT"), a legacy object
({"type": "MIT", "url": ...}) or a legacy array of either. The field is
parsed once at ingestion into one of three variants and rendered to a
single normalized string; nothing downstream inspects the raw shape.
"""

from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

UNKNOWN_LICENSE = "UNKNOWN"


@dataclass(frozen=True)
class SimpleLicense:
    """A plain SPDX expression string, e.g. ``"MIT"`` or ``"(MIT OR Apache-2.0)"``."""

    expression: str

    def normalized(self) -> str:
        return self.expression


@dataclass(frozen=True)
class TypedLicense:
    """Legacy ``{"type": ..., "url": ...}`` object."""

    type: str
    url: Optional[str] = None

    def normalized(self) -> str:
        return self.type


@dataclass(frozen=True)
class LicenseDisjunction:
    """Legacy array form; any of the listed licenses applies."""

    licenses: Tuple[str, ...]

    def normalized(self) -> str:
        return " OR ".join(self.licenses) if self.licenses else UNKNOWN_LICENSE


LicenseField = Union[SimpleLicense, TypedLicense, LicenseDisjunction]


def _entry_name(entry: Any) -> Optional[str]:
    if isinstance(entry, str):
        return entry.strip() or None
    if isinstance(entry, dict):
        value = entry.get("type") or entry.get("name")
        return value.strip() if isinstance(value, str) and value.strip() else None
    return None


def parse_license_field(raw: Any) -> Optional[LicenseField]:
    """Parse a raw manifest license value; None when absent or unusable."""
    if isinstance(raw, str):
        return SimpleLicense(raw.strip()) if raw.strip() else None

    if isinstance(raw, dict):
        name = _entry_name(raw)
        if name is None:
            return None
        url = raw.get("url") if isinstance(raw.get("url"), str) else None
        return TypedLicense(name, url)

    if isinstance(raw, (list, tuple)):
        names = tuple(name for name in (_entry_name(entry) for entry in raw) if name)
        return LicenseDisjunction(names) if names else None

    return None


def normalize_license(raw: Any) -> str:
    """Normalized license string for a raw manifest value ("UNKNOWN" if absent)."""
    parsed = parse_license_field(raw)
    return parsed.normalized() if parsed is not None else UNKNOWN_LICENSE


PERMISSIVE_LICENSES = ("MIT", "ISC", "BSD-2-CLAUSE", "BSD-3-CLAUSE", "APACHE-2.0")
COPYLEFT_LICENSES = ("GPL-2.0", "GPL-3.0", "AGPL-3.0")
PROPRIETARY_LICENSES = ("UNLICENSED", "PROPRIETARY")


def license_compatibility(license_name: str) -> dict:
    """
    Coarse usage flags for a normalized license string.

    Copyleft is detected by substring so "GPL-3.0-only" or "LGPL-2.0" and
    disjunctions containing a GPL family license are flagged.
    """
    normalized = (license_name or UNKNOWN_LICENSE).upper()
    proprietary = normalized in PROPRIETARY_LICENSES
    copyleft = any(name in normalized for name in COPYLEFT_LICENSES)
    return {
        "permissive": normalized in PERMISSIVE_LICENSES,
        "osi_approved": not proprietary,
        "fsf_libre": not proprietary,
        "allows_commercial_use": not copyleft,
        "allows_modification": not proprietary,
        "requires_source_code": copyleft,
        "requires_same_license": copyleft,
    }
