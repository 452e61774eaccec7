"""
Request validation for package identities.

npm rules:
- Scopes can start with underscore (e.g., @_ndk/motion exists)
- Package names cannot start with . or _
- Accepts uppercase letters (legacy packages like Server, JSONStream)
- Maximum length: 214 characters
- Case-insensitive: Server and server resolve to same package

Versions are either "latest", a dist-tag, or an exact semver string.
"""

import re
from typing import Optional, Tuple

from shared.constants import MAX_PACKAGE_NAME_LENGTH

NPM_PACKAGE_PATTERN = re.compile(
    r"^(@[a-z0-9_][a-z0-9._~-]*/)?[a-z0-9][a-z0-9._~-]*$", re.IGNORECASE
)

# Exact semver (with optional prerelease/build) or a dist-tag like "next"
VERSION_PATTERN = re.compile(
    r"^(\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?|[A-Za-z][A-Za-z0-9._-]{0,63})$"
)


def normalize_npm_name(name: str) -> str:
    """Normalize npm package name to lowercase (npm is case-insensitive)."""
    return name.strip().lower() if name else ""


def validate_npm_package_name(name: str) -> Tuple[bool, Optional[str], str]:
    """
    Validate and normalize an npm package name.

    Returns: (is_valid, error_message, normalized_name)
    """
    if not name or not name.strip():
        return False, "Empty package name", ""

    name = name.strip()

    # Security checks before normalization
    if name.startswith("/") or "/../" in name or name.startswith("../") or name.endswith("/.."):
        return False, "Invalid package name (path traversal detected)", ""

    if len(name) > MAX_PACKAGE_NAME_LENGTH:
        return (
            False,
            f"Package name too long: {len(name)} > {MAX_PACKAGE_NAME_LENGTH}",
            "",
        )

    normalized = normalize_npm_name(name)

    if not NPM_PACKAGE_PATTERN.match(name):
        return False, "Invalid npm package name format", normalized

    return True, None, normalized


def validate_version(version: Optional[str]) -> Tuple[bool, Optional[str], str]:
    """
    Validate a requested version, defaulting to "latest".

    Returns: (is_valid, error_message, normalized_version)
    """
    if version is None or (isinstance(version, str) and not version.strip()):
        return True, None, "latest"

    if not isinstance(version, str):
        return False, "Version must be a string", ""

    version = version.strip()
    if not VERSION_PATTERN.match(version):
        return False, f"Invalid version: {version}", ""

    return True, None, version
