from __future__ import annotations

import re

from .errors import InvalidTenantId


PUBLIC_TENANT = "public"
DEFAULT_MAX_LENGTH = 63  # PostgreSQL truncates identifiers past NAMEDATALEN - 1

TENANT_ID_PATTERN = re.compile(r"[a-z0-9_-]+")


def validate_tenant_id(candidate: str, *, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Return ``candidate`` unchanged if it is a safe tenant id.

    Tenant ids double as schema names, so this check is the only thing
    standing between request input and a quoted identifier in DDL.
    """
    if not isinstance(candidate, str) or not candidate:
        raise InvalidTenantId("Invalid tenant ID: must not be empty")
    if len(candidate) > max_length:
        raise InvalidTenantId(
            f"Invalid tenant ID: must be at most {max_length} characters"
        )
    if TENANT_ID_PATTERN.fullmatch(candidate) is None:
        raise InvalidTenantId(
            "Invalid tenant ID: must contain only lowercase letters, numbers, underscores, and hyphens"
        )
    return candidate


def normalize_tenant_id(raw: str, *, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    return validate_tenant_id(raw.strip().lower(), max_length=max_length)
