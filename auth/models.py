"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in vplan/models.py -- dataclasses own domain shape; stores, providers and
routes do the work.

Layer rule: no imports from api/, web/ or vplan/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class AuthResponse:
    """Result of a successful Authenticate call.

    ident is opaque to everyone except the provider that produced it: the
    debug provider hashes username+password, the database provider hashes the
    username, the OIDC provider uses the identity provider's subject id.

    ctx is provider-specific and schema-less. Routes pass it through to the
    client untouched; nothing server-side may rely on its keys.
    """

    ident: str
    ctx: dict[str, Any] = field(default_factory=dict)


@dataclass
class Credential:
    """A row of the local credential store used by DatabaseAuthProvider.

    group is an optional scoping label (e.g. "teachers", "10a"). An empty
    group on the login request matches any stored group.
    """

    username: str
    hashed_password: str
    group: str = ""
    id: int | None = None
    created_at: datetime | None = None
    is_active: bool = True


@dataclass
class TokenRecord:
    """The single API token owned by an identity.

    One record per ident -- renewal overwrites token and expire in place.
    """

    ident: str
    token: str
    expire: datetime
