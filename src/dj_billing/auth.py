"""
Actor context supplied by the external auth layer.

Every mutating operation receives an ``AuthContext`` explicitly; nothing
resolves a "current merchant" from ambient request state.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .exceptions import OwnershipError

ROLE_OWNER = "OWNER"
ROLE_STAFF = "STAFF"
ROLE_SUPER_ADMIN = "SUPER_ADMIN"
ROLE_SYSTEM = "SYSTEM"

ROLES = (ROLE_OWNER, ROLE_STAFF, ROLE_SUPER_ADMIN, ROLE_SYSTEM)


@dataclass(frozen=True)
class AuthContext:
    actor_id: int | None
    role: str
    owned_merchant_ids: frozenset = field(default_factory=frozenset)
    merchant_id: int | None = None

    def __post_init__(self):
        if self.role not in ROLES:
            raise OwnershipError(f"Unknown role: {self.role!r}")
        object.__setattr__(
            self, "owned_merchant_ids", frozenset(int(m) for m in self.owned_merchant_ids)
        )

    @classmethod
    def system(cls) -> AuthContext:
        """Actor used by the billing scheduler and automated debits."""
        return cls(actor_id=None, role=ROLE_SYSTEM)

    @property
    def is_super_admin(self) -> bool:
        return self.role in (ROLE_SUPER_ADMIN, ROLE_SYSTEM)

    def owns(self, merchant_id) -> bool:
        return self.role == ROLE_OWNER and int(merchant_id) in self.owned_merchant_ids


def require_owner(actor: AuthContext, *merchant_ids, allow_super_admin: bool = True) -> None:
    """Raise OwnershipError unless the actor owns every merchant listed."""
    if not isinstance(actor, AuthContext):
        raise OwnershipError("An AuthContext is required.")
    if allow_super_admin and actor.is_super_admin:
        return
    missing = [m for m in merchant_ids if not actor.owns(m)]
    if missing:
        raise OwnershipError(
            f"Actor {actor.actor_id} is not an owner of merchant(s) {missing}."
        )


def require_super_admin(actor: AuthContext) -> None:
    if not isinstance(actor, AuthContext) or not actor.is_super_admin:
        raise OwnershipError("This operation requires super-admin scope.")
