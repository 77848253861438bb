"""
Unit tests for AuthContext and the ownership checks.
"""

import pytest

from dj_billing.auth import (
    ROLE_OWNER,
    ROLE_STAFF,
    ROLE_SUPER_ADMIN,
    AuthContext,
    require_owner,
    require_super_admin,
)
from dj_billing.exceptions import OwnershipError


class TestAuthContext:
    def test_unknown_role_rejected(self):
        with pytest.raises(OwnershipError):
            AuthContext(actor_id=1, role="ROOT")

    def test_owned_ids_coerced_to_ints(self):
        actor = AuthContext(actor_id=1, role=ROLE_OWNER, owned_merchant_ids=["3", 4])
        assert actor.owned_merchant_ids == frozenset({3, 4})
        assert actor.owns("3")

    def test_system_actor_is_super_admin(self):
        actor = AuthContext.system()
        assert actor.actor_id is None
        assert actor.is_super_admin

    def test_staff_owns_nothing(self):
        actor = AuthContext(actor_id=1, role=ROLE_STAFF, owned_merchant_ids=[3])
        assert not actor.owns(3)


class TestRequireOwner:
    def test_owner_of_all_passes(self):
        actor = AuthContext(actor_id=1, role=ROLE_OWNER, owned_merchant_ids=[1, 2])
        require_owner(actor, 1, 2)

    def test_owner_of_one_fails(self):
        actor = AuthContext(actor_id=1, role=ROLE_OWNER, owned_merchant_ids=[1])
        with pytest.raises(OwnershipError):
            require_owner(actor, 1, 2)

    def test_super_admin_allowed_by_default(self):
        require_owner(AuthContext(actor_id=1, role=ROLE_SUPER_ADMIN), 9)

    def test_super_admin_refused_when_strict(self):
        with pytest.raises(OwnershipError):
            require_owner(
                AuthContext(actor_id=1, role=ROLE_SUPER_ADMIN), 9, allow_super_admin=False
            )

    def test_missing_context_rejected(self):
        with pytest.raises(OwnershipError):
            require_owner(None, 1)

    def test_require_super_admin(self):
        require_super_admin(AuthContext(actor_id=1, role=ROLE_SUPER_ADMIN))
        with pytest.raises(OwnershipError):
            require_super_admin(AuthContext(actor_id=1, role=ROLE_OWNER, owned_merchant_ids=[1]))
