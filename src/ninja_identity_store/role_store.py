"""Document-backed role store.

Roles share the user store's rules: generated identifiers, cooperative name
uniqueness and token-guarded replace/delete. Users hold denormalised copies of
their roles, and nothing here writes to user documents: after a role is
renamed or deleted, users keep their stale membership entries until the
caller updates each affected user.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

from ninja_identity_store.base import DocumentStore
from ninja_identity_store.exceptions import DuplicateRoleNameError, ValidationFailureError
from ninja_identity_store.models import ROLE_KIND, Claim, IdentityRole
from ninja_identity_store.queries import DocumentQuery

logger = logging.getLogger(__name__)


class DocumentRoleStore(DocumentStore[IdentityRole]):
    """Role store over a :class:`~ninja_identity_store.protocols.DocumentClient`."""

    kind = ROLE_KIND
    base_type = IdentityRole
    duplicate_error = DuplicateRoleNameError

    def _normalize(self, role: IdentityRole) -> None:
        if role.normalized_name is None and role.name is not None:
            role.normalized_name = self._normalizer.normalize_name(role.name)

    def _unique_query(self, key: str) -> DocumentQuery:
        return self._queries.role_by_normalized_name(key)

    async def find_by_name(self, normalized_role_name: str) -> IdentityRole | None:
        return await self._find_one(self._queries.role_by_normalized_name(normalized_role_name))

    async def iter_roles(self) -> AsyncIterator[IdentityRole]:
        async for role in self._iter(self._queries.all_roles()):
            yield role

    async def set_role_name(self, role: IdentityRole, name: str | None) -> None:
        """Rename the role. Existing user memberships keep the old name."""
        role = self._validate(role, "set_role_name")
        role.name = name
        role.normalized_name = self._normalizer.normalize_name(name)
        await self._save(role)

    async def set_normalized_role_name(self, role: IdentityRole, normalized_name: str | None) -> None:
        role = self._validate(role, "set_normalized_role_name")
        role.normalized_name = normalized_name
        await self._save(role)

    async def get_claims(self, role: IdentityRole) -> list[Claim]:
        role = self._validate(role, "get_claims")
        return list(role.claims)

    async def add_claim(self, role: IdentityRole, claim: Claim) -> None:
        """Add *claim* unless the role already has its (type, value) pair."""
        role = self._validate(role, "add_claim")
        self._require_claim(claim, "add_claim")
        if any(c.matches(claim) for c in role.claims):
            return
        role.claims = [*role.claims, claim]
        await self._save(role)

    async def remove_claim(self, role: IdentityRole, claim: Claim) -> None:
        role = self._validate(role, "remove_claim")
        self._require_claim(claim, "remove_claim")
        kept = [c for c in role.claims if not c.matches(claim)]
        if len(kept) == len(role.claims):
            return
        role.claims = kept
        await self._save(role)

    @staticmethod
    def _require_claim(claim: Claim | None, operation: str) -> None:
        if not isinstance(claim, Claim):
            raise ValidationFailureError(entity_name=ROLE_KIND, operation=operation, detail="claim must be a Claim.")
