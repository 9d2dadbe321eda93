"""Query builder translating identity lookups into document predicates.

Predicates use the MongoDB filter dialect restricted to equality, ``$in``,
``$elemMatch`` and ``$and``. Every query filters on the discriminator first
so that documents of other kinds sharing the collection never match.
"""

from __future__ import annotations

import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator

from ninja_identity_store.codec import DISCRIMINATOR_FIELD, DocumentTypeRegistry
from ninja_identity_store.exceptions import MultipleMatchError, ValidationFailureError
from ninja_identity_store.models import ROLE_KIND, USER_KIND

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentQuery:
    """A discriminator-qualified predicate over one entity kind."""

    kind: str
    operation: str
    discriminators: tuple[str, ...]
    predicate: dict[str, Any] = field(default_factory=dict)

    @property
    def filter(self) -> dict[str, Any]:
        """The filter document, discriminator clause first."""
        query: dict[str, Any] = {DISCRIMINATOR_FIELD: {"$in": list(self.discriminators)}}
        query.update(self.predicate)
        return query


def _require_text(value: Any, name: str, kind: str, operation: str) -> str:
    # Values reach the predicate verbatim and must be plain strings.
    if not isinstance(value, str) or not value:
        raise ValidationFailureError(
            entity_name=kind,
            operation=operation,
            detail=f"'{name}' must be a non-empty string.",
        )
    return value


class QueryBuilder:
    """Builds :class:`DocumentQuery` objects for users and roles."""

    def __init__(self, registry: DocumentTypeRegistry) -> None:
        self._registry = registry

    def _query(self, kind: str, operation: str, predicate: dict[str, Any] | None = None) -> DocumentQuery:
        return DocumentQuery(
            kind=kind,
            operation=operation,
            discriminators=self._registry.discriminators_for(kind),
            predicate=predicate or {},
        )

    # -- users -----------------------------------------------------------------

    def all_users(self) -> DocumentQuery:
        return self._query(USER_KIND, "iter_users")

    def user_by_normalized_name(self, normalized_user_name: str) -> DocumentQuery:
        name = _require_text(normalized_user_name, "normalized_user_name", USER_KIND, "find_by_name")
        return self._query(USER_KIND, "find_by_name", {"normalized_user_name": name})

    def user_by_normalized_email(self, normalized_email: str) -> DocumentQuery:
        email = _require_text(normalized_email, "normalized_email", USER_KIND, "find_by_email")
        return self._query(USER_KIND, "find_by_email", {"normalized_email": email})

    def user_by_login(self, login_provider: str, provider_key: str) -> DocumentQuery:
        provider = _require_text(login_provider, "login_provider", USER_KIND, "find_by_login")
        key = _require_text(provider_key, "provider_key", USER_KIND, "find_by_login")
        return self._query(
            USER_KIND,
            "find_by_login",
            {"logins": {"$elemMatch": {"login_provider": provider, "provider_key": key}}},
        )

    def users_in_role(self, normalized_role_name: str) -> DocumentQuery:
        name = _require_text(normalized_role_name, "normalized_role_name", USER_KIND, "get_users_in_role")
        return self._query(
            USER_KIND,
            "get_users_in_role",
            {"roles": {"$elemMatch": {"normalized_role_name": name}}},
        )

    def users_for_claim(self, claim_type: str, claim_value: str) -> DocumentQuery:
        ctype = _require_text(claim_type, "claim.type", USER_KIND, "get_users_for_claim")
        if not isinstance(claim_value, str):
            raise ValidationFailureError(
                entity_name=USER_KIND, operation="get_users_for_claim", detail="'claim.value' must be a string."
            )
        return self._query(
            USER_KIND,
            "get_users_for_claim",
            {"claims": {"$elemMatch": {"type": ctype, "value": claim_value}}},
        )

    # -- roles -----------------------------------------------------------------

    def all_roles(self) -> DocumentQuery:
        return self._query(ROLE_KIND, "iter_roles")

    def role_by_normalized_name(self, normalized_name: str) -> DocumentQuery:
        name = _require_text(normalized_name, "normalized_name", ROLE_KIND, "find_by_name")
        return self._query(ROLE_KIND, "find_by_name", {"normalized_name": name})


async def single_or_none(
    documents: AsyncGenerator[dict[str, Any], None], query: DocumentQuery
) -> dict[str, Any] | None:
    """Return the only document of *documents*, or ``None`` when empty.

    Raises:
        MultipleMatchError: More than one document matched. The result is
            never narrowed silently to the first match.
    """
    found: dict[str, Any] | None = None
    async with aclosing(documents):
        async for document in documents:
            if found is not None:
                logger.warning(
                    "%s lookup %s matched several documents: %s and %s",
                    query.kind,
                    query.operation,
                    found.get("_id"),
                    document.get("_id"),
                )
                raise MultipleMatchError(
                    entity_name=query.kind,
                    operation=query.operation,
                    detail="More than one document matched a lookup that expects at most one.",
                )
            found = document
    return found
