"""Document-backed user store.

Users are stored one document per user with claims, logins, tokens and role
memberships nested inside. Every mutator below is a read-modify-write of that
document: it changes the in-memory entity (which carries the concurrency
token of its last read) and, when ``auto_save_changes`` is on and the user
has been created, replaces the stored document under that token. A
concurrent writer therefore surfaces as
:class:`~ninja_identity_store.exceptions.ConcurrencyFailureError`, never as
a silent overwrite. Changes to a user not yet created are written by
``create``.

Uniqueness of user names and of (provider, key) logins is cooperative: the
store queries before it writes. Two concurrent writers can both pass the
check; lookups then raise
:class:`~ninja_identity_store.exceptions.MultipleMatchError` instead of
guessing. Callers that need strict uniqueness must add a unique index on the
collection or a compensating retry-on-conflict loop.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any, AsyncIterator

from ninja_identity_store.base import DocumentStore
from ninja_identity_store.exceptions import DuplicateLoginError, DuplicateUserNameError, ValidationFailureError
from ninja_identity_store.models import (
    USER_KIND,
    Claim,
    IdentityRole,
    IdentityUser,
    RoleMembership,
    UserLoginInfo,
    UserToken,
)
from ninja_identity_store.protocols import DocumentClient
from ninja_identity_store.queries import DocumentQuery, single_or_none

logger = logging.getLogger(__name__)

INTERNAL_LOGIN_PROVIDER = "[IdentityUserStore]"
AUTHENTICATOR_KEY_TOKEN = "AuthenticatorKey"
RECOVERY_CODES_TOKEN = "RecoveryCodes"


def _dedupe_claims(claims: Iterable[Claim]) -> list[Claim]:
    """Keep the first occurrence of each (type, value) pair, in order."""
    result: list[Claim] = []
    for claim in claims:
        if not any(kept.matches(claim) for kept in result):
            result.append(claim)
    return result


class DocumentUserStore(DocumentStore[IdentityUser]):
    """User store over a :class:`~ninja_identity_store.protocols.DocumentClient`.

    Args:
        client: Client for the user collection.
        role_client: Client for the role collection, used to resolve roles in
            :meth:`add_to_role`. Defaults to *client* (shared collection).
        role_partition_key: Partition value of role documents. Defaults to
            *partition_key*.

    Remaining keyword arguments are those of :class:`~ninja_identity_store.base.DocumentStore`.
    """

    kind = USER_KIND
    base_type = IdentityUser
    duplicate_error = DuplicateUserNameError

    def __init__(
        self,
        client: DocumentClient,
        *,
        role_client: DocumentClient | None = None,
        role_partition_key: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(client, **kwargs)
        self._role_client = role_client if role_client is not None else client
        self._role_partition_key = role_partition_key if role_partition_key is not None else self._partition_key

    def _normalize(self, user: IdentityUser) -> None:
        if user.normalized_user_name is None and user.user_name is not None:
            user.normalized_user_name = self._normalizer.normalize_name(user.user_name)
        if user.normalized_email is None and user.email is not None:
            user.normalized_email = self._normalizer.normalize_email(user.email)

    def _unique_query(self, key: str) -> DocumentQuery:
        return self._queries.user_by_normalized_name(key)

    # -- lookups ---------------------------------------------------------------

    async def find_by_name(self, normalized_user_name: str) -> IdentityUser | None:
        return await self._find_one(self._queries.user_by_normalized_name(normalized_user_name))

    async def find_by_email(self, normalized_email: str) -> IdentityUser | None:
        return await self._find_one(self._queries.user_by_normalized_email(normalized_email))

    async def iter_users(self) -> AsyncIterator[IdentityUser]:
        """Lazily iterate over every user, including derived user types."""
        async for user in self._iter(self._queries.all_users()):
            yield user

    # -- claims ----------------------------------------------------------------

    async def get_claims(self, user: IdentityUser) -> list[Claim]:
        user = self._validate(user, "get_claims")
        return list(user.claims)

    async def add_claims(self, user: IdentityUser, claims: Iterable[Claim]) -> None:
        """Append *claims*, skipping any (type, value) pair the user already has."""
        user = self._validate(user, "add_claims")
        new_claims = self._require_claims(claims, "add_claims")
        additions = [c for c in _dedupe_claims(new_claims) if not any(c.matches(kept) for kept in user.claims)]
        if not additions:
            return
        user.claims = [*user.claims, *additions]
        await self._save(user)

    async def remove_claims(self, user: IdentityUser, claims: Iterable[Claim]) -> None:
        """Remove every claim matching one of *claims* by type and value."""
        user = self._validate(user, "remove_claims")
        targets = self._require_claims(claims, "remove_claims")
        kept = [c for c in user.claims if not any(c.matches(t) for t in targets)]
        if len(kept) == len(user.claims):
            return
        user.claims = kept
        await self._save(user)

    async def replace_claim(self, user: IdentityUser, claim: Claim, new_claim: Claim) -> None:
        """Replace each claim matching *claim* with *new_claim*."""
        user = self._validate(user, "replace_claim")
        self._require_claims([claim, new_claim], "replace_claim")
        if not any(c.matches(claim) for c in user.claims):
            return
        user.claims = _dedupe_claims(new_claim if c.matches(claim) else c for c in user.claims)
        await self._save(user)

    async def get_users_for_claim(self, claim: Claim) -> list[IdentityUser]:
        self._require_claims([claim], "get_users_for_claim")
        return await self._collect(self._queries.users_for_claim(claim.type, claim.value))

    @staticmethod
    def _require_claims(claims: Iterable[Claim] | None, operation: str) -> list[Claim]:
        if claims is None:
            raise ValidationFailureError(entity_name=USER_KIND, operation=operation, detail="claims must not be None.")
        result = list(claims)
        if not all(isinstance(c, Claim) for c in result):
            raise ValidationFailureError(
                entity_name=USER_KIND, operation=operation, detail="claims must be Claim instances."
            )
        return result

    # -- logins ----------------------------------------------------------------

    async def add_login(self, user: IdentityUser, login: UserLoginInfo) -> None:
        """Attach an external login.

        Raises:
            DuplicateLoginError: The (provider, key) pair belongs to another user.
        """
        user = self._validate(user, "add_login")
        if not isinstance(login, UserLoginInfo):
            raise ValidationFailureError(
                entity_name=USER_KIND, operation="add_login", detail="login must be a UserLoginInfo."
            )
        if any(lg.matches(login.login_provider, login.provider_key) for lg in user.logins):
            return
        owner = await self.find_by_login(login.login_provider, login.provider_key)
        if owner is not None and owner.id != user.id:
            logger.info("Login %s/%s already belongs to user %s", login.login_provider, login.provider_key, owner.id)
            raise DuplicateLoginError(
                entity_name=USER_KIND,
                operation="add_login",
                detail=f"Login '{login.login_provider}' is already associated with another user.",
            )
        user.logins = [*user.logins, login]
        await self._save(user)

    async def remove_login(self, user: IdentityUser, login_provider: str, provider_key: str) -> None:
        user = self._validate(user, "remove_login")
        kept = [lg for lg in user.logins if not lg.matches(login_provider, provider_key)]
        if len(kept) == len(user.logins):
            return
        user.logins = kept
        await self._save(user)

    async def get_logins(self, user: IdentityUser) -> list[UserLoginInfo]:
        user = self._validate(user, "get_logins")
        return list(user.logins)

    async def find_by_login(self, login_provider: str, provider_key: str) -> IdentityUser | None:
        """Return the one user holding the login pair, or ``None``.

        Raises:
            MultipleMatchError: Several users hold the pair.
        """
        return await self._find_one(self._queries.user_by_login(login_provider, provider_key))

    # -- roles -----------------------------------------------------------------

    async def add_to_role(self, user: IdentityUser, normalized_role_name: str) -> None:
        """Record a denormalised membership of the role named *normalized_role_name*.

        Raises:
            ValidationFailureError: No such role exists.
        """
        user = self._validate(user, "add_to_role")
        query = self._queries.role_by_normalized_name(normalized_role_name)
        if any(m.normalized_role_name == normalized_role_name for m in user.roles):
            return
        role = await self._find_role(query)
        if role is None:
            raise ValidationFailureError(
                entity_name=USER_KIND,
                operation="add_to_role",
                detail=f"Role '{normalized_role_name}' does not exist.",
            )
        membership = RoleMembership(
            role_id=role.id,
            role_name=role.name,
            normalized_role_name=role.normalized_name or normalized_role_name,
        )
        user.roles = [*user.roles, membership]
        await self._save(user)

    async def _find_role(self, query: DocumentQuery) -> IdentityRole | None:
        documents = self._role_client.query(query.filter, self._role_partition_key)
        document = await single_or_none(documents, query)
        if document is None:
            return None
        return self._codec.decode(document, query.kind)  # type: ignore[return-value]

    async def remove_from_role(self, user: IdentityUser, normalized_role_name: str) -> None:
        user = self._validate(user, "remove_from_role")
        kept = [m for m in user.roles if m.normalized_role_name != normalized_role_name]
        if len(kept) == len(user.roles):
            return
        user.roles = kept
        await self._save(user)

    async def get_roles(self, user: IdentityUser) -> list[str]:
        """Role names as recorded when each membership was added.

        Memberships are copies: renaming or deleting a role does not change them.
        """
        user = self._validate(user, "get_roles")
        return [m.role_name or m.normalized_role_name for m in user.roles]

    async def is_in_role(self, user: IdentityUser, normalized_role_name: str) -> bool:
        user = self._validate(user, "is_in_role")
        return any(m.normalized_role_name == normalized_role_name for m in user.roles)

    async def get_users_in_role(self, normalized_role_name: str) -> list[IdentityUser]:
        return await self._collect(self._queries.users_in_role(normalized_role_name))

    # -- scalar fields ---------------------------------------------------------

    async def set_user_name(self, user: IdentityUser, user_name: str | None) -> None:
        """Set the user name and recompute its normalized form."""
        user = self._validate(user, "set_user_name")
        user.user_name = user_name
        user.normalized_user_name = self._normalizer.normalize_name(user_name)
        await self._save(user)

    async def set_normalized_user_name(self, user: IdentityUser, normalized_user_name: str | None) -> None:
        user = self._validate(user, "set_normalized_user_name")
        user.normalized_user_name = normalized_user_name
        await self._save(user)

    async def set_password_hash(self, user: IdentityUser, password_hash: str | None) -> None:
        user = self._validate(user, "set_password_hash")
        user.password_hash = password_hash
        await self._save(user)

    async def has_password(self, user: IdentityUser) -> bool:
        user = self._validate(user, "has_password")
        return user.password_hash is not None

    async def set_security_stamp(self, user: IdentityUser, stamp: str) -> None:
        user = self._validate(user, "set_security_stamp")
        if stamp is None:
            raise ValidationFailureError(
                entity_name=USER_KIND, operation="set_security_stamp", detail="stamp must not be None."
            )
        user.security_stamp = stamp
        await self._save(user)

    async def set_email(self, user: IdentityUser, email: str | None) -> None:
        """Set the email and recompute its normalized form."""
        user = self._validate(user, "set_email")
        user.email = email
        user.normalized_email = self._normalizer.normalize_email(email)
        await self._save(user)

    async def set_normalized_email(self, user: IdentityUser, normalized_email: str | None) -> None:
        user = self._validate(user, "set_normalized_email")
        user.normalized_email = normalized_email
        await self._save(user)

    async def set_email_confirmed(self, user: IdentityUser, confirmed: bool) -> None:
        user = self._validate(user, "set_email_confirmed")
        user.email_confirmed = confirmed
        await self._save(user)

    async def set_phone_number(self, user: IdentityUser, phone_number: str | None) -> None:
        user = self._validate(user, "set_phone_number")
        user.phone_number = phone_number
        await self._save(user)

    async def set_phone_number_confirmed(self, user: IdentityUser, confirmed: bool) -> None:
        user = self._validate(user, "set_phone_number_confirmed")
        user.phone_number_confirmed = confirmed
        await self._save(user)

    async def set_two_factor_enabled(self, user: IdentityUser, enabled: bool) -> None:
        user = self._validate(user, "set_two_factor_enabled")
        user.two_factor_enabled = enabled
        await self._save(user)

    async def set_lockout_end_date(self, user: IdentityUser, lockout_end: datetime | None) -> None:
        user = self._validate(user, "set_lockout_end_date")
        user.lockout_end = lockout_end
        await self._save(user)

    async def set_lockout_enabled(self, user: IdentityUser, enabled: bool) -> None:
        user = self._validate(user, "set_lockout_enabled")
        user.lockout_enabled = enabled
        await self._save(user)

    async def increment_access_failed_count(self, user: IdentityUser) -> int:
        """Increment the failed-access counter and return the new value."""
        user = self._validate(user, "increment_access_failed_count")
        user.access_failed_count += 1
        await self._save(user)
        return user.access_failed_count

    async def reset_access_failed_count(self, user: IdentityUser) -> None:
        user = self._validate(user, "reset_access_failed_count")
        if user.access_failed_count == 0:
            return
        user.access_failed_count = 0
        await self._save(user)

    # -- tokens ----------------------------------------------------------------

    async def set_token(self, user: IdentityUser, login_provider: str, name: str, value: str | None) -> None:
        """Set the token stored under (provider, name), replacing any previous value."""
        user = self._validate(user, "set_token")
        token = UserToken(login_provider=login_provider, name=name, value=value)
        tokens = [t for t in user.tokens if not (t.login_provider == login_provider and t.name == name)]
        user.tokens = [*tokens, token]
        await self._save(user)

    async def get_token(self, user: IdentityUser, login_provider: str, name: str) -> str | None:
        user = self._validate(user, "get_token")
        for token in user.tokens:
            if token.login_provider == login_provider and token.name == name:
                return token.value
        return None

    async def remove_token(self, user: IdentityUser, login_provider: str, name: str) -> None:
        user = self._validate(user, "remove_token")
        kept = [t for t in user.tokens if not (t.login_provider == login_provider and t.name == name)]
        if len(kept) == len(user.tokens):
            return
        user.tokens = kept
        await self._save(user)

    async def set_authenticator_key(self, user: IdentityUser, key: str) -> None:
        await self.set_token(user, INTERNAL_LOGIN_PROVIDER, AUTHENTICATOR_KEY_TOKEN, key)

    async def get_authenticator_key(self, user: IdentityUser) -> str | None:
        return await self.get_token(user, INTERNAL_LOGIN_PROVIDER, AUTHENTICATOR_KEY_TOKEN)

    async def replace_recovery_codes(self, user: IdentityUser, codes: Iterable[str]) -> None:
        """Store a fresh set of two-factor recovery codes."""
        await self.set_token(user, INTERNAL_LOGIN_PROVIDER, RECOVERY_CODES_TOKEN, ";".join(codes))

    async def redeem_recovery_code(self, user: IdentityUser, code: str) -> bool:
        """Consume *code* if it is one of the user's recovery codes."""
        codes = await self._recovery_codes(user)
        if code not in codes:
            return False
        codes.remove(code)
        await self.replace_recovery_codes(user, codes)
        return True

    async def count_recovery_codes(self, user: IdentityUser) -> int:
        return len(await self._recovery_codes(user))

    async def _recovery_codes(self, user: IdentityUser) -> list[str]:
        merged = await self.get_token(user, INTERNAL_LOGIN_PROVIDER, RECOVERY_CODES_TOKEN)
        if not merged:
            return []
        return merged.split(";")
