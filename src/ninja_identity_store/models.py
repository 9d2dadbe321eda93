"""Identity entities persisted by the document stores.

Entities are plain pydantic models. The wire format is produced by
:mod:`ninja_identity_store.codec`; ``model_dump`` is used only for the
fields a derived type lists in ``extension_fields``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, ClassVar

from pydantic import BaseModel, Field, PrivateAttr, field_validator, model_validator

USER_KIND = "User"
ROLE_KIND = "Role"

CLAIM_VALUE_TYPE_STRING = "http://www.w3.org/2001/XMLSchema#string"
DEFAULT_CLAIM_ISSUER = "LOCAL AUTHORITY"


class Claim(BaseModel):
    """A (type, value) statement about a user or role.

    ``value_type``, ``issuer``, ``original_issuer`` and ``properties`` mirror
    the framework-native claim object so that it round-trips without loss.
    """

    model_config = {"frozen": True}

    type: str
    value: str
    value_type: str = CLAIM_VALUE_TYPE_STRING
    issuer: str = DEFAULT_CLAIM_ISSUER
    original_issuer: str | None = None
    properties: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _default_original_issuer(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("original_issuer"):
            data = {**data, "original_issuer": data.get("issuer") or DEFAULT_CLAIM_ISSUER}
        return data

    def matches(self, other: Claim) -> bool:
        """True when *other* has the same type and value."""
        return self.type == other.type and self.value == other.value


class UserLoginInfo(BaseModel):
    """An external login; identity is the (provider, key) pair."""

    model_config = {"frozen": True}

    login_provider: str
    provider_key: str
    provider_display_name: str | None = None

    def matches(self, login_provider: str, provider_key: str) -> bool:
        return self.login_provider == login_provider and self.provider_key == provider_key


class UserToken(BaseModel):
    """An authentication token stored on the user under (provider, name)."""

    login_provider: str
    name: str
    value: str | None = None


class RoleMembership(BaseModel):
    """Denormalised copy of a role taken when the user was added to it."""

    model_config = {"frozen": True}

    role_id: str
    role_name: str | None = None
    normalized_role_name: str


class _IdentityDocument(BaseModel):
    """Fields shared by every stored entity."""

    # Discriminator written for instances of this class.
    document_type: ClassVar[str] = ""
    # Logical kind this class belongs to ("User" or "Role").
    kind: ClassVar[str] = ""
    # Extra fields of derived classes, round-tripped through the extension bag.
    extension_fields: ClassVar[tuple[str, ...]] = ()
    # Field holding the cooperative unique key of the kind.
    unique_key_field: ClassVar[str] = ""

    id: str | None = None
    etag: str | None = None
    extensions: dict[str, Any] = Field(default_factory=dict)

    _stored_document_type: str | None = PrivateAttr(default=None)
    _persisted_unique_key: str | None = PrivateAttr(default=None)
    # Top-level keys of the stored document this class does not define.
    _foreign_fields: dict[str, Any] = PrivateAttr(default_factory=dict)

    @property
    def stored_document_type(self) -> str | None:
        """Discriminator this entity was read or created with, if persisted."""
        return self._stored_document_type

    @property
    def is_persisted(self) -> bool:
        return self.etag is not None

    def unique_key(self) -> str | None:
        return getattr(self, self.unique_key_field)


class IdentityUser(_IdentityDocument):
    """A user account.

    Subclass to add deployment-specific fields: set ``document_type`` to a
    new discriminator, list the extra fields in ``extension_fields`` and
    register the class with the store's :class:`~ninja_identity_store.codec.DocumentTypeRegistry`.
    """

    model_config = {"validate_assignment": True}

    document_type: ClassVar[str] = USER_KIND
    kind: ClassVar[str] = USER_KIND
    unique_key_field: ClassVar[str] = "normalized_user_name"

    user_name: str | None = None
    normalized_user_name: str | None = None
    email: str | None = None
    normalized_email: str | None = None
    email_confirmed: bool = False
    password_hash: str | None = None
    security_stamp: str | None = None
    phone_number: str | None = None
    phone_number_confirmed: bool = False
    two_factor_enabled: bool = False
    lockout_end: datetime | None = None
    lockout_enabled: bool = False
    access_failed_count: int = 0
    claims: list[Claim] = Field(default_factory=list)
    logins: list[UserLoginInfo] = Field(default_factory=list)
    roles: list[RoleMembership] = Field(default_factory=list)
    tokens: list[UserToken] = Field(default_factory=list)

    @field_validator("lockout_end")
    @classmethod
    def _lockout_end_as_utc(cls, v: datetime | None) -> datetime | None:
        # Naive values are UTC, matching what the codec stores.
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, user_name={self.user_name!r})"


class IdentityRole(_IdentityDocument):
    """A named role with its own claims."""

    document_type: ClassVar[str] = ROLE_KIND
    kind: ClassVar[str] = ROLE_KIND
    unique_key_field: ClassVar[str] = "normalized_name"

    name: str | None = None
    normalized_name: str | None = None
    claims: list[Claim] = Field(default_factory=list)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, name={self.name!r})"
