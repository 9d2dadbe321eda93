"""Entity codec: explicit mapping between entities and stored documents.

Documents of several kinds may share one collection, so decoding is a
tagged-variant decode: the ``document_type`` discriminator is read first and
resolved through a :class:`DocumentTypeRegistry` to the class that owns it.
Nothing is inferred from a document's shape.

Fields of derived types travel in the ``extensions`` bag, dumped in pydantic
JSON mode so the bag only holds JSON-compatible values. Top-level keys the
registered class does not define belong to other writers of the collection;
they stay at the top level and are written back unchanged.

Wire layout of a user::

    {"_id": "...", "document_type": "User", "user_name": "...", ...,
     "claims": [{"type": ..., "value": ..., "value_type": ..., "issuer": ...,
                 "original_issuer": ..., "properties": {...}}],
     "logins": [{"login_provider": ..., "provider_key": ..., "provider_display_name": ...}],
     "roles": [{"role_id": ..., "role_name": ..., "normalized_role_name": ...}],
     "tokens": [{"login_provider": ..., "name": ..., "value": ...}],
     "extensions": {...}, "_etag": "..."}
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from ninja_identity_store.exceptions import DocumentFormatError, ValidationFailureError
from ninja_identity_store.models import (
    USER_KIND,
    Claim,
    IdentityRole,
    IdentityUser,
    RoleMembership,
    UserLoginInfo,
    UserToken,
    _IdentityDocument,
)

logger = logging.getLogger(__name__)

ID_FIELD = "_id"
ETAG_FIELD = "_etag"
PARTITION_FIELD = "_pk"
DISCRIMINATOR_FIELD = "document_type"
EXTENSIONS_FIELD = "extensions"

_RESERVED_FIELDS = frozenset({ID_FIELD, ETAG_FIELD, PARTITION_FIELD, DISCRIMINATOR_FIELD, EXTENSIONS_FIELD})

_USER_SCALARS: tuple[str, ...] = (
    "user_name",
    "normalized_user_name",
    "email",
    "normalized_email",
    "email_confirmed",
    "password_hash",
    "security_stamp",
    "phone_number",
    "phone_number_confirmed",
    "two_factor_enabled",
    "lockout_enabled",
    "access_failed_count",
)
_USER_FIELDS = frozenset(_USER_SCALARS + ("lockout_end", "claims", "logins", "roles", "tokens"))
_ROLE_FIELDS = frozenset({"name", "normalized_name", "claims"})


class DocumentTypeRegistry:
    """Maps discriminator values to entity classes and logical kinds.

    The base ``User`` and ``Role`` discriminators are registered on
    construction. A derived class registered under its own discriminator is
    treated as "is-a" its base kind: kind queries match it and the stores
    accept it. A derived class that keeps the base discriminator value
    replaces the base class as the decoder for that value.
    """

    def __init__(self) -> None:
        self._types: dict[str, type[_IdentityDocument]] = {}
        self.register(IdentityUser)
        self.register(IdentityRole)

    def register(self, entity_type: type[_IdentityDocument]) -> None:
        """Register *entity_type* under its ``document_type`` discriminator."""
        if not isinstance(entity_type, type) or not issubclass(entity_type, (IdentityUser, IdentityRole)):
            raise TypeError(f"{entity_type!r} must subclass IdentityUser or IdentityRole")
        discriminator = entity_type.document_type
        if not discriminator:
            raise ValueError(f"{entity_type.__name__} must define a non-empty document_type")
        existing = self._types.get(discriminator)
        if existing is not None and existing.kind != entity_type.kind:
            raise ValueError(
                f"Discriminator '{discriminator}' is already registered for kind '{existing.kind}'"
            )
        unknown = [name for name in entity_type.extension_fields if name not in entity_type.model_fields]
        if unknown:
            raise ValueError(f"{entity_type.__name__}.extension_fields names undeclared fields: {unknown}")
        self._types[discriminator] = entity_type
        logger.debug("Registered document type '%s' -> %s", discriminator, entity_type.__name__)

    def resolve(self, discriminator: str) -> type[_IdentityDocument] | None:
        return self._types.get(discriminator)

    def is_kind(self, discriminator: str | None, kind: str) -> bool:
        entity_type = self._types.get(discriminator or "")
        return entity_type is not None and entity_type.kind == kind

    def discriminators_for(self, kind: str) -> tuple[str, ...]:
        """All discriminators that count as *kind*, base value first."""
        values = [d for d, t in self._types.items() if t.kind == kind]
        values.sort(key=lambda d: (d != kind, d))
        return tuple(values)

    def is_registered(self, entity_type: type[_IdentityDocument]) -> bool:
        return self._types.get(entity_type.document_type) is entity_type


# -- Nested record codecs ------------------------------------------------------


def encode_claim(claim: Claim) -> dict[str, Any]:
    return {
        "type": claim.type,
        "value": claim.value,
        "value_type": claim.value_type,
        "issuer": claim.issuer,
        "original_issuer": claim.original_issuer or claim.issuer,
        "properties": dict(claim.properties),
    }


def decode_claim(record: dict[str, Any]) -> Claim:
    issuer = record.get("issuer") or Claim.model_fields["issuer"].default
    kwargs: dict[str, Any] = {
        "type": record["type"],
        "value": record["value"],
        "issuer": issuer,
        "original_issuer": record.get("original_issuer") or issuer,
        "properties": dict(record.get("properties") or {}),
    }
    if record.get("value_type"):
        kwargs["value_type"] = record["value_type"]
    return Claim(**kwargs)


def encode_login(login: UserLoginInfo) -> dict[str, Any]:
    return {
        "login_provider": login.login_provider,
        "provider_key": login.provider_key,
        "provider_display_name": login.provider_display_name,
    }


def decode_login(record: dict[str, Any]) -> UserLoginInfo:
    return UserLoginInfo(
        login_provider=record["login_provider"],
        provider_key=record["provider_key"],
        provider_display_name=record.get("provider_display_name"),
    )


def encode_token(token: UserToken) -> dict[str, Any]:
    return {"login_provider": token.login_provider, "name": token.name, "value": token.value}


def decode_token(record: dict[str, Any]) -> UserToken:
    return UserToken(login_provider=record["login_provider"], name=record["name"], value=record.get("value"))


def encode_membership(membership: RoleMembership) -> dict[str, Any]:
    return {
        "role_id": membership.role_id,
        "role_name": membership.role_name,
        "normalized_role_name": membership.normalized_role_name,
    }


def decode_membership(record: dict[str, Any]) -> RoleMembership:
    return RoleMembership(
        role_id=record["role_id"],
        role_name=record.get("role_name"),
        normalized_role_name=record["normalized_role_name"],
    )


def encode_datetime(value: datetime | None) -> str | None:
    """Encode as ISO-8601; naive values are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def decode_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# -- Entity codec --------------------------------------------------------------


class EntityCodec:
    """Encodes and decodes users and roles against a :class:`DocumentTypeRegistry`."""

    def __init__(self, registry: DocumentTypeRegistry | None = None) -> None:
        self.registry = registry or DocumentTypeRegistry()

    def encode(self, entity: _IdentityDocument) -> dict[str, Any]:
        """Encode *entity* into a document body without its concurrency token.

        The discriminator the entity was stored with wins over its class
        attribute, so the stored value never changes after creation.
        """
        if entity.id is None:
            raise ValidationFailureError(
                entity_name=entity.kind, operation="encode", detail="Entity has no identifier."
            )
        discriminator = entity.stored_document_type or entity.document_type
        document: dict[str, Any] = {ID_FIELD: entity.id, DISCRIMINATOR_FIELD: discriminator}
        if isinstance(entity, IdentityUser):
            document.update(self._encode_user_fields(entity))
        elif isinstance(entity, IdentityRole):
            document.update(self._encode_role_fields(entity))
        else:
            raise ValidationFailureError(
                entity_name=type(entity).__name__,
                operation="encode",
                detail="Only IdentityUser and IdentityRole entities can be stored.",
            )
        bag = dict(entity.extensions)
        if entity.extension_fields:
            bag.update(entity.model_dump(mode="json", include=set(entity.extension_fields)))
        document[EXTENSIONS_FIELD] = bag
        for key, value in entity._foreign_fields.items():
            document.setdefault(key, value)
        return document

    def decode(self, document: dict[str, Any], kind: str) -> _IdentityDocument | None:
        """Decode *document* if its discriminator belongs to *kind*.

        Returns ``None`` for documents of another kind or with an unknown
        discriminator; they share the collection but are not ours to read.
        """
        discriminator = document.get(DISCRIMINATOR_FIELD)
        entity_type = self.registry.resolve(discriminator) if isinstance(discriminator, str) else None
        if entity_type is None or entity_type.kind != kind:
            logger.debug(
                "Skipping document %s with discriminator %r (expected kind %s)",
                document.get(ID_FIELD),
                discriminator,
                kind,
            )
            return None

        base_fields = _USER_FIELDS if kind == USER_KIND else _ROLE_FIELDS
        bag: dict[str, Any] = dict(document.get(EXTENSIONS_FIELD) or {})
        foreign = {
            key: value
            for key, value in document.items()
            if key not in _RESERVED_FIELDS and key not in base_fields
        }

        try:
            if kind == USER_KIND:
                kwargs = self._decode_user_fields(document)
            else:
                kwargs = self._decode_role_fields(document)
            for name in entity_type.extension_fields:
                if name in bag:
                    kwargs[name] = bag[name]
            entity = entity_type(
                id=str(document[ID_FIELD]),
                etag=document.get(ETAG_FIELD),
                extensions=bag,
                **kwargs,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise DocumentFormatError(
                entity_name=discriminator,
                operation="decode",
                detail=f"Document {document.get(ID_FIELD)!r} does not match its registered type.",
                cause=exc,
            ) from exc

        entity._stored_document_type = discriminator
        entity._foreign_fields = foreign
        entity._persisted_unique_key = entity.unique_key()
        return entity

    # -- per-kind fields -------------------------------------------------------

    @staticmethod
    def _encode_user_fields(user: IdentityUser) -> dict[str, Any]:
        fields: dict[str, Any] = {name: getattr(user, name) for name in _USER_SCALARS}
        fields["lockout_end"] = encode_datetime(user.lockout_end)
        fields["claims"] = [encode_claim(c) for c in user.claims]
        fields["logins"] = [encode_login(lg) for lg in user.logins]
        fields["roles"] = [encode_membership(m) for m in user.roles]
        fields["tokens"] = [encode_token(t) for t in user.tokens]
        return fields

    @staticmethod
    def _decode_user_fields(document: dict[str, Any]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {name: document[name] for name in _USER_SCALARS if document.get(name) is not None}
        kwargs["lockout_end"] = decode_datetime(document.get("lockout_end"))
        kwargs["claims"] = [decode_claim(r) for r in document.get("claims") or []]
        kwargs["logins"] = [decode_login(r) for r in document.get("logins") or []]
        kwargs["roles"] = [decode_membership(r) for r in document.get("roles") or []]
        kwargs["tokens"] = [decode_token(r) for r in document.get("tokens") or []]
        return kwargs

    @staticmethod
    def _encode_role_fields(role: IdentityRole) -> dict[str, Any]:
        return {
            "name": role.name,
            "normalized_name": role.normalized_name,
            "claims": [encode_claim(c) for c in role.claims],
        }

    @staticmethod
    def _decode_role_fields(document: dict[str, Any]) -> dict[str, Any]:
        return {
            "name": document.get("name"),
            "normalized_name": document.get("normalized_name"),
            "claims": [decode_claim(r) for r in document.get("claims") or []],
        }

