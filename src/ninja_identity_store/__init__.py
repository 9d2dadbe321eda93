"""Ninja Identity Store — document-database user and role stores for identity frameworks."""

from ninja_identity_store.adapters.memory import InMemoryDocumentClient
from ninja_identity_store.adapters.mongo import MongoDocumentClient
from ninja_identity_store.codec import DocumentTypeRegistry, EntityCodec
from ninja_identity_store.concurrency import ConcurrencyTracker, IdentityAssigner
from ninja_identity_store.config import IdentityStoreConfig
from ninja_identity_store.exceptions import (
    ConcurrencyFailureError,
    DocumentFormatError,
    DuplicateDocumentError,
    DuplicateLoginError,
    DuplicateRoleNameError,
    DuplicateUserNameError,
    IdentityStoreError,
    MultipleMatchError,
    QueryError,
    ValidationFailureError,
)
from ninja_identity_store.factory import IdentityStores, build_identity_stores, connect_mongo, get_database
from ninja_identity_store.models import (
    Claim,
    IdentityRole,
    IdentityUser,
    RoleMembership,
    UserLoginInfo,
    UserToken,
)
from ninja_identity_store.normalizers import LookupNormalizer, UpperInvariantLookupNormalizer
from ninja_identity_store.protocols import DocumentClient
from ninja_identity_store.queries import DocumentQuery, QueryBuilder
from ninja_identity_store.role_store import DocumentRoleStore
from ninja_identity_store.user_store import DocumentUserStore

__all__ = [
    "Claim",
    "ConcurrencyFailureError",
    "ConcurrencyTracker",
    "DocumentClient",
    "DocumentFormatError",
    "DocumentQuery",
    "DocumentRoleStore",
    "DocumentTypeRegistry",
    "DocumentUserStore",
    "DuplicateDocumentError",
    "DuplicateLoginError",
    "DuplicateRoleNameError",
    "DuplicateUserNameError",
    "EntityCodec",
    "IdentityAssigner",
    "IdentityRole",
    "IdentityStoreConfig",
    "IdentityStoreError",
    "IdentityStores",
    "IdentityUser",
    "InMemoryDocumentClient",
    "LookupNormalizer",
    "MongoDocumentClient",
    "MultipleMatchError",
    "QueryBuilder",
    "QueryError",
    "RoleMembership",
    "UpperInvariantLookupNormalizer",
    "UserLoginInfo",
    "UserToken",
    "ValidationFailureError",
    "build_identity_stores",
    "connect_mongo",
    "get_database",
]
