"""Model declaration and field role metadata."""

from .fields import (
    Role,
    array,
    attribute,
    collection_list,
    collection_map,
    collection_set,
    collection_sorted_set,
    identity,
    model,
    reference,
)
from .metadata import FieldRoleSet, FieldSpec, ModelMetadataProvider, get_id, is_new, metadata, roles_of

__all__ = [
    "Role",
    "array",
    "attribute",
    "collection_list",
    "collection_map",
    "collection_set",
    "collection_sorted_set",
    "identity",
    "model",
    "reference",
    "FieldRoleSet",
    "FieldSpec",
    "ModelMetadataProvider",
    "get_id",
    "is_new",
    "metadata",
    "roles_of",
]
