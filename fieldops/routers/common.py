"""Helpers shared by the API routers."""
from __future__ import annotations

from typing import Any, Iterable, Mapping, Type

from fastapi import Request

from fieldops.domain.errors import ValidationError
from fieldops.domain.serialization import payload_to_fields, public_document
from fieldops.repositories.base import ExtendedStorage, Storage, require_extended


def get_storage(request: Request) -> Storage:
    storage = getattr(getattr(request.app, "state", None), "storage", None)
    if storage is None:
        raise RuntimeError("Storage not configured")
    return storage


def get_extended_storage(request: Request) -> ExtendedStorage:
    return require_extended(get_storage(request))


def build_input(input_cls: Type, entity_cls: Type, payload: Mapping[str, Any]):
    """Turn a camelCase request body into one of the New* input types."""
    fields = payload_to_fields(entity_cls, payload)
    fields.pop("id", None)
    try:
        return input_cls(**fields)
    except TypeError as exc:
        raise ValidationError(f"Invalid request body: {exc}") from None


def one(entity) -> dict:
    return public_document(entity)


def many(entities: Iterable) -> list:
    return [public_document(entity) for entity in entities]
