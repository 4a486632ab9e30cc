from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Request, Response

from fieldops.domain.errors import NotFoundError
from fieldops.domain.models import Feature, NewFeature
from fieldops.domain.serialization import payload_to_fields

from .common import build_input, get_extended_storage, get_storage, many, one

router = APIRouter(prefix="/api/features", tags=["features"])


@router.post("", status_code=201)
def create_feature(request: Request, payload: dict = Body(...)):
    return one(get_storage(request).create_feature(build_input(NewFeature, Feature, payload)))


@router.get("")
def list_features(request: Request, type: Optional[str] = None, status: Optional[str] = None):
    storage = get_storage(request)
    if type is not None:
        return many(storage.get_features_by_type(type))
    if status is not None:
        return many(storage.get_features_by_status(status))
    return many(storage.get_all_features())


@router.get("/search")
def search_features(request: Request, q: str = ""):
    return many(get_extended_storage(request).search_features(q))


@router.get("/nearby")
def features_nearby(request: Request, lng: float, lat: float, maxDistance: float = 1000.0):
    storage = get_extended_storage(request)
    return many(storage.get_features_near_location(lng, lat, maxDistance))


@router.get("/{feature_id}")
def get_feature(feature_id: str, request: Request):
    feature = get_storage(request).get_feature(feature_id)
    if feature is None:
        raise NotFoundError("Feature", feature_id)
    return one(feature)


@router.patch("/{feature_id}")
def update_feature(feature_id: str, request: Request, payload: dict = Body(...)):
    changes = payload_to_fields(Feature, payload)
    return one(get_storage(request).update_feature(feature_id, changes))


@router.delete("/{feature_id}", status_code=204)
def delete_feature(feature_id: str, request: Request):
    if not get_storage(request).delete_feature(feature_id):
        raise NotFoundError("Feature", feature_id)
    return Response(status_code=204)
