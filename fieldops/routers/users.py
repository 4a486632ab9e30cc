from __future__ import annotations

from fastapi import APIRouter, Body, Request

from fieldops.domain.errors import NotFoundError
from fieldops.domain.models import NewUser, User

from .common import build_input, get_extended_storage, get_storage, many, one

router = APIRouter(prefix="/api/users", tags=["users"])


@router.post("", status_code=201)
def create_user(request: Request, payload: dict = Body(...)):
    storage = get_storage(request)
    return one(storage.create_user(build_input(NewUser, User, payload)))


@router.get("/field")
def list_field_users(request: Request):
    return many(get_storage(request).get_all_field_users())


@router.get("/nearby")
def users_nearby(request: Request, lng: float, lat: float, maxDistance: float = 1000.0):
    storage = get_extended_storage(request)
    return many(storage.get_users_near_location(lng, lat, maxDistance))


@router.get("/by-username/{username}")
def get_user_by_username(username: str, request: Request):
    user = get_storage(request).get_user_by_username(username)
    if user is None:
        raise NotFoundError("User", username)
    return one(user)


@router.get("/{user_id}")
def get_user(user_id: str, request: Request):
    user = get_storage(request).get_user(user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return one(user)


@router.put("/{user_id}/location")
def update_location(user_id: str, request: Request, payload: dict = Body(...)):
    location = payload.get("location", payload)
    return one(get_storage(request).update_user_location(user_id, location))


@router.post("/{user_id}/last-active")
def touch_last_active(user_id: str, request: Request):
    return one(get_storage(request).update_user_last_active(user_id))


@router.put("/{user_id}/team")
def assign_team(user_id: str, request: Request, payload: dict = Body(...)):
    return one(get_storage(request).assign_user_to_team(user_id, payload.get("teamId")))
