from __future__ import annotations

from fastapi import APIRouter, Body, Request

from fieldops.domain.errors import NotFoundError
from fieldops.domain.models import Boundary, NewBoundary

from .common import build_input, get_extended_storage, get_storage, many, one

router = APIRouter(prefix="/api/boundaries", tags=["boundaries"])


@router.post("", status_code=201)
def create_boundary(request: Request, payload: dict = Body(...)):
    return one(get_storage(request).create_boundary(build_input(NewBoundary, Boundary, payload)))


@router.get("")
def list_boundaries(request: Request):
    return many(get_storage(request).get_all_boundaries())


@router.get("/{boundary_id}")
def get_boundary(boundary_id: str, request: Request):
    boundary = get_storage(request).get_boundary(boundary_id)
    if boundary is None:
        raise NotFoundError("Boundary", boundary_id)
    return one(boundary)


@router.patch("/{boundary_id}/status")
def update_boundary_status(boundary_id: str, request: Request, payload: dict = Body(...)):
    return one(get_storage(request).update_boundary_status(boundary_id, payload.get("status")))


@router.put("/{boundary_id}/assign")
def assign_boundary(boundary_id: str, request: Request, payload: dict = Body(...)):
    return one(get_storage(request).assign_boundary(boundary_id, payload.get("userId")))


@router.get("/{boundary_id}/features")
def features_in_boundary(boundary_id: str, request: Request):
    return many(get_extended_storage(request).get_features_in_boundary(boundary_id))


@router.get("/{boundary_id}/tasks")
def tasks_in_boundary(boundary_id: str, request: Request):
    return many(get_extended_storage(request).get_tasks_in_boundary(boundary_id))
