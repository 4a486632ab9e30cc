from __future__ import annotations

from fastapi import APIRouter, Request

from .common import get_extended_storage

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


@router.get("/users/{user_id}/tasks")
def task_stats_by_user(user_id: str, request: Request):
    return get_extended_storage(request).get_task_stats_by_user(user_id)


@router.get("/features/by-type")
def feature_stats_by_type(request: Request):
    return get_extended_storage(request).get_feature_stats_by_type()
