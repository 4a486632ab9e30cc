from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Request

from fieldops.domain.errors import NotFoundError
from fieldops.domain.models import NewTask, NewTaskEvidence, NewTaskUpdate, Task, TaskEvidence, TaskUpdate

from .common import build_input, get_extended_storage, get_storage, many, one

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@router.post("", status_code=201)
def create_task(request: Request, payload: dict = Body(...)):
    return one(get_storage(request).create_task(build_input(NewTask, Task, payload)))


@router.get("")
def list_tasks(request: Request, assignedTo: Optional[str] = None, createdBy: Optional[str] = None):
    storage = get_storage(request)
    if assignedTo is not None:
        return many(storage.get_tasks_by_assignee(assignedTo))
    if createdBy is not None:
        return many(storage.get_tasks_by_creator(createdBy))
    return many(storage.get_all_tasks())


@router.get("/search")
def search_tasks(request: Request, q: str = ""):
    return many(get_extended_storage(request).search_tasks(q))


@router.post("/bulk-status")
def bulk_status(request: Request, payload: dict = Body(...)):
    storage = get_extended_storage(request)
    updated = storage.bulk_update_task_status(
        payload.get("taskIds") or [],
        payload.get("status"),
        payload.get("userId"),
    )
    return {"updated": updated}


@router.get("/{task_id}")
def get_task(task_id: str, request: Request):
    task = get_storage(request).get_task(task_id)
    if task is None:
        raise NotFoundError("Task", task_id)
    return one(task)


@router.patch("/{task_id}/status")
def update_task_status(task_id: str, request: Request, payload: dict = Body(...)):
    storage = get_storage(request)
    return one(storage.update_task_status(task_id, payload.get("status"), payload.get("userId")))


@router.put("/{task_id}/assign")
def assign_task(task_id: str, request: Request, payload: dict = Body(...)):
    return one(get_storage(request).assign_task(task_id, payload.get("userId")))


@router.get("/{task_id}/updates")
def list_task_updates(task_id: str, request: Request):
    return many(get_storage(request).get_task_updates(task_id))


@router.post("/{task_id}/updates", status_code=201)
def create_task_update(task_id: str, request: Request, payload: dict = Body(...)):
    data = build_input(NewTaskUpdate, TaskUpdate, {**payload, "taskId": task_id})
    return one(get_storage(request).create_task_update(data))


@router.get("/{task_id}/evidence")
def list_task_evidence(task_id: str, request: Request):
    return many(get_storage(request).get_task_evidence(task_id))


@router.post("/{task_id}/evidence", status_code=201)
def add_task_evidence(task_id: str, request: Request, payload: dict = Body(...)):
    data = build_input(NewTaskEvidence, TaskEvidence, {**payload, "taskId": task_id})
    return one(get_storage(request).add_task_evidence(data))
