from __future__ import annotations

from fastapi import APIRouter, Body, Request

from fieldops.domain.errors import NotFoundError
from fieldops.domain.models import NewTeam, Team

from .common import build_input, get_storage, many, one

router = APIRouter(prefix="/api/teams", tags=["teams"])


@router.post("", status_code=201)
def create_team(request: Request, payload: dict = Body(...)):
    return one(get_storage(request).create_team(build_input(NewTeam, Team, payload)))


@router.get("")
def list_teams(request: Request):
    return many(get_storage(request).get_all_teams())


@router.get("/by-name/{name}")
def get_team_by_name(name: str, request: Request):
    team = get_storage(request).get_team_by_name(name)
    if team is None:
        raise NotFoundError("Team", name)
    return one(team)


@router.get("/{team_id}")
def get_team(team_id: str, request: Request):
    team = get_storage(request).get_team(team_id)
    if team is None:
        raise NotFoundError("Team", team_id)
    return one(team)


@router.patch("/{team_id}/status")
def update_team_status(team_id: str, request: Request, payload: dict = Body(...)):
    storage = get_storage(request)
    return one(storage.update_team_status(team_id, payload.get("status"), payload.get("approvedBy")))


@router.get("/{team_id}/users")
def list_team_users(team_id: str, request: Request):
    return many(get_storage(request).get_users_by_team(team_id))
