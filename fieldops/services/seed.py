"""Initial supervisor, teams and demo field user for a fresh deployment."""
from __future__ import annotations

import structlog

from fieldops.domain.models import NewTeam, NewUser, Role, TeamStatus
from fieldops.repositories.base import Storage

logger = structlog.get_logger(__name__)

SUPERVISOR_USERNAME = "supervisor12"
DEMO_USERNAME = "field_user_demo"
DEMO_PASSWORD = "demo123"

INITIAL_TEAMS = (
    ("Field Team Alpha", "Primary field operations team for towers and infrastructure"),
    ("Field Team Beta", "Secondary field operations team for maintenance tasks"),
    ("Maintenance Team", "Specialized team for infrastructure maintenance and repairs"),
    ("Survey Team", "Team responsible for site surveys and boundary mapping"),
)


def seed_initial_data(storage: Storage, supervisor_password: str = "supervisor@12") -> None:
    """Create the baseline accounts and teams; safe to run on every start."""
    supervisor = storage.get_user_by_username(SUPERVISOR_USERNAME)
    if supervisor is None:
        supervisor = storage.create_user(
            NewUser(
                username=SUPERVISOR_USERNAME,
                password=supervisor_password,
                name="System Supervisor",
                email="supervisor@geowhats.com",
                role=Role.SUPERVISOR,
            )
        )
        logger.info("seed_supervisor_created", user_id=supervisor.id)
    else:
        logger.info("seed_supervisor_exists", user_id=supervisor.id)

    teams = storage.get_all_teams()
    if not teams:
        for name, description in INITIAL_TEAMS:
            team = storage.create_team(
                NewTeam(name=name, description=description, status=TeamStatus.APPROVED, created_by=supervisor.id)
            )
            logger.info("seed_team_created", team_id=team.id, name=team.name)
        teams = storage.get_all_teams()
    else:
        logger.info("seed_teams_exist", count=len(teams))

    approved = [team for team in teams if team.status is TeamStatus.APPROVED]
    if approved and storage.get_user_by_username(DEMO_USERNAME) is None:
        demo = storage.create_user(
            NewUser(
                username=DEMO_USERNAME,
                password=DEMO_PASSWORD,
                name="Demo Field User",
                email="field.demo@geowhats.com",
                role=Role.FIELD,
                team_id=approved[0].id,
            )
        )
        logger.info("seed_demo_user_created", user_id=demo.id, team_id=approved[0].id)

    logger.info("seed_completed", backend=storage.backend_name)
