"""
FastAPI routers grouped by entity (users, teams, tasks, features, boundaries).

Each module exposes an APIRouter included by `fieldops.app.create_app`. The
active backend is read from `request.app.state.storage`.
"""
