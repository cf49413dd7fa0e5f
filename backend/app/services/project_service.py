import logging
from datetime import datetime, timezone

from app.middleware.error_handler import NotFoundError
from app.middleware.input_guard import validate_project_meta
from app.models.project import ProjectRecord
from app.repositories import project_repo
from app.schemas.project import ProjectPayload

logger = logging.getLogger(__name__)


async def list_projects() -> list[dict]:
    return await project_repo.list_projects()


async def get_project(project_id: str) -> dict:
    project = await project_repo.get_project(project_id)
    if not project:
        raise NotFoundError("Project not found")
    return project


async def create_project(payload: ProjectPayload) -> dict:
    name, description = validate_project_meta(payload.name or "", payload.description or "")
    fields = payload.model_dump(exclude_none=True, exclude={"name", "description"})
    project = ProjectRecord(name=name, description=description, **fields)
    logger.info("Creating project %s (%s)", project.id, project.name)
    return await project_repo.insert_project(project)


async def update_project(project_id: str, payload: ProjectPayload) -> dict:
    existing = await get_project(project_id)
    changes = payload.model_dump(exclude_unset=True)

    if "name" in changes or "description" in changes:
        changes["name"], changes["description"] = validate_project_meta(
            changes.get("name") or existing.get("name", ""),
            changes.get("description") or existing.get("description", ""),
        )
    changes["updated_at"] = datetime.now(timezone.utc)

    updated = await project_repo.update_project(project_id, changes)
    if not updated:
        raise NotFoundError("Project not found")
    return updated


async def delete_project(project_id: str) -> None:
    if not await project_repo.delete_project(project_id):
        raise NotFoundError("Project not found")
    logger.info("Deleted project %s", project_id)
