from fastapi import APIRouter

from app.schemas.project import ProjectPayload
from app.services import project_service

router = APIRouter(prefix="/projects", tags=["projects"])


@router.get("")
async def list_projects():
    """All saved projects, most recently updated first."""
    return {"projects": await project_service.list_projects()}


@router.post("")
async def create_project(body: ProjectPayload):
    return {"project": await project_service.create_project(body)}


@router.get("/{project_id}")
async def get_project(project_id: str):
    return {"project": await project_service.get_project(project_id)}


@router.put("/{project_id}")
async def update_project(project_id: str, body: ProjectPayload):
    return {"project": await project_service.update_project(project_id, body)}


@router.delete("/{project_id}")
async def delete_project(project_id: str):
    await project_service.delete_project(project_id)
    return {"success": True}
