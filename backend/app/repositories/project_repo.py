from app.db.mongodb import get_mongodb
from app.models.project import ProjectRecord

COLLECTION = "projects"


async def list_projects() -> list[dict]:
    db = get_mongodb()
    cursor = db[COLLECTION].find({}, {"_id": 0}).sort("updated_at", -1)
    return await cursor.to_list(length=500)


async def get_project(project_id: str) -> dict | None:
    db = get_mongodb()
    return await db[COLLECTION].find_one({"id": project_id}, {"_id": 0})


async def insert_project(project: ProjectRecord) -> dict:
    db = get_mongodb()
    doc = project.model_dump()
    await db[COLLECTION].insert_one(dict(doc))
    return doc


async def update_project(project_id: str, changes: dict) -> dict | None:
    db = get_mongodb()
    await db[COLLECTION].update_one({"id": project_id}, {"$set": changes})
    return await get_project(project_id)


async def delete_project(project_id: str) -> bool:
    db = get_mongodb()
    result = await db[COLLECTION].delete_one({"id": project_id})
    return result.deleted_count > 0
