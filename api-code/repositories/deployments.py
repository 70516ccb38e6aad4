from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import DESCENDING, ReturnDocument

from db.mongo import get_database
from domain.deploy_states import DeployStatus, Environment, Plan
from models.deploy import Deployment, DeploymentCreate, DeploymentUpdate, Project, UserAccount


class DeploymentRepository:
    """MongoDB repository handling the deployments, projects and users collections."""

    def __init__(self, database: Optional[AsyncIOMotorDatabase] = None):
        self._db = database if database is not None else get_database()
        self._deployments: AsyncIOMotorCollection = self._db["deployments"]
        self._projects: AsyncIOMotorCollection = self._db["projects"]
        self._users: AsyncIOMotorCollection = self._db["users"]

    async def ping(self) -> bool:
        await self._db.command("ping")
        return True

    async def ensure_indexes(self) -> None:
        await self._deployments.create_index([("project_id", 1), ("created_at", DESCENDING)])
        await self._deployments.create_index([("created_by", 1), ("created_at", 1)])
        await self._deployments.create_index("status")

    async def create_deployment(self, payload: DeploymentCreate) -> Deployment:
        document = payload.to_document()
        await self._deployments.insert_one(document)
        return Deployment.from_mongo(document)

    async def get_deployment(self, deployment_id: str) -> Optional[Deployment]:
        document = await self._deployments.find_one({"_id": deployment_id})
        if not document:
            return None
        return Deployment.from_mongo(document)

    async def list_deployments(
        self, project_id: str, *, limit: Optional[int] = None
    ) -> List[Deployment]:
        cursor = self._deployments.find({"project_id": project_id}).sort("created_at", DESCENDING)
        if limit is not None:
            cursor = cursor.limit(limit)
        return [Deployment.from_mongo(document) async for document in cursor]

    async def update_deployment(
        self,
        deployment_id: str,
        update: DeploymentUpdate,
        *,
        expected_status: Optional[Iterable[DeployStatus]] = None,
    ) -> Optional[Deployment]:
        """Apply ``update``; with ``expected_status`` only while the row is in one of them.

        Returns ``None`` when the row is missing or the status guard did not match.
        """
        update_query = update.to_update_query()
        if not update_query:
            return await self.get_deployment(deployment_id)

        query: dict = {"_id": deployment_id}
        if expected_status is not None:
            query["status"] = {"$in": [DeployStatus(status).value for status in expected_status]}
        document = await self._deployments.find_one_and_update(
            query,
            update_query,
            return_document=ReturnDocument.AFTER,
        )
        if not document:
            return None
        return Deployment.from_mongo(document)

    async def count_user_deployments_since(self, user_id: str, since: datetime) -> int:
        return await self._deployments.count_documents(
            {"created_by": user_id, "created_at": {"$gte": since}}
        )

    async def get_last_successful(
        self, project_id: str, environment: Environment
    ) -> Optional[Deployment]:
        document = await self._deployments.find_one(
            {
                "project_id": project_id,
                "environment": Environment(environment).value,
                "status": DeployStatus.SUCCESS.value,
            },
            sort=[("created_at", DESCENDING)],
        )
        if not document:
            return None
        return Deployment.from_mongo(document)

    async def get_project(self, project_id: str) -> Optional[Project]:
        document = await self._projects.find_one({"_id": project_id})
        if not document:
            return None
        return Project.from_mongo(document)

    async def upsert_project(self, project: Project) -> Project:
        document = project.to_mongo()
        await self._projects.replace_one({"_id": project.id}, document, upsert=True)
        return project

    async def get_user(self, user_id: str) -> Optional[UserAccount]:
        document = await self._users.find_one({"_id": user_id})
        if not document:
            return None
        return UserAccount.from_mongo(document)

    async def set_user_plan(self, user_id: str, plan: Plan) -> UserAccount:
        account = UserAccount(_id=user_id, plan=plan)
        await self._users.replace_one({"_id": user_id}, account.to_mongo(), upsert=True)
        return account
