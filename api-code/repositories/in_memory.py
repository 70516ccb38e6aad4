from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from domain import DeployStatus, Environment, Plan
from models import Deployment, DeploymentCreate, DeploymentUpdate, Project, UserAccount, utc_now


class InMemoryDeploymentRepository:
    """Fallback repository used when MongoDB is unavailable."""

    def __init__(self) -> None:
        self._deployments: Dict[str, Deployment] = {}
        self._order: Dict[str, int] = {}
        self._projects: Dict[str, Project] = {}
        self._users: Dict[str, UserAccount] = {}

    async def ping(self) -> bool:
        return True

    async def ensure_indexes(self) -> None:  # pragma: no cover - no-op
        return

    async def create_deployment(self, payload: DeploymentCreate) -> Deployment:
        document = payload.to_document()
        deployment = Deployment.from_mongo(document)
        if deployment.id in self._deployments:
            raise ValueError(f"duplicate deployment id: {deployment.id}")
        self._deployments[deployment.id] = deployment
        self._order[deployment.id] = len(self._order)
        return deployment.model_copy()

    async def get_deployment(self, deployment_id: str) -> Optional[Deployment]:
        deployment = self._deployments.get(deployment_id)
        return deployment.model_copy() if deployment else None

    async def list_deployments(
        self, project_id: str, *, limit: Optional[int] = None
    ) -> List[Deployment]:
        rows = [row for row in self._deployments.values() if row.project_id == project_id]
        rows.sort(key=lambda row: (row.created_at, self._order[row.id]), reverse=True)
        if limit is not None:
            rows = rows[:limit]
        return [row.model_copy() for row in rows]

    async def update_deployment(
        self,
        deployment_id: str,
        update: DeploymentUpdate,
        *,
        expected_status: Optional[Iterable[DeployStatus]] = None,
    ) -> Optional[Deployment]:
        deployment = self._deployments.get(deployment_id)
        if not deployment:
            return None
        if expected_status is not None:
            allowed = {DeployStatus(status).value for status in expected_status}
            if deployment.status not in allowed:
                return None

        fields = update.set_fields()
        if not fields:
            return deployment.model_copy()
        fields["updated_at"] = utc_now()
        updated = deployment.model_copy(update=fields)
        self._deployments[deployment_id] = updated
        return updated.model_copy()

    async def count_user_deployments_since(self, user_id: str, since: datetime) -> int:
        return sum(
            1
            for row in self._deployments.values()
            if row.created_by == user_id and row.created_at >= since
        )

    async def get_last_successful(
        self, project_id: str, environment: Environment
    ) -> Optional[Deployment]:
        environment = Environment(environment).value
        for row in await self.list_deployments(project_id):
            if row.environment == environment and row.status == DeployStatus.SUCCESS.value:
                return row
        return None

    async def get_project(self, project_id: str) -> Optional[Project]:
        project = self._projects.get(project_id)
        return project.model_copy() if project else None

    async def upsert_project(self, project: Project) -> Project:
        self._projects[project.id] = project.model_copy()
        return project

    async def get_user(self, user_id: str) -> Optional[UserAccount]:
        account = self._users.get(user_id)
        return account.model_copy() if account else None

    async def set_user_plan(self, user_id: str, plan: Plan) -> UserAccount:
        account = UserAccount(_id=user_id, plan=plan)
        self._users[user_id] = account
        return account.model_copy()
