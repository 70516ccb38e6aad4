from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware


PROJECT_ROOT = Path(__file__).resolve().parent
API_CODE_PATH = PROJECT_ROOT / "api-code"
if str(API_CODE_PATH) not in sys.path:
    sys.path.insert(0, str(API_CODE_PATH))

from db.mongo import close_mongo_client  # noqa: E402
from env_loader import load_local_env  # noqa: E402
from repositories import DeploymentRepository, InMemoryDeploymentRepository  # noqa: E402
from routers import build_auth_router, build_deploy_router, build_health_router  # noqa: E402
from services import AuthService, DeployService  # noqa: E402
from settings import get_settings  # noqa: E402


load_local_env()
settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("devflow-deployer")


@asynccontextmanager
async def lifespan(app: FastAPI):
    global deploy_repository  # pylint: disable=global-statement
    try:
        await deploy_repository.ensure_indexes()
        logger.info("MongoDB repository initialized successfully.")
    except Exception as exc:  # pylint: disable=broad-except
        logger.warning(
            "MongoDB unavailable (%s); falling back to in-memory repository.", exc
        )
        deploy_repository = InMemoryDeploymentRepository()
        deploy_service.repository = deploy_repository  # type: ignore[assignment]
    yield
    await deploy_service.shutdown()
    close_mongo_client()


app = FastAPI(
    lifespan=lifespan,
    title="DevFlow Deployer API",
    version="0.1.0",
    description="Plans, submits, tracks and rolls back deployments across hosting providers.",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

deploy_repository: DeploymentRepository | InMemoryDeploymentRepository = DeploymentRepository()
deploy_service = DeployService(deploy_repository, settings)
auth_service = AuthService(settings)
auth_dependency = auth_service.build_auth_dependency()
admin_dependency = auth_service.build_admin_dependency()

app.include_router(build_auth_router(auth_service))
app.include_router(build_deploy_router(deploy_service, auth_dependency, admin_dependency))
app.include_router(build_health_router(deploy_service))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app_main:app", host="0.0.0.0", port=9001, reload=True)
