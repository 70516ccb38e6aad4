from .auth import build_auth_router
from .deploy import build_deploy_router, to_http_error
from .health import build_health_router

__all__ = ["build_auth_router", "build_deploy_router", "build_health_router", "to_http_error"]
