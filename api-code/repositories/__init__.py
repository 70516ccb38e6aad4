from .deployments import DeploymentRepository
from .in_memory import InMemoryDeploymentRepository

__all__ = ["DeploymentRepository", "InMemoryDeploymentRepository"]
