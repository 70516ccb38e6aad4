from .base import BaseDeployAdapter, parse_log_line
from .netlify import NetlifyAdapter
from .registry import AdapterRegistry, build_adapter_registry
from .simulation import ProviderSimulation, SimulatedDeployment
from .vercel import VercelAdapter

__all__ = [
    "AdapterRegistry",
    "BaseDeployAdapter",
    "NetlifyAdapter",
    "ProviderSimulation",
    "SimulatedDeployment",
    "VercelAdapter",
    "build_adapter_registry",
    "parse_log_line",
]
