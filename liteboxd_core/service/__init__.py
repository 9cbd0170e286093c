from .sandbox import SandboxService, SANDBOX_SERVICE
from .reaper import TTLReaper
from .translator import pod_to_sandbox, pod_expires_at

__all__ = [
    "SandboxService",
    "SANDBOX_SERVICE",
    "TTLReaper",
    "pod_to_sandbox",
    "pod_expires_at",
]
