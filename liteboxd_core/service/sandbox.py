import asyncio
from typing import List, Optional

from ..env import DEFAULT_CORE_CONFIG, LOG
from ..infra.k8s.client import KubernetesClient
from ..schema.config import CoreConfig
from ..schema.error import SandboxAlreadyExists, SandboxError, SandboxTimeout
from ..schema.sandbox import (
    CreateSandboxRequest,
    ExecResult,
    LogsResponse,
    Sandbox,
)
from ..telemetry.log import bound_logging_vars
from ..util.generate_ids import generate_sandbox_id
from .reaper import TTLReaper
from .translator import pod_to_sandbox


class SandboxService:
    """Sandbox lifecycle on top of the Kubernetes client.

    Keeps no sandbox state of its own: status and expiry are recomputed from
    the pod on every read. Owns the TTL reaper.
    """

    def __init__(
        self,
        k8s_client: KubernetesClient,
        core_config: CoreConfig = DEFAULT_CORE_CONFIG,
    ):
        self.client = k8s_client
        self.config = core_config
        self.reaper = TTLReaper(
            k8s_client, interval_seconds=core_config.sandbox_reaper_interval_seconds
        )

    def start(self) -> None:
        if self.config.sandbox_reaper_enabled:
            self.reaper.start()
        else:
            LOG.warning("TTL reaper is disabled, expired sandboxes will not be deleted")

    async def close(self) -> None:
        await self.reaper.stop()

    async def create(self, request: CreateSandboxRequest) -> Sandbox:
        ttl = request.ttl if request.ttl > 0 else self.config.sandbox_default_ttl_seconds

        # Short ids can collide; a pod name conflict means retry with a new id
        max_attempts = self.config.sandbox_id_max_attempts
        attempt = 1
        while True:
            sandbox_id = generate_sandbox_id()
            try:
                pod = await self.client.create_execution_unit(
                    sandbox_id,
                    image=request.image,
                    cpu=request.cpu,
                    memory=request.memory,
                    ttl=ttl,
                    env=request.env,
                )
                break
            except SandboxAlreadyExists:
                if attempt >= max_attempts:
                    raise
                LOG.warning(
                    f"Sandbox id {sandbox_id} collided ({attempt}/{max_attempts}), retrying"
                )
                attempt += 1

        sandbox = pod_to_sandbox(pod)
        LOG.info(f"Created sandbox {sandbox.id} (image={request.image}, ttl={ttl}s)")
        return sandbox

    async def get(self, sandbox_id: str) -> Sandbox:
        pod = await self.client.get_execution_unit(sandbox_id)
        return pod_to_sandbox(pod)

    async def list(self) -> List[Sandbox]:
        pods = await self.client.list_execution_units()
        return [pod_to_sandbox(pod) for pod in pods]

    async def delete(self, sandbox_id: str) -> None:
        await self.client.delete_execution_unit(sandbox_id)
        LOG.info(f"Deleted sandbox {sandbox_id}")

    async def exec(
        self, sandbox_id: str, command: List[str], timeout_seconds: int = 0
    ) -> ExecResult:
        """Run a command, bounded by ``timeout_seconds`` (<= 0 uses the default).

        On timeout the exec stream is cancelled and SandboxTimeout is raised.
        """
        timeout = (
            timeout_seconds
            if timeout_seconds > 0
            else self.config.sandbox_default_exec_timeout_seconds
        )
        with bound_logging_vars(sandbox_id=sandbox_id):
            try:
                return await asyncio.wait_for(
                    self.client.exec_in_unit(sandbox_id, command), timeout=timeout
                )
            except asyncio.TimeoutError as e:
                LOG.warning(f"Exec timed out after {timeout}s: {command}")
                raise SandboxTimeout(sandbox_id, timeout) from e

    async def upload_file(self, sandbox_id: str, path: str, content: bytes) -> None:
        await self.client.upload_file(sandbox_id, path, content)

    async def download_file(self, sandbox_id: str, path: str) -> bytes:
        return await self.client.download_file(sandbox_id, path)

    async def get_logs(self, sandbox_id: str, tail_lines: int = 0) -> LogsResponse:
        """Best effort: a failing half (logs or events) comes back empty."""
        with bound_logging_vars(sandbox_id=sandbox_id):
            try:
                logs = await self.client.get_logs(sandbox_id, tail_lines)
            except SandboxError as e:
                LOG.warning(f"Failed to fetch logs: {e}")
                logs = ""

            try:
                events = await self.client.get_events(sandbox_id)
            except SandboxError as e:
                LOG.warning(f"Failed to fetch events: {e}")
                events = []

        return LogsResponse(logs=logs, events=events)


class SandboxServiceHolder:
    def __init__(self):
        self.__service: Optional[SandboxService] = None

    async def init(self, k8s_client: Optional[KubernetesClient] = None):
        if self.enabled:
            LOG.info("Sandbox service is already initialized")
            return

        k8s_client = k8s_client or KubernetesClient.from_default()
        await k8s_client.ensure_namespace()
        self.__service = SandboxService(k8s_client)
        self.__service.start()
        LOG.info("Sandbox service is enabled")

    async def close(self):
        if self.__service is not None:
            await self.__service.close()
            self.__service.client.close()
        self.__service = None

    @property
    def enabled(self) -> bool:
        return self.__service is not None

    def use_service(self) -> SandboxService:
        if self.__service is None:
            raise ValueError("Sandbox service is not initialized")
        return self.__service


SANDBOX_SERVICE = SandboxServiceHolder()


async def init_sandbox_service():
    await SANDBOX_SERVICE.init()


async def close_sandbox_service():
    await SANDBOX_SERVICE.close()
