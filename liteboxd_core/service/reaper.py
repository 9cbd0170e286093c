import asyncio
from datetime import datetime, timezone
from typing import List, Optional

from ..constants import LABEL_SANDBOX_ID
from ..env import LOG
from ..infra.k8s.client import KubernetesClient
from ..schema.error import SandboxError, SandboxNotFound
from ..telemetry.log import bound_logging_vars
from ..util.generate_ids import track_process
from .translator import pod_expires_at


class TTLReaper:
    """Periodically deletes sandbox pods whose ttl has elapsed.

    Expiry is only noticed once per interval, so a sandbox can outlive its ttl
    by up to one interval. Pods whose expiry cannot be computed are kept.
    """

    def __init__(self, k8s_client: KubernetesClient, interval_seconds: float):
        self._client = k8s_client
        self._interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def interval_seconds(self) -> float:
        return self._interval_seconds

    def start(self) -> None:
        if self.running:
            LOG.info("TTL reaper is already running")
            return
        self._task = asyncio.create_task(self._run(), name="liteboxd-ttl-reaper")
        LOG.info(f"TTL reaper started (interval: {self._interval_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            LOG.error(f"TTL reaper exited with an error: {e!r}")
        LOG.info("TTL reaper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            try:
                await self.tick()
            except SandboxError as e:
                LOG.error(f"TTL reaper: scan failed: {e}")
            except Exception:
                LOG.exception("TTL reaper: unexpected error during scan")

    @track_process
    async def tick(self, now: Optional[datetime] = None) -> List[str]:
        """Run one scan; returns the sandbox ids whose pods were deleted.

        Listing failures propagate to the caller; per-pod delete failures are
        logged and retried on the next tick.
        """
        now = now or datetime.now(timezone.utc)
        pods = await self._client.list_execution_units()

        deleted: List[str] = []
        for pod in pods:
            expires_at = pod_expires_at(pod)
            if expires_at is None or not now > expires_at:
                continue

            sandbox_id = (pod.metadata.labels or {}).get(LABEL_SANDBOX_ID)
            if not sandbox_id:
                LOG.warning(
                    f"TTL reaper: expired pod {pod.metadata.name} has no sandbox id label"
                )
                continue

            with bound_logging_vars(sandbox_id=sandbox_id):
                LOG.info(f"TTL reaper: deleting expired sandbox {sandbox_id}")
                try:
                    await self._client.delete_execution_unit(sandbox_id)
                except SandboxNotFound:
                    # Deleted by a client between our list and delete
                    LOG.debug(f"TTL reaper: sandbox {sandbox_id} already gone")
                    continue
                except SandboxError as e:
                    LOG.error(f"TTL reaper: failed to delete sandbox {sandbox_id}: {e}")
                    continue
            deleted.append(sandbox_id)
        return deleted
