import asyncio
import contextvars
import functools
import posixpath
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import List, Optional, Type

import urllib3
import yaml
from kubernetes import client, config  # type: ignore
from kubernetes.client.rest import ApiException  # type: ignore
from kubernetes.stream import stream as k8s_stream  # type: ignore
from kubernetes.stream.ws_client import ERROR_CHANNEL  # type: ignore
from pydantic import BaseModel

from .archive import create_single_file_archive, extract_file_from_archive
from .models import PodCreateOptions
from ...constants import CONTAINER_NAME, LABEL_APP, LABEL_APP_VALUE, pod_name_for
from ...env import DEFAULT_CORE_CONFIG, LOG
from ...schema.config import CoreConfig
from ...schema.error import (
    CreationError,
    SandboxAlreadyExists,
    SandboxNotFound,
    TransferError,
    TransportError,
)
from ...schema.sandbox import ExecResult

# Errors raised by the generated API client for a failed request or connection
PLATFORM_ERRORS = (ApiException, urllib3.exceptions.HTTPError)


class ExecStreamOutput(BaseModel):
    stdout: bytes
    stderr: bytes
    # Decoded v1.Status from the exec error channel; None if nothing arrived
    status: Optional[dict]


def _as_bytes(data) -> bytes:
    if not data:
        return b""
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace") if data else ""


def exit_code_from_status(status: Optional[dict]) -> tuple[int, Optional[str]]:
    """Map the exec v1.Status to (exit_code, error_text).

    error_text is set when the remote process never reported an exit code,
    i.e. it could not be started or the stream broke.
    """
    if not status:
        return 1, "exec stream closed without reporting a status"
    if status.get("status") == "Success":
        return 0, None
    causes = (status.get("details") or {}).get("causes") or []
    for cause in causes:
        if cause.get("reason") == "ExitCode":
            try:
                return int(cause.get("message")), None
            except (TypeError, ValueError):
                break
    return 1, status.get("message") or "command failed without an exit code"


class KubernetesClient:
    """The only code that talks to the Kubernetes API.

    Holds no cache: every call goes to the API server, whose object store is
    the single source of truth for sandboxes. The generated client is
    blocking, so calls run in worker threads.
    """

    def __init__(
        self,
        core_api: client.CoreV1Api,
        core_config: CoreConfig = DEFAULT_CORE_CONFIG,
    ):
        self._core_api = core_api
        self._config = core_config
        self._namespace = core_config.sandbox_namespace
        # Exec sessions hold a thread for their whole duration, so they get their
        # own pool and cannot starve API calls or reaper ticks
        self._exec_executor = ThreadPoolExecutor(
            max_workers=core_config.sandbox_exec_max_workers,
            thread_name_prefix="liteboxd-exec",
        )

    @classmethod
    def from_default(cls: Type["KubernetesClient"]) -> "KubernetesClient":
        """Load kube config (explicit path, in-cluster, then default kubeconfig)."""
        kubeconfig_path = DEFAULT_CORE_CONFIG.kubeconfig_path
        try:
            if kubeconfig_path:
                config.load_kube_config(config_file=kubeconfig_path)
                LOG.info(f"Loaded kubeconfig from {kubeconfig_path}")
            else:
                try:
                    config.load_incluster_config()
                    LOG.info("Loaded in-cluster Kubernetes configuration")
                except config.ConfigException:
                    config.load_kube_config()
                    LOG.info("Loaded kubeconfig from default location")
        except config.ConfigException as e:
            raise TransportError(f"Failed to load Kubernetes configuration: {e}") from e

        return cls(client.CoreV1Api(), DEFAULT_CORE_CONFIG)

    @property
    def namespace(self) -> str:
        return self._namespace

    async def _run_in_thread(self, func, *args, **kwargs):
        return await asyncio.to_thread(func, *args, **kwargs)

    async def _run_in_exec_pool(self, func, *args):
        loop = asyncio.get_running_loop()
        ctx = contextvars.copy_context()
        return await loop.run_in_executor(
            self._exec_executor, functools.partial(ctx.run, func, *args)
        )

    def close(self) -> None:
        """Stop accepting exec sessions. Running sessions end on their own."""
        self._exec_executor.shutdown(wait=False, cancel_futures=True)

    def _wrap_error(
        self, e: Exception, operation: str, sandbox_id: Optional[str] = None
    ) -> Exception:
        if isinstance(e, ApiException):
            if e.status == 404 and sandbox_id is not None:
                return SandboxNotFound(sandbox_id, detail=operation)
            return TransportError(
                f"Failed to {operation}: {e.status} {e.reason}".rstrip()
            )
        return TransportError(f"Failed to {operation}: {e}")

    # -------------------------- namespace -------------------------- #

    async def ensure_namespace(self) -> None:
        """Create the sandbox namespace unless it already exists."""

        def _ensure() -> bool:
            try:
                self._core_api.read_namespace(name=self._namespace)
                return False
            except ApiException as e:
                if e.status != 404:
                    raise
            try:
                self._core_api.create_namespace(
                    body=client.V1Namespace(
                        metadata=client.V1ObjectMeta(name=self._namespace)
                    )
                )
            except ApiException as e:
                # Created concurrently by another replica
                if e.status == 409:
                    return False
                raise
            return True

        try:
            created = await self._run_in_thread(_ensure)
        except PLATFORM_ERRORS as e:
            raise self._wrap_error(e, f"ensure namespace {self._namespace}") from e
        if created:
            LOG.info(f"Created namespace {self._namespace}")
        else:
            LOG.info(f"Namespace {self._namespace} already exists")

    # -------------------------- pod CRUD -------------------------- #

    async def create_execution_unit(
        self,
        sandbox_id: str,
        image: str,
        cpu: str,
        memory: str,
        ttl: int,
        env: Optional[dict[str, str]] = None,
    ) -> client.V1Pod:
        options = PodCreateOptions(
            sandbox_id=sandbox_id,
            image=image,
            cpu=cpu or self._config.sandbox_default_cpu,
            memory=memory or self._config.sandbox_default_memory,
            ttl=ttl,
            env=env or {},
            namespace=self._namespace,
            request_cpu=self._config.sandbox_request_cpu,
            request_memory=self._config.sandbox_request_memory,
            run_as_user=self._config.sandbox_run_as_user,
            workspace_path=self._config.sandbox_workspace_path,
        )
        body = options.to_pod(created_at=datetime.now(timezone.utc))

        try:
            pod = await self._run_in_thread(
                self._core_api.create_namespaced_pod,
                namespace=self._namespace,
                body=body,
            )
        except ApiException as e:
            if e.status == 409:
                raise SandboxAlreadyExists(sandbox_id) from e
            raise CreationError(
                f"Failed to create pod {options.pod_name}: {e.status} {e.reason} {e.body or ''}".rstrip()
            ) from e
        except urllib3.exceptions.HTTPError as e:
            raise CreationError(f"Failed to create pod {options.pod_name}: {e}") from e

        LOG.info(f"Created pod {options.pod_name} for sandbox {sandbox_id}")
        return pod

    async def get_execution_unit(self, sandbox_id: str) -> client.V1Pod:
        try:
            return await self._run_in_thread(
                self._core_api.read_namespaced_pod,
                name=pod_name_for(sandbox_id),
                namespace=self._namespace,
            )
        except PLATFORM_ERRORS as e:
            raise self._wrap_error(e, "get pod", sandbox_id) from e

    async def list_execution_units(self) -> List[client.V1Pod]:
        try:
            pods = await self._run_in_thread(
                self._core_api.list_namespaced_pod,
                namespace=self._namespace,
                label_selector=f"{LABEL_APP}={LABEL_APP_VALUE}",
            )
        except PLATFORM_ERRORS as e:
            raise self._wrap_error(e, "list pods") from e
        return list(pods.items or [])

    async def delete_execution_unit(self, sandbox_id: str) -> None:
        try:
            await self._run_in_thread(
                self._core_api.delete_namespaced_pod,
                name=pod_name_for(sandbox_id),
                namespace=self._namespace,
            )
        except PLATFORM_ERRORS as e:
            raise self._wrap_error(e, "delete pod", sandbox_id) from e
        LOG.info(f"Deleted pod {pod_name_for(sandbox_id)}")

    # -------------------------- exec streams -------------------------- #

    def _stream_exec(
        self,
        pod_name: str,
        command: List[str],
        stdin_data: Optional[bytes],
        cancelled: threading.Event,
    ) -> Optional[ExecStreamOutput]:
        """Run one exec session to completion. Blocking; runs in a worker thread.

        Returns None when cancelled; the stream is closed either way.
        """
        resp = k8s_stream(
            self._core_api.connect_get_namespaced_pod_exec,
            pod_name,
            self._namespace,
            container=CONTAINER_NAME,
            command=command,
            stdin=stdin_data is not None,
            stdout=True,
            stderr=True,
            tty=False,
            binary=True,
            _preload_content=False,
        )
        stdout, stderr = bytearray(), bytearray()
        try:
            if stdin_data is not None:
                resp.write_stdin(stdin_data)

            while resp.is_open():
                if cancelled.is_set():
                    LOG.info(f"Exec in pod {pod_name} cancelled, closing stream")
                    return None
                resp.update(timeout=self._config.sandbox_exec_poll_seconds)
                if resp.peek_stdout():
                    stdout += _as_bytes(resp.read_stdout())
                if resp.peek_stderr():
                    stderr += _as_bytes(resp.read_stderr())

            stdout += _as_bytes(resp.read_stdout())
            stderr += _as_bytes(resp.read_stderr())
            raw_status = _as_bytes(resp.read_channel(ERROR_CHANNEL))
        finally:
            resp.close()

        status = yaml.safe_load(raw_status) if raw_status else None
        return ExecStreamOutput(
            stdout=bytes(stdout),
            stderr=bytes(stderr),
            status=status if isinstance(status, dict) else None,
        )

    async def _exec_stream(
        self,
        pod_name: str,
        command: List[str],
        stdin_data: Optional[bytes] = None,
    ) -> ExecStreamOutput:
        cancelled = threading.Event()
        try:
            return await self._run_in_exec_pool(
                self._stream_exec, pod_name, command, stdin_data, cancelled
            )
        except asyncio.CancelledError:
            # The worker thread notices on its next poll and tears the stream down
            cancelled.set()
            raise

    async def exec_in_unit(self, sandbox_id: str, command: List[str]) -> ExecResult:
        """Run ``command`` in the sandbox container without stdin.

        Once the pod is known to exist, stream failures never raise: they come
        back as exit code 1 with the error text appended to stderr.
        """
        await self.get_execution_unit(sandbox_id)
        pod_name = pod_name_for(sandbox_id)

        try:
            output = await self._exec_stream(pod_name, command)
        except Exception as e:
            LOG.warning(f"Exec stream to pod {pod_name} failed: {e}")
            return ExecResult(exit_code=1, stdout="", stderr=f"\n{e}")

        exit_code, error_text = exit_code_from_status(output.status)
        stderr = _decode(output.stderr)
        if error_text is not None:
            LOG.warning(f"Exec in pod {pod_name} did not report an exit code: {error_text}")
            stderr = f"{stderr}\n{error_text}"
        return ExecResult(exit_code=exit_code, stdout=_decode(output.stdout), stderr=stderr)

    # -------------------------- file transfer -------------------------- #

    async def upload_file(self, sandbox_id: str, dest_path: str, content: bytes) -> None:
        """Write ``content`` to ``dest_path`` by piping a tar archive into ``tar -x``."""
        dest_dir = posixpath.dirname(dest_path) or "."
        filename = posixpath.basename(dest_path)
        archive = create_single_file_archive(filename, content)

        await self.get_execution_unit(sandbox_id)
        pod_name = pod_name_for(sandbox_id)
        # The websocket protocol cannot half-close stdin, so read exactly the archive
        command = [
            "sh",
            "-c",
            'head -c "$0" | tar -xf - -C "$1"',
            str(len(archive)),
            dest_dir,
        ]
        try:
            output = await self._exec_stream(pod_name, command, stdin_data=archive)
        except Exception as e:
            raise TransferError(f"Failed to upload {dest_path}: {e}") from e

        exit_code, error_text = exit_code_from_status(output.status)
        if exit_code != 0:
            raise TransferError(
                f"Failed to upload {dest_path}: exit code {exit_code}, "
                f"stderr: {_decode(output.stderr)}{error_text or ''}"
            )
        LOG.info(f"Uploaded {len(content)} bytes to {pod_name}:{dest_path}")

    async def download_file(self, sandbox_id: str, src_path: str) -> bytes:
        """Read ``src_path`` by packing it with ``tar -c`` on the remote side."""
        src_dir = posixpath.dirname(src_path) or "."
        filename = posixpath.basename(src_path)
        if not filename:
            raise TransferError(f"Source path {src_path!r} does not name a file")

        await self.get_execution_unit(sandbox_id)
        pod_name = pod_name_for(sandbox_id)
        command = ["tar", "-cf", "-", "-C", src_dir, filename]
        try:
            output = await self._exec_stream(pod_name, command)
        except Exception as e:
            raise TransferError(f"Failed to download {src_path}: {e}") from e

        exit_code, error_text = exit_code_from_status(output.status)
        if exit_code != 0:
            raise TransferError(
                f"Failed to download {src_path}: exit code {exit_code}, "
                f"stderr: {_decode(output.stderr)}{error_text or ''}"
            )
        return extract_file_from_archive(output.stdout, filename)

    # -------------------------- observability -------------------------- #

    async def get_logs(self, sandbox_id: str, tail_lines: int = 0) -> str:
        """Container output; ``tail_lines`` <= 0 returns everything."""
        kwargs = {"container": CONTAINER_NAME}
        if tail_lines > 0:
            kwargs["tail_lines"] = tail_lines
        try:
            return await self._run_in_thread(
                self._core_api.read_namespaced_pod_log,
                name=pod_name_for(sandbox_id),
                namespace=self._namespace,
                **kwargs,
            )
        except PLATFORM_ERRORS as e:
            raise self._wrap_error(e, "get logs", sandbox_id) from e

    async def get_events(self, sandbox_id: str) -> List[str]:
        """Pod events as ``[type] reason: message``, in API order."""
        try:
            events = await self._run_in_thread(
                self._core_api.list_namespaced_event,
                namespace=self._namespace,
                field_selector=f"involvedObject.name={pod_name_for(sandbox_id)}",
            )
        except PLATFORM_ERRORS as e:
            raise self._wrap_error(e, "get events", sandbox_id) from e
        return [f"[{ev.type}] {ev.reason}: {ev.message}" for ev in events.items or []]
