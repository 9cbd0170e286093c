"""
Shared test fixtures.

The Kubernetes API is replaced by an in-memory ``FakeCoreV1Api`` and the exec
websocket by ``FakeWSClient``. ``FakePodRuntime`` interprets the handful of
commands the core sends (tar pack/unpack, ``sh -c exit N``, echo, sleep) with
Python's ``tarfile``, so file transfers really round-trip through archives.
"""

import io
import json
import posixpath
import tarfile
import threading
import time
from types import SimpleNamespace
from typing import Callable, Optional
from unittest.mock import patch

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from liteboxd_core.constants import LABEL_APP, LABEL_APP_VALUE
from liteboxd_core.infra.k8s.client import KubernetesClient
from liteboxd_core.schema.config import CoreConfig
from liteboxd_core.service.sandbox import SandboxService

STDOUT_CHANNEL = 1
STDERR_CHANNEL = 2
ERROR_CHANNEL = 3

SUCCESS_STATUS = {"metadata": {}, "status": "Success"}


def exit_status(code: int) -> dict:
    return {
        "metadata": {},
        "status": "Failure",
        "message": f"command terminated with non-zero exit code: exit code {code}",
        "reason": "NonZeroExitCode",
        "details": {"causes": [{"reason": "ExitCode", "message": str(code)}]},
    }


class FakeCoreV1Api:
    """Just enough of CoreV1Api for the sandbox client."""

    def __init__(self):
        self.namespaces: set[str] = set()
        self.pods: dict[str, client.V1Pod] = {}
        self.logs: dict[str, str] = {}
        self.events: dict[str, list[tuple[str, str, str]]] = {}
        # name of API method -> exception raised on its next call
        self.fail_next: dict[str, Exception] = {}
        self.calls: list[tuple[str, dict]] = []

    def _record(self, method: str, **kwargs):
        self.calls.append((method, kwargs))
        error = self.fail_next.pop(method, None)
        if error is not None:
            raise error

    def read_namespace(self, name):
        self._record("read_namespace", name=name)
        if name not in self.namespaces:
            raise ApiException(status=404, reason="Not Found")
        return client.V1Namespace(metadata=client.V1ObjectMeta(name=name))

    def create_namespace(self, body):
        self._record("create_namespace", body=body)
        if body.metadata.name in self.namespaces:
            raise ApiException(status=409, reason="AlreadyExists")
        self.namespaces.add(body.metadata.name)
        return body

    def create_namespaced_pod(self, namespace, body):
        self._record("create_namespaced_pod", namespace=namespace, body=body)
        name = body.metadata.name
        if name in self.pods:
            raise ApiException(status=409, reason="AlreadyExists")
        body.status = client.V1PodStatus(phase="Pending")
        self.pods[name] = body
        return body

    def read_namespaced_pod(self, name, namespace):
        self._record("read_namespaced_pod", name=name, namespace=namespace)
        if name not in self.pods:
            raise ApiException(status=404, reason="Not Found")
        return self.pods[name]

    def list_namespaced_pod(self, namespace, label_selector=None):
        self._record(
            "list_namespaced_pod", namespace=namespace, label_selector=label_selector
        )
        items = [
            pod
            for pod in self.pods.values()
            if (pod.metadata.labels or {}).get(LABEL_APP) == LABEL_APP_VALUE
        ]
        return client.V1PodList(items=items)

    def delete_namespaced_pod(self, name, namespace):
        self._record("delete_namespaced_pod", name=name, namespace=namespace)
        if name not in self.pods:
            raise ApiException(status=404, reason="Not Found")
        del self.pods[name]

    def read_namespaced_pod_log(self, name, namespace, container, tail_lines=None):
        self._record(
            "read_namespaced_pod_log",
            name=name,
            namespace=namespace,
            container=container,
            tail_lines=tail_lines,
        )
        if name not in self.pods:
            raise ApiException(status=404, reason="Not Found")
        lines = self.logs.get(name, "").splitlines(keepends=True)
        if tail_lines is not None:
            lines = lines[-tail_lines:]
        return "".join(lines)

    def list_namespaced_event(self, namespace, field_selector=None):
        self._record(
            "list_namespaced_event", namespace=namespace, field_selector=field_selector
        )
        name = (field_selector or "").removeprefix("involvedObject.name=")
        return SimpleNamespace(
            items=[
                SimpleNamespace(type=t, reason=r, message=m)
                for t, r, m in self.events.get(name, [])
            ]
        )

    def connect_get_namespaced_pod_exec(self, *args, **kwargs):
        raise AssertionError("exec must go through kubernetes.stream")


class FakeWSClient:
    """Mimics kubernetes.stream.ws_client.WSClient in binary mode."""

    def __init__(self, handler: Callable[[bytes], tuple[bytes, bytes, Optional[dict]]]):
        self._handler = handler
        self._open = True
        self._channels: dict[int, bytes] = {}
        self.stdin = b""
        self.closed = False
        self.hang = False

    def write_stdin(self, data):
        self.stdin += data

    def is_open(self):
        return self._open

    def update(self, timeout=0):
        if not self._open:
            return
        if self.hang:
            time.sleep(timeout)
            return
        stdout, stderr, status = self._handler(self.stdin)
        if stdout:
            self._channels[STDOUT_CHANNEL] = stdout
        if stderr:
            self._channels[STDERR_CHANNEL] = stderr
        if status is not None:
            self._channels[ERROR_CHANNEL] = json.dumps(status).encode()
        self._open = False

    def peek_channel(self, channel, timeout=0):
        self.update(timeout=timeout)
        return self._channels.get(channel, b"")

    def read_channel(self, channel, timeout=0):
        data = self.peek_channel(channel, timeout)
        self._channels.pop(channel, None)
        return data

    def peek_stdout(self, timeout=0):
        return self._channels.get(STDOUT_CHANNEL, b"")

    def peek_stderr(self, timeout=0):
        return self._channels.get(STDERR_CHANNEL, b"")

    def read_stdout(self, timeout=None):
        return self.read_channel(STDOUT_CHANNEL)

    def read_stderr(self, timeout=None):
        return self.read_channel(STDERR_CHANNEL)

    def close(self, **kwargs):
        self._open = False
        self.closed = True


class FakePodRuntime:
    """Interprets exec commands against an in-memory filesystem per pod."""

    def __init__(self):
        self.files: dict[tuple[str, str], bytes] = {}
        self.sessions: list[FakeWSClient] = []
        self.stream_kwargs: list[dict] = []
        self.thread_names: list[str] = []
        self.fail_stream: Optional[Exception] = None
        # Entry-name prefix the fake `tar -c` emits, like GNU tar with `-C dir .`
        self.tar_entry_prefix = "./"

    def stream(self, func, name, namespace, **kwargs):
        self.stream_kwargs.append(kwargs)
        self.thread_names.append(threading.current_thread().name)
        if self.fail_stream is not None:
            raise self.fail_stream
        command = kwargs["command"]
        ws = FakeWSClient(lambda stdin: self._run(name, command, stdin))
        if command and command[0] == "sleep":
            ws.hang = True
        self.sessions.append(ws)
        return ws

    def _run(self, pod_name, command, stdin):
        if command[:2] == ["sh", "-c"] and "tar -xf" in command[2]:
            size, dest_dir = int(command[3]), command[4]
            with tarfile.open(fileobj=io.BytesIO(stdin[:size]), mode="r:") as tar:
                for member in tar:
                    data = tar.extractfile(member).read()
                    path = posixpath.normpath(posixpath.join(dest_dir, member.name))
                    self.files[(pod_name, path)] = data
            return b"", b"", SUCCESS_STATUS
        if command[:2] == ["sh", "-c"] and command[2].startswith("exit "):
            code = int(command[2].split()[1])
            return b"", b"", SUCCESS_STATUS if code == 0 else exit_status(code)
        if command[0] == "tar" and command[1] == "-cf":
            src_dir, filename = command[4], command[5]
            path = posixpath.normpath(posixpath.join(src_dir, filename))
            if (pod_name, path) not in self.files:
                err = f"tar: {filename}: Cannot stat: No such file or directory\n"
                return b"", err.encode(), exit_status(2)
            content = self.files[(pod_name, path)]
            buf = io.BytesIO()
            with tarfile.open(fileobj=buf, mode="w") as tar:
                info = tarfile.TarInfo(name=f"{self.tar_entry_prefix}{filename}")
                info.size = len(content)
                tar.addfile(info, io.BytesIO(content))
            return buf.getvalue(), b"", SUCCESS_STATUS
        if command[0] == "echo":
            return (" ".join(command[1:]) + "\n").encode(), b"", SUCCESS_STATUS
        return (
            b"",
            b"",
            {
                "metadata": {},
                "status": "Failure",
                "message": f'exec: "{command[0]}": executable file not found in $PATH',
                "reason": "InternalError",
            },
        )


@pytest.fixture
def core_config() -> CoreConfig:
    return CoreConfig(
        sandbox_exec_poll_seconds=0.01,
        sandbox_reaper_interval_seconds=0.05,
    )


@pytest.fixture
def fake_core_api() -> FakeCoreV1Api:
    api = FakeCoreV1Api()
    api.namespaces.add("liteboxd")
    return api


@pytest.fixture
def fake_runtime():
    runtime = FakePodRuntime()
    with patch("liteboxd_core.infra.k8s.client.k8s_stream", side_effect=runtime.stream):
        yield runtime


@pytest.fixture
def k8s_client(fake_core_api, fake_runtime, core_config):
    k8s = KubernetesClient(fake_core_api, core_config)
    yield k8s
    k8s.close()


@pytest.fixture
async def sandbox_service(k8s_client, core_config):
    service = SandboxService(k8s_client, core_config)
    yield service
    await service.close()
