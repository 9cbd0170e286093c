from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from kubernetes import client  # type: ignore

from ..constants import ANNOTATION_CREATED_AT, ANNOTATION_TTL, LABEL_SANDBOX_ID
from ..schema.sandbox import Sandbox, SandboxStatus, ZERO_TIME

POD_PHASE_TO_STATUS = {
    "Pending": SandboxStatus.PENDING,
    "Running": SandboxStatus.RUNNING,
    "Succeeded": SandboxStatus.SUCCEEDED,
    "Failed": SandboxStatus.FAILED,
}


def parse_created_at(annotations: Optional[Mapping[str, str]]) -> Optional[datetime]:
    """
    Parse the RFC3339 created-at annotation written at pod creation, e.g.:
    annotations["liteboxd/created-at"] = "2024-05-01T12:00:00Z"
    """
    value = (annotations or {}).get(ANNOTATION_CREATED_AT)
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        # An offset near year 1 or 9999 can push the UTC value out of range
        return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        return None


def parse_ttl(annotations: Optional[Mapping[str, str]]) -> Optional[int]:
    value = (annotations or {}).get(ANNOTATION_TTL)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def add_ttl(created_at: datetime, ttl: int) -> Optional[datetime]:
    try:
        return created_at + timedelta(seconds=ttl)
    except OverflowError:
        return None


def pod_expires_at(pod: client.V1Pod) -> Optional[datetime]:
    """Expiry from the pod annotations, or None when it cannot be determined."""
    annotations = pod.metadata.annotations if pod.metadata else None
    created_at = parse_created_at(annotations)
    ttl = parse_ttl(annotations)
    if created_at is None or ttl is None:
        return None
    return add_ttl(created_at, ttl)


def phase_to_status(phase: Optional[str]) -> SandboxStatus:
    return POD_PHASE_TO_STATUS.get(phase or "", SandboxStatus.UNKNOWN)


def pod_to_sandbox(pod: client.V1Pod) -> Sandbox:
    """Translate a pod into a Sandbox. Never raises on bad annotations.

    Malformed or missing created-at/ttl yield ZERO_TIME and 0 so that broken
    pods still show up in listings.
    """
    metadata = pod.metadata or client.V1ObjectMeta()
    labels = metadata.labels or {}
    annotations = metadata.annotations or {}

    created_at = parse_created_at(annotations) or ZERO_TIME
    ttl = parse_ttl(annotations) or 0

    image = ""
    cpu = ""
    memory = ""
    env: dict[str, str] = {}
    containers = pod.spec.containers if pod.spec and pod.spec.containers else []
    if containers:
        main = containers[0]
        image = main.image or ""
        limits = (main.resources.limits if main.resources else None) or {}
        cpu = str(limits.get("cpu", ""))
        memory = str(limits.get("memory", ""))
        env = {e.name: e.value or "" for e in main.env or [] if e.value_from is None}

    return Sandbox(
        id=labels.get(LABEL_SANDBOX_ID, ""),
        image=image,
        cpu=cpu,
        memory=memory,
        ttl=ttl,
        env=env,
        status=phase_to_status(pod.status.phase if pod.status else None),
        created_at=created_at,
        expires_at=add_ttl(created_at, ttl) or created_at,
    )
