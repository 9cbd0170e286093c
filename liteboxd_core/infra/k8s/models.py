from datetime import datetime, timezone
from typing import Dict

from kubernetes import client  # type: ignore
from pydantic import BaseModel, Field

from ...constants import (
    LABEL_APP,
    LABEL_APP_VALUE,
    LABEL_SANDBOX_ID,
    ANNOTATION_TTL,
    ANNOTATION_CREATED_AT,
    CONTAINER_NAME,
    WORKSPACE_VOLUME_NAME,
    TOLERATED_NODE_TAINTS,
    pod_name_for,
)

RFC3339_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def format_rfc3339(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(RFC3339_FORMAT)


class PodCreateOptions(BaseModel):
    """Everything needed to render the pod that backs one sandbox.

    Empty cpu/memory strings are replaced by the configured defaults before
    rendering.
    """

    sandbox_id: str
    image: str
    cpu: str
    memory: str
    ttl: int
    env: Dict[str, str] = Field(default_factory=dict)

    # Platform-wide settings, filled from CoreConfig by the client
    namespace: str
    request_cpu: str
    request_memory: str
    run_as_user: int
    workspace_path: str

    @property
    def pod_name(self) -> str:
        return pod_name_for(self.sandbox_id)

    def to_pod(self, created_at: datetime) -> client.V1Pod:
        """Render the V1Pod manifest.

        The ttl and created-at annotations are the only record of expiry.
        """
        container = client.V1Container(
            name=CONTAINER_NAME,
            image=self.image,
            # Idle forever; every exec session is multiplexed into this container
            command=["sleep", "infinity"],
            env=[
                client.V1EnvVar(name=k, value=v) for k, v in sorted(self.env.items())
            ]
            or None,
            resources=client.V1ResourceRequirements(
                limits={"cpu": self.cpu, "memory": self.memory},
                requests={"cpu": self.request_cpu, "memory": self.request_memory},
            ),
            security_context=client.V1SecurityContext(
                allow_privilege_escalation=False,
                run_as_non_root=True,
                run_as_user=self.run_as_user,
            ),
            volume_mounts=[
                client.V1VolumeMount(
                    name=WORKSPACE_VOLUME_NAME, mount_path=self.workspace_path
                )
            ],
        )

        spec = client.V1PodSpec(
            restart_policy="Never",
            tolerations=[
                client.V1Toleration(key=taint, operator="Exists")
                for taint in TOLERATED_NODE_TAINTS
            ],
            security_context=client.V1PodSecurityContext(
                seccomp_profile=client.V1SeccompProfile(type="RuntimeDefault"),
            ),
            containers=[container],
            volumes=[
                client.V1Volume(
                    name=WORKSPACE_VOLUME_NAME,
                    empty_dir=client.V1EmptyDirVolumeSource(),
                )
            ],
        )

        return client.V1Pod(
            api_version="v1",
            kind="Pod",
            metadata=client.V1ObjectMeta(
                name=self.pod_name,
                namespace=self.namespace,
                labels={
                    LABEL_APP: LABEL_APP_VALUE,
                    LABEL_SANDBOX_ID: self.sandbox_id,
                },
                annotations={
                    ANNOTATION_TTL: str(self.ttl),
                    ANNOTATION_CREATED_AT: format_rfc3339(created_at),
                },
            ),
            spec=spec,
        )
