LABEL_APP = "app"
LABEL_APP_VALUE = "liteboxd"
LABEL_SANDBOX_ID = "sandbox-id"

ANNOTATION_TTL = "liteboxd/ttl"
ANNOTATION_CREATED_AT = "liteboxd/created-at"

POD_NAME_PREFIX = "sandbox-"
CONTAINER_NAME = "main"
WORKSPACE_VOLUME_NAME = "workspace"

# Taints that would otherwise evict or block short-lived sandboxes.
TOLERATED_NODE_TAINTS = (
    "node.kubernetes.io/disk-pressure",
    "node.kubernetes.io/memory-pressure",
    "node.kubernetes.io/pid-pressure",
)


def pod_name_for(sandbox_id: str) -> str:
    return f"{POD_NAME_PREFIX}{sandbox_id}"
