class SandboxError(Exception):
    """Base class for every failure surfaced by the sandbox core."""


class SandboxNotFound(SandboxError):
    def __init__(self, sandbox_id: str, detail: str = ""):
        self.sandbox_id = sandbox_id
        msg = f"Sandbox {sandbox_id} not found"
        super().__init__(f"{msg}: {detail}" if detail else msg)


class CreationError(SandboxError):
    """The platform rejected provisioning (bad image, quota, missing namespace...)."""


class SandboxAlreadyExists(CreationError):
    def __init__(self, sandbox_id: str):
        self.sandbox_id = sandbox_id
        super().__init__(f"Sandbox {sandbox_id} already exists")


class TransferError(SandboxError):
    """Archive build/extract or exec stream failure during upload/download."""


class NotFoundInArchive(SandboxError):
    def __init__(self, filename: str):
        self.filename = filename
        super().__init__(f"File {filename} not found in archive")


class SandboxTimeout(SandboxError):
    def __init__(self, sandbox_id: str, timeout_seconds: float):
        self.sandbox_id = sandbox_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Command in sandbox {sandbox_id} timed out after {timeout_seconds}s"
        )


class TransportError(SandboxError):
    """Generic connectivity or API failure talking to the orchestration platform."""
