from .client import KubernetesClient, ExecStreamOutput, exit_code_from_status
from .models import PodCreateOptions, format_rfc3339
from .archive import create_single_file_archive, extract_file_from_archive

__all__ = [
    "KubernetesClient",
    "ExecStreamOutput",
    "exit_code_from_status",
    "PodCreateOptions",
    "format_rfc3339",
    "create_single_file_archive",
    "extract_file_from_archive",
]
