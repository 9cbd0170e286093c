"""Single-entry, uncompressed tar archives used to move files over exec streams.

The whole payload is held in memory on both sides, which bounds the
transferable file size by the process memory.
"""

import io
import tarfile
import time

from ...schema.error import NotFoundInArchive, TransferError


def create_single_file_archive(filename: str, content: bytes) -> bytes:
    """Pack ``content`` as one regular file named ``filename`` (mode 0644)."""
    if not filename or "/" in filename:
        raise TransferError(f"Invalid archive entry name: {filename!r}")

    tar_stream = io.BytesIO()
    try:
        with tarfile.open(
            fileobj=tar_stream, mode="w", format=tarfile.GNU_FORMAT
        ) as tar:
            tarinfo = tarfile.TarInfo(name=filename)
            tarinfo.size = len(content)
            tarinfo.mode = 0o644
            tarinfo.mtime = int(time.time())
            tar.addfile(tarinfo, io.BytesIO(content))
    except (tarfile.TarError, OSError) as e:
        raise TransferError(f"Failed to build archive for {filename}: {e}") from e

    return tar_stream.getvalue()


def extract_file_from_archive(tar_data: bytes, filename: str) -> bytes:
    """Return the content of the regular-file entry named ``filename``.

    ``tar -C dir name`` may emit the entry as ``./name``; that prefix is
    ignored when matching.
    """
    try:
        with tarfile.open(fileobj=io.BytesIO(tar_data), mode="r:") as tar:
            for member in tar:
                if member.name.removeprefix("./") != filename:
                    continue
                if not member.isfile():
                    raise TransferError(f"Archive entry {member.name} is not a file")
                file_obj = tar.extractfile(member)
                if file_obj is None:
                    raise TransferError(f"Failed to read archive entry {member.name}")
                return file_obj.read()
    except tarfile.TarError as e:
        raise TransferError(f"Failed to read archive: {e}") from e

    raise NotFoundInArchive(filename)
