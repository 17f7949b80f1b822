"""Tar archive helpers for packaged modules."""

import os
import tarfile
from pathlib import Path
from typing import List, Union

from ..constants import TAR_EXT, TGZ_EXT
from .fs import is_within


PathLike = Union[str, Path]


def is_archive(path: PathLike) -> bool:
    """True for ``.tar`` and ``.tgz`` file names."""
    return str(path).endswith((TAR_EXT, TGZ_EXT))


def find_archives(directory: PathLike) -> List[Path]:
    """List the tar/tgz files directly inside ``directory``."""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if p.is_file() and is_archive(p.name))


def extract_archive(archive_path: PathLike, target_dir: PathLike) -> Path:
    """Extract a tar or gzipped tar into ``target_dir``.

    Args:
        archive_path: Path to the ``.tar`` or ``.tgz`` file
        target_dir: Directory to extract into (created if missing)

    Returns:
        Path: The target directory

    Raises:
        ValueError: If the archive is unreadable or has members escaping the target
    """
    archive_path = Path(archive_path)
    target_dir = Path(target_dir)
    target_dir.mkdir(parents=True, exist_ok=True)

    mode = "r:gz" if str(archive_path).endswith(TGZ_EXT) else "r:*"
    try:
        with tarfile.open(archive_path, mode) as tar:
            for member in tar.getmembers():
                member_path = target_dir / member.name
                if not is_within(member_path, target_dir):
                    raise ValueError(f"Archive member '{member.name}' escapes '{target_dir}'")
                if member.issym() or member.islnk():
                    raise ValueError(f"Archive member '{member.name}' is a link, which is not supported")
            if hasattr(tarfile, "data_filter"):
                tar.extractall(target_dir, filter="data")
            else:
                tar.extractall(target_dir)
    except tarfile.TarError as e:
        raise ValueError(f"Failed to extract '{archive_path}': {e}")

    return target_dir


def create_archive(source_dir: PathLike, archive_path: PathLike) -> Path:
    """Pack the contents of ``source_dir`` into a tar (or tgz) at ``archive_path``."""
    source_dir = Path(source_dir)
    archive_path = Path(archive_path)
    archive_path.parent.mkdir(parents=True, exist_ok=True)

    mode = "w:gz" if str(archive_path).endswith(TGZ_EXT) else "w"
    with tarfile.open(archive_path, mode) as tar:
        for entry in sorted(os.listdir(source_dir)):
            if entry == ".git" or (source_dir / entry).resolve() == archive_path.resolve():
                continue
            tar.add(source_dir / entry, arcname=entry)

    return archive_path
