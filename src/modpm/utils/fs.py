"""Filesystem helpers: hashing and directory copies."""

import base64
import hashlib
import os
import shutil
from pathlib import Path
from typing import Iterable, Union


PathLike = Union[str, Path]

HASH_IGNORES = (".git",)


def short_hash(value: str, length: int = 16) -> str:
    """Short sha256 hex digest used to bucket cache directories."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:length]


def hash_dir(directory: PathLike, ignores: Iterable[str] = HASH_IGNORES) -> str:
    """Content checksum of every file below ``directory``.

    Files are hashed in sorted path order; anything inside an ignored
    directory (``.git`` by default) is skipped so two clones of one
    repository hash the same.

    Returns:
        str: base64 encoded sha256 digest
    """
    hasher = hashlib.sha256()
    root = Path(directory)
    ignores = set(ignores)

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in ignores)
        for filename in sorted(filenames):
            with open(os.path.join(dirpath, filename), "rb") as f:
                for chunk in iter(lambda: f.read(65536), b""):
                    hasher.update(chunk)

    return base64.b64encode(hasher.digest()).decode("ascii")


def dir_is_empty(path: PathLike) -> bool:
    """True if ``path`` does not exist or has no entries."""
    path = Path(path)
    if not path.exists():
        return True
    return not any(path.iterdir())


def copy_dir(src: PathLike, dst: PathLike, ignores: Iterable[str] = HASH_IGNORES) -> None:
    """Copy a directory tree, leaving out ignored entries and overwriting files."""
    shutil.copytree(src, dst, ignore=shutil.ignore_patterns(*ignores), dirs_exist_ok=True)


def move_dir(src: PathLike, dst: PathLike) -> None:
    """Move the contents of ``src`` into ``dst``, replacing ``dst`` if present."""
    dst = Path(dst)
    if dst.exists():
        shutil.rmtree(dst)
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(src), str(dst))


def is_within(path: PathLike, root: PathLike) -> bool:
    """True if ``path`` resolves to a location inside ``root``."""
    try:
        Path(path).resolve().relative_to(Path(root).resolve())
        return True
    except ValueError:
        return False
