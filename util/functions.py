# util/functions.py
import errno
import logging
import os
import shutil
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def remove_file(path: PathLike) -> bool:
    """
    Best-effort unlink. Returns True when a file was removed.
    A missing file is not an error; other failures are logged and swallowed
    because callers only use this on cleanup paths.
    """
    try:
        os.unlink(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.error("cleanup.file.error path=%s err=%s", path, type(e).__name__)
        return False


def remove_tree(path: PathLike) -> bool:
    """
    Best-effort recursive delete. Re-running on an already removed directory is a no-op.
    """
    p = Path(path)
    if not p.exists() and not p.is_symlink():
        return False
    try:
        if p.is_symlink() or p.is_file():
            p.unlink()
        else:
            shutil.rmtree(p)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.error("cleanup.tree.error path=%s err=%s", path, type(e).__name__)
        return False


def move_file(src: PathLike, dst: PathLike) -> None:
    """
    Atomic rename when src and dst share a volume, copy+unlink otherwise.
    """
    try:
        os.replace(src, dst)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        shutil.move(os.fspath(src), os.fspath(dst))


def dir_size(path: PathLike) -> int:
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            fp = os.path.join(root, name)
            try:
                if not os.path.islink(fp):
                    total += os.path.getsize(fp)
            except OSError:
                continue
    return total
