# tablesync/table/persist.py
from __future__ import annotations

import logging
import os
from pathlib import Path

from tablesync.exceptions import PersistError

log = logging.getLogger(__name__)


def table_path(store_dir: str | os.PathLike[str], group: str) -> Path:
    """
    <store_dir>/<group>. The group name must be a single path component.
    """
    name = group.strip()
    if (
        not name
        or name in (".", "..")
        or "/" in name
        or (os.sep != "/" and os.sep in name)
        or "\x00" in name
    ):
        raise PersistError(f"group name {group!r} cannot be used as a file name")
    return Path(store_dir) / name


def temp_path(path: Path) -> Path:
    """
    Hidden sibling qualified by our pid, so neither other groups nor
    concurrent runs share it.
    """
    return path.with_name(f".{path.name}.{os.getpid()}.tmp")


def read_previous(path: Path) -> str | None:
    """
    Previous table content, or None when there is none (or it is unreadable).
    """
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as e:
        log.warning("Cannot read previous table %s: %s", path, e)
        return None


def write_atomic(path: Path, content: str) -> None:
    """
    Write `content` to a temp file next to `path`, fsync it and rename it over
    `path`. The temp file never outlives a failed attempt.

    Raises PersistError on any write or rename failure.
    """
    tmp = temp_path(path)
    committed = False
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
        committed = True
    except OSError as e:
        raise PersistError(f"failed to write {path}: {e}") from e
    finally:
        if not committed:
            _discard(tmp)


def _discard(tmp: Path) -> None:
    try:
        tmp.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        log.warning("Cannot remove temporary file %s: %s", tmp, e)


__all__ = ["table_path", "temp_path", "read_previous", "write_atomic"]
