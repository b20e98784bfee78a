"""Short-lived keypair files for out-of-process signing.

A staged file is created owner-only from the first byte, handed to exactly
one external invocation and removed before control returns, whether the
body finished or raised.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import os
from pathlib import Path
import secrets
import tempfile
import time
from typing import Callable, Iterator, TypeVar

from .errors import StagingError

logger = logging.getLogger(__name__)

T = TypeVar("T")

STAGED_FILE_MODE = 0o600


def staged_path(label: str, directory: str | Path | None = None) -> Path:
    base = Path(directory) if directory is not None else Path(tempfile.gettempdir())
    return base / f".payctl-{label}-{time.time_ns()}-{secrets.token_hex(8)}.json"


def _open_exclusive(path: Path) -> int:
    flags = os.O_WRONLY | os.O_CREAT | os.O_EXCL | getattr(os, "O_NOFOLLOW", 0)
    return os.open(path, flags, STAGED_FILE_MODE)


def _write_and_close(fd: int, content: bytes) -> None:
    try:
        if hasattr(os, "fchmod"):
            os.fchmod(fd, STAGED_FILE_MODE)
        view = memoryview(content)
        while view:
            written = os.write(fd, view)
            view = view[written:]
    finally:
        os.close(fd)


def _remove(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        logger.warning("staged credential %s was already removed", path.name)
        return True
    except OSError as exc:
        logger.warning("could not remove staged credential %s: %s", path.name, exc)
        return False
    return True


@contextmanager
def staged_credential(
    secret: bytes,
    label: str = "credential",
    directory: str | Path | None = None,
) -> Iterator[Path]:
    path = staged_path(label, directory)
    # Nothing to clean up if the exclusive create itself fails.
    fd = _open_exclusive(path)
    failed = False
    try:
        _write_and_close(fd, secret)
        logger.debug("staged %s credential at %s", label, path.name)
        yield path
    except BaseException:
        failed = True
        raise
    finally:
        removed = _remove(path)
        # A cleanup failure is only raised when it cannot hide the body's error.
        if not removed and not failed:
            raise StagingError(f"staged credential {path} could not be removed; delete it manually")


def with_staged_credential(
    secret: bytes,
    body: Callable[[Path], T],
    label: str = "credential",
    directory: str | Path | None = None,
) -> T:
    with staged_credential(secret, label=label, directory=directory) as path:
        return body(path)
