"""
BlobStore -- opaque storage for reference (requisites) files.

Responsibility:
    Defines the interface the workflow and the batch tasks consume, the pure
    URL-to-path resolution shared by every adapter, and a local filesystem
    adapter used by the command-line entry point.

Architecture position:
    Kernel > Services -- I/O boundary.  Domain code never touches files.

Failure modes:
    - BlobNotFoundError when copying from a path that does not exist.
    - BlobStoreError when the filesystem refuses a copy.
    - ``delete`` of a missing path is a no-op.
"""

from __future__ import annotations

import shutil
from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable
from uuid import uuid4

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from payment_kernel.exceptions import BlobNotFoundError, BlobStoreError
from payment_kernel.logging_config import get_logger

logger = get_logger("services.blob_store")

REQUISITES_DIRECTORY = "requisites"


@runtime_checkable
class BlobStore(Protocol):
    """Storage interface keyed by relative paths such as ``requisites/x.pdf``."""

    def exists(self, path: str) -> bool: ...

    def copy(self, source: str, destination: str) -> None: ...

    def delete(self, path: str) -> None: ...

    def url_of(self, path: str) -> str: ...

    def path_from_url(self, url: str | None) -> str | None: ...


def resolve_path(url: str | None, base_url: str) -> str | None:
    """
    Storage path encoded in a public URL, or None when it cannot be resolved.

    The query string is dropped, the URL must start with ``base_url`` (a
    trailing slash on the base is ignored), and leading slashes of the
    remainder are stripped.  An empty remainder resolves to None.
    """
    if not url:
        return None
    prefix = base_url.rstrip("/")
    path = url.split("?", 1)[0]
    if not path.startswith(prefix):
        return None
    path = path[len(prefix):].lstrip("/")
    return path or None


def requisites_copy_path(source: str) -> str:
    """Fresh destination path for a copy of ``source`` under the requisites folder."""
    extension = PurePosixPath(source).suffix.lstrip(".") or "bin"
    return f"{REQUISITES_DIRECTORY}/{uuid4()}.{extension}"


class LocalBlobStore:
    """
    BlobStore backed by a directory on the local filesystem.

    Paths are relative to ``root``; URLs are ``base_url`` + ``/`` + path.
    """

    def __init__(self, root: Path | str, base_url: str):
        self._root = Path(root)
        self._base_url = base_url.rstrip("/")

    def _absolute(self, path: str) -> Path:
        candidate = (self._root / path).resolve()
        if self._root.resolve() not in candidate.parents:
            raise BlobStoreError(path, "path escapes the storage root")
        return candidate

    def exists(self, path: str) -> bool:
        return self._absolute(path).is_file()

    def copy(self, source: str, destination: str) -> None:
        src = self._absolute(source)
        if not src.is_file():
            raise BlobNotFoundError(source)
        dst = self._absolute(destination)
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(src, dst)
        except OSError as exc:
            raise BlobStoreError(destination, str(exc)) from exc
        logger.debug("blob_copied", extra={"source": source, "destination": destination})

    def delete(self, path: str) -> None:
        target = self._absolute(path)
        if target.is_file():
            target.unlink()
            logger.debug("blob_deleted", extra={"path": path})

    def url_of(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def path_from_url(self, url: str | None) -> str | None:
        return resolve_path(url, self._base_url)


# =============================================================================
# Deferred deletion
# =============================================================================

_PENDING_KEY = "payment_kernel.pending_blob_deletes"
_COMMITTED_KEY = "payment_kernel.transaction_committed"


def delete_after_commit(session: Session, store: BlobStore, path: str) -> None:
    """
    Delete ``path`` from ``store`` once the session's outermost transaction
    commits.

    The deletion belongs to the innermost transaction open when it is
    registered.  Releasing a SAVEPOINT hands it to the enclosing transaction;
    rolling back a SAVEPOINT or the outer transaction discards it, so a
    failed edit never loses the file it was about to replace.
    """
    pending = session.info.get(_PENDING_KEY)
    if pending is None:
        pending = session.info[_PENDING_KEY] = []
        event.listen(session, "after_commit", _mark_committed)
        event.listen(session, "after_transaction_end", _settle_pending_deletes)
    owner = session.get_nested_transaction() or session.get_transaction()
    pending.append([owner, store, path])


def _mark_committed(session: Session) -> None:
    session.info[_COMMITTED_KEY] = True


def _settle_pending_deletes(session: Session, transaction: SessionTransaction) -> None:
    committed = session.info.pop(_COMMITTED_KEY, False)
    pending = session.info.get(_PENDING_KEY)
    if not pending:
        return

    is_root = transaction.parent is None
    mine = [
        entry for entry in pending
        if entry[0] is transaction or (is_root and entry[0] is None)
    ]
    if not mine:
        return

    if not committed:
        logger.debug("deferred_blob_deletes_discarded", extra={"count": len(mine)})
        pending[:] = [entry for entry in pending if entry not in mine]
        return

    if not is_root:
        for entry in mine:
            entry[0] = transaction.parent
        return

    pending[:] = [entry for entry in pending if entry not in mine]
    for _, store, path in mine:
        try:
            store.delete(path)
        except BlobStoreError:
            logger.warning("deferred_blob_delete_failed", extra={"path": path}, exc_info=True)
