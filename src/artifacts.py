"""Filesystem artifacts the bootstrap creates or verifies.

Artifacts are inspected before anything is written and never modified once
they exist. Creation is atomic: the object is built under a hidden
temporary name next to its target, given its final mode and owner, then
moved into place. An interrupted run therefore never leaves an artifact
with the wrong permissions at its target path.
"""

import grp
import logging
import os
import pwd
import shutil
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from errors import PermissionDrift

logger = logging.getLogger(__name__)

DIRECTORY = 'directory'
CERTIFICATE = 'certificate'
PRIVATE_KEY = 'private_key'
SERVICE_UNIT = 'service_unit'
LOG_ROUTER_CONFIG = 'log_router_config'
LOG_ROTATION_CONFIG = 'log_rotation_config'

ARTIFACT_KINDS = (DIRECTORY, CERTIFICATE, PRIVATE_KEY, SERVICE_UNIT,
                  LOG_ROUTER_CONFIG, LOG_ROTATION_CONFIG)

# Bits a private key must never grant
KEY_FORBIDDEN_BITS = 0o077


@dataclass(frozen=True)
class Artifact:
    """A filesystem object with a required mode and owner."""
    kind: str
    path: Path
    mode: int
    owner: str
    group: str

    def __post_init__(self):
        if self.kind not in ARTIFACT_KINDS:
            raise ValueError(f"Unknown artifact kind: {self.kind}")

    @property
    def is_directory(self) -> bool:
        return self.kind == DIRECTORY

    def mode_ok(self, actual: int) -> bool:
        """Keys may be stricter than required; everything else must match."""
        if self.kind == PRIVATE_KEY:
            return actual & KEY_FORBIDDEN_BITS == 0
        return actual == self.mode

    def exists(self) -> bool:
        return os.path.lexists(self.path)

    def verify(self) -> None:
        """Verify an existing artifact's type, mode and ownership.

        Raises:
            PermissionDrift: If any of them differs from what is required
        """
        st = os.lstat(self.path)
        if stat.S_ISLNK(st.st_mode):
            raise PermissionDrift(self.path, "is a symlink, expected a regular object")
        if self.is_directory and not stat.S_ISDIR(st.st_mode):
            raise PermissionDrift(self.path, "exists but is not a directory")
        if not self.is_directory and not stat.S_ISREG(st.st_mode):
            raise PermissionDrift(self.path, "exists but is not a regular file")

        mode = stat.S_IMODE(st.st_mode)
        if not self.mode_ok(mode):
            if self.kind == PRIVATE_KEY:
                raise PermissionDrift(
                    self.path, f"mode {mode:04o} is readable by group or others (expected {self.mode:04o})"
                )
            raise PermissionDrift(self.path, f"mode {mode:04o}, expected {self.mode:04o}")

        owner = _user_name(st.st_uid)
        group = _group_name(st.st_gid)
        if owner != self.owner or group != self.group:
            raise PermissionDrift(
                self.path, f"owned by {owner}:{group}, expected {self.owner}:{self.group}"
            )

    def inspect(self) -> bool:
        """Return True if present and correct, False if absent.

        Raises:
            PermissionDrift: If present but wrong
        """
        if not self.exists():
            return False
        self.verify()
        return True

    def apply_ownership(self, path: Path) -> None:
        """Set this artifact's mode and owner on path (a staging copy)."""
        os.chmod(path, self.mode)
        os.chown(path, resolve_uid(self.owner), resolve_gid(self.group))


def _user_name(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


def _group_name(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return str(gid)


def resolve_uid(name: str) -> int:
    return pwd.getpwnam(name).pw_uid


def resolve_gid(name: str) -> int:
    return grp.getgrnam(name).gr_gid


def create_directory(artifact: Artifact) -> None:
    """Create a directory artifact atomically.

    Missing parents are created with default permissions; they are not
    artifacts themselves.

    Raises:
        FileExistsError: If something appeared at the target path
        OSError: On any other filesystem error
    """
    parent = artifact.path.parent
    parent.mkdir(parents=True, exist_ok=True)

    staging = Path(tempfile.mkdtemp(prefix=f'.{artifact.path.name}.', dir=parent))
    try:
        artifact.apply_ownership(staging)
        # rename() would silently replace an empty directory
        if os.path.lexists(artifact.path):
            raise FileExistsError(f"{artifact.path} appeared during provisioning")
        os.rename(staging, artifact.path)
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        raise
    logger.debug(f"Created directory {artifact.path} ({artifact.mode:04o} {artifact.owner}:{artifact.group})")


def write_new_file(artifact: Artifact, contents: str) -> None:
    """Write a file artifact atomically without ever replacing an existing file.

    The contents go to a staging file in the same directory, which is then
    hard-linked to the target name (fails if the target exists).

    Raises:
        FileExistsError: If the target already exists
        OSError: On any other filesystem error
    """
    parent = artifact.path.parent
    parent.mkdir(parents=True, exist_ok=True)

    fd, staging_name = tempfile.mkstemp(prefix=f'.{artifact.path.name}.', dir=parent)
    staging = Path(staging_name)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(contents)
            f.flush()
            os.fsync(f.fileno())
        artifact.apply_ownership(staging)
        os.link(staging, artifact.path)
    finally:
        staging.unlink(missing_ok=True)
    logger.debug(f"Wrote {artifact.path} ({artifact.mode:04o} {artifact.owner}:{artifact.group})")


def read_text(artifact: Artifact) -> Optional[str]:
    """Return the artifact's contents, or None if it does not exist."""
    try:
        return artifact.path.read_text(encoding='utf-8')
    except FileNotFoundError:
        return None
