"""Shared pytest fixtures for gemini-bootstrap tests."""

import grp
import os
import pwd
import shutil
import stat
import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from artifacts import write_new_file  # noqa: E402
from config import BootstrapConfig  # noqa: E402
from environment import HostEnvironment  # noqa: E402
from errors import ServiceRegistrationFailure  # noqa: E402


def pytest_collection_modifyitems(config, items):
    """Skip tests marked requires_openssl when openssl is not installed."""
    if shutil.which('openssl'):
        return
    skip_marker = pytest.mark.skip(reason="requires the openssl command")
    for item in items:
        if "requires_openssl" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture
def current_user():
    return pwd.getpwuid(os.getuid()).pw_name


@pytest.fixture
def current_group():
    return grp.getgrgid(os.getgid()).gr_name


@pytest.fixture
def host_root(tmp_path):
    """Directory standing in for the target host's filesystem root."""
    root = tmp_path / 'host'
    root.mkdir()
    return root


@pytest.fixture
def bootstrap_config(host_root, current_user, current_group):
    """Config with every path under host_root, owned by the test user.

    Uses 2048-bit keys to keep credential generation fast.
    """
    return BootstrapConfig(
        domain='example.org',
        user=current_user,
        group=current_group,
        system_user=current_user,
        system_group=current_group,
        content_root=host_root / 'srv/gemini/content',
        cert_dir=host_root / 'srv/gemini/.certificates',
        unit_dir=host_root / 'etc/systemd/system',
        log_router_dir=host_root / 'etc/rsyslog.d',
        log_rotation_dir=host_root / 'etc/logrotate.d',
        log_file=host_root / 'var/log/gemini.log',
        key_size=2048,
        cert_days=30,
    )


@pytest.fixture
def host_env():
    """Fully equipped host whose name matches the configured domain."""
    return HostEnvironment(
        hostname='example.org',
        fqdn='example.org',
        is_privileged=True,
        tools={'openssl': True, 'systemctl': True},
        has_service_manager=True,
        has_log_router=True,
        has_log_rotation=True,
    )


class FakeServiceManager:
    """In-memory stand-in for systemd.

    Installed units stay "pending" until reload_definitions() succeeds.
    """

    def __init__(self, fail_reload: bool = False, fail_install: bool = False):
        self.fail_reload = fail_reload
        self.fail_install = fail_install
        self.installed: list[Path] = []
        self.pending: set[str] = set()
        self.reloads = 0
        self.started: list[str] = []
        self.stopped: list[str] = []

    def install_unit(self, artifact, contents):
        if self.fail_install:
            raise ServiceRegistrationFailure(f"Failed to install {artifact.path}: disk full")
        write_new_file(artifact, contents)
        self.installed.append(artifact.path)
        self.pending.add(artifact.path.name)

    def reload_definitions(self):
        if self.fail_reload:
            raise ServiceRegistrationFailure("systemctl daemon-reload failed: Access denied")
        self.reloads += 1
        self.pending.clear()

    def needs_reload(self, unit_name):
        return unit_name in self.pending

    def start(self, unit_name):
        self.started.append(unit_name)

    def stop(self, unit_name):
        self.stopped.append(unit_name)


@pytest.fixture
def service_manager():
    return FakeServiceManager()


def snapshot(root: Path) -> dict:
    """Capture mode, ownership, mtime and contents of everything under root."""
    state = {}
    if not root.exists():
        return state
    for path in sorted(root.rglob('*')):
        st = os.lstat(path)
        content = path.read_bytes() if stat.S_ISREG(st.st_mode) else None
        state[str(path.relative_to(root))] = (
            stat.S_IMODE(st.st_mode), st.st_uid, st.st_gid, st.st_mtime_ns, content,
        )
    return state


@pytest.fixture
def fs_snapshot():
    return snapshot
