"""Pre-flight validation checks for the bootstrap.

This module provides readiness checks that run before any provisioning
step, so a host that cannot be provisioned is rejected before anything is
written, with actionable error messages.
"""

import grp
import logging
import pwd
from typing import Optional

from config import BootstrapConfig
from environment import HostEnvironment
from errors import (
    HostnameMismatch,
    MissingAccount,
    MissingDependency,
    MissingPrivilege,
    PreflightError,
)

logger = logging.getLogger(__name__)

# Install hints for tools the bootstrap shells out to
_TOOL_HINTS = {
    'openssl': "Install: apt install openssl",
    'systemctl': "The bootstrap registers a systemd unit; systemd is required",
}


# -----------------------------------------------------------------------------
# Individual checks
# -----------------------------------------------------------------------------

def validate_privilege(env: HostEnvironment) -> list[PreflightError]:
    """Writing to system unit and log rule directories needs root."""
    if env.is_privileged:
        return []
    return [MissingPrivilege()]


def validate_tools(env: HostEnvironment) -> list[PreflightError]:
    """Validate every required executable resolves on PATH."""
    return [MissingDependency(tool, _TOOL_HINTS.get(tool, '')) for tool in env.missing_tools]


def validate_service_manager(env: HostEnvironment) -> list[PreflightError]:
    """Validate systemd is the running service manager."""
    if env.has_service_manager:
        return []
    return [MissingDependency('systemd', "No running systemd found (/run/systemd/system missing)")]


def _user_exists(name: str) -> bool:
    try:
        pwd.getpwnam(name)
        return True
    except KeyError:
        return False


def _group_exists(name: str) -> bool:
    try:
        grp.getgrnam(name)
        return True
    except KeyError:
        return False


def validate_accounts(config: BootstrapConfig) -> list[PreflightError]:
    """Validate the accounts artifacts will be owned by exist."""
    errors: list[PreflightError] = []
    for user in dict.fromkeys([config.user, config.system_user]):
        if not _user_exists(user):
            errors.append(MissingAccount(user, 'user'))
    for group in dict.fromkeys([config.group, config.system_group]):
        if not _group_exists(group):
            errors.append(MissingAccount(group, 'group'))
    return errors


def check_hostname(config: BootstrapConfig, env: HostEnvironment) -> Optional[HostnameMismatch]:
    """Compare the host's name with the certificate domain.

    Returns:
        HostnameMismatch warning, or None if they agree
    """
    if env.hostname_matches(config.domain):
        return None
    return HostnameMismatch(hostname=env.hostname, domain=config.domain, fqdn=env.fqdn)


# -----------------------------------------------------------------------------
# Combined Validation
# -----------------------------------------------------------------------------

def validate_readiness(config: BootstrapConfig, env: HostEnvironment) -> list[PreflightError]:
    """Run all preflight checks.

    Returns:
        Combined list of preflight errors (empty if the host is ready)
    """
    errors: list[PreflightError] = []
    errors.extend(validate_privilege(env))
    errors.extend(validate_tools(env))
    errors.extend(validate_service_manager(env))
    errors.extend(validate_accounts(config))
    return errors


def run_preflight_checks(config: BootstrapConfig, env: HostEnvironment) -> tuple[bool, dict]:
    """Run standalone preflight checks.

    Returns:
        (success, results) tuple where results maps category to
        {'passed': [...], 'failed': [...], 'warnings': [...]}
    """
    results: dict[str, dict[str, list[str]]] = {
        'privilege': {'passed': [], 'failed': [], 'warnings': []},
        'tools': {'passed': [], 'failed': [], 'warnings': []},
        'services': {'passed': [], 'failed': [], 'warnings': []},
        'accounts': {'passed': [], 'failed': [], 'warnings': []},
        'hostname': {'passed': [], 'failed': [], 'warnings': []},
    }

    if errors := validate_privilege(env):
        results['privilege']['failed'].extend(str(e) for e in errors)
    else:
        results['privilege']['passed'].append("Running as root")

    for tool, present in sorted(env.tools.items()):
        if present:
            results['tools']['passed'].append(f"{tool} found")
    results['tools']['failed'].extend(str(e) for e in validate_tools(env))

    if errors := validate_service_manager(env):
        results['services']['failed'].extend(str(e) for e in errors)
    else:
        results['services']['passed'].append("systemd running")
    if env.has_log_router:
        results['services']['passed'].append("rsyslog installed")
    else:
        results['services']['warnings'].append("rsyslog not installed; log routing will be skipped")
    if env.has_log_rotation:
        results['services']['passed'].append("logrotate installed")
    else:
        results['services']['warnings'].append("logrotate not installed; log rotation will be skipped")

    if errors := validate_accounts(config):
        results['accounts']['failed'].extend(str(e) for e in errors)
    else:
        results['accounts']['passed'].append(f"Service account {config.user}:{config.group} exists")

    if mismatch := check_hostname(config, env):
        results['hostname']['warnings'].append(str(mismatch))
    else:
        results['hostname']['passed'].append(f"Hostname matches {config.domain}")

    success = not any(category['failed'] for category in results.values())
    return success, results


def format_preflight_results(hostname: str, results: dict) -> str:
    """Format preflight check results for display."""
    lines = [f"\nPreflight checks for local host '{hostname}':\n"]

    category_names = {
        'privilege': 'Privilege',
        'tools': 'Required tools',
        'services': 'Service subsystems',
        'accounts': 'Accounts',
        'hostname': 'Hostname',
    }

    for key, name in category_names.items():
        category = results.get(key, {'passed': [], 'failed': [], 'warnings': []})
        if not any(category.values()):
            continue
        lines.append(f"{name}:")
        for item in category['passed']:
            lines.append(f"✓ {item}")
        for item in category.get('warnings', []):
            lines.append(f"! {item}")
        for item in category['failed']:
            # Handle multi-line errors
            first_line, *rest = item.split('\n')
            lines.append(f"✗ {first_line}")
            for line in rest:
                lines.append(f"  {line}")
        lines.append("")

    if all(not cat['failed'] for cat in results.values()):
        lines.append("All checks passed. Ready to provision.")
    else:
        lines.append("Some checks failed. Fix issues before provisioning.")

    return '\n'.join(lines)
