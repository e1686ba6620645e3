#!/usr/bin/env python3
"""Tests for provisioning steps and plan construction.

Tests verify:
1. Plan order and unique names
2. Directory step check/apply
3. Credential step states (absent, complete, partial)
4. Unit step install and reload-only resume
5. Log config step availability and conflicts
"""

import os
import sys
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest
from artifacts import Artifact, DIRECTORY, LOG_ROUTER_CONFIG, SERVICE_UNIT
from conftest import FakeServiceManager
from errors import (
    CredentialGenerationFailure,
    InvalidCredentials,
    LogIntegrationFailure,
    PermissionDrift,
    ProvisionError,
    ServiceRegistrationFailure,
)
from plan import ProvisionPlan, Step, build_plan
from steps import EnsureDirectoryStep, InstallLogConfigStep, LOG_ROUTER


def plan_step(config, service_manager, name):
    for step in build_plan(config, service_manager):
        if step.name == name:
            return step
    raise KeyError(name)


class TestBuildPlan:
    """Tests for build_plan()."""

    def test_step_order(self, bootstrap_config, service_manager):
        plan = build_plan(bootstrap_config, service_manager)
        assert plan.names == ['content_root', 'cert_dir', 'credentials',
                              'service_unit', 'log_router', 'log_rotation']
        assert len(plan) == 6

    def test_steps_follow_protocol(self, bootstrap_config, service_manager):
        for step in build_plan(bootstrap_config, service_manager):
            assert isinstance(step, Step)

    def test_duplicate_names_rejected(self, bootstrap_config, service_manager):
        step = plan_step(bootstrap_config, service_manager, 'content_root')
        with pytest.raises(ValueError):
            ProvisionPlan(steps=[step, step])

    def test_modes(self, bootstrap_config, service_manager):
        credentials = plan_step(bootstrap_config, service_manager, 'credentials')
        assert credentials.key.mode == 0o600
        assert credentials.cert.mode == 0o644
        assert credentials.domain_dir.mode == 0o700
        assert credentials.domain_dir.path == bootstrap_config.cert_dir / 'example.org'

    def test_system_files_owned_by_system_account(self, bootstrap_config, service_manager):
        config = replace(bootstrap_config, system_user='root', system_group='root')
        unit = plan_step(config, service_manager, 'service_unit')
        assert (unit.artifact.owner, unit.artifact.group) == ('root', 'root')


class TestEnsureDirectoryStep:
    """Tests for EnsureDirectoryStep."""

    def test_check_then_apply(self, bootstrap_config, host_env, service_manager):
        step = plan_step(bootstrap_config, service_manager, 'content_root')
        assert step.check(bootstrap_config, host_env).satisfied is False

        result = step.apply(bootstrap_config, host_env)

        assert '0755' in result.message
        assert step.check(bootstrap_config, host_env).satisfied is True

    def test_apply_error_wrapped(self, bootstrap_config, host_env, current_user, current_group):
        artifact = Artifact(DIRECTORY, bootstrap_config.content_root, 0o755, current_user, current_group)
        step = EnsureDirectoryStep('content_root', 'Ensure content root', artifact)
        with patch('steps.directory.create_directory', side_effect=PermissionError('denied')):
            with pytest.raises(ProvisionError) as exc_info:
                step.apply(bootstrap_config, host_env)
        assert 'denied' in str(exc_info.value)


class TestEnsureCredentialsStep:
    """Tests for EnsureCredentialsStep."""

    @pytest.fixture
    def step(self, bootstrap_config, service_manager):
        bootstrap_config.cert_dir.mkdir(parents=True)
        os.chmod(bootstrap_config.cert_dir, 0o700)
        return plan_step(bootstrap_config, service_manager, 'credentials')

    def test_absent(self, step, bootstrap_config, host_env):
        check = step.check(bootstrap_config, host_env)
        assert check.satisfied is False
        assert 'example.org' in check.message

    @pytest.mark.requires_openssl
    def test_generate_then_satisfied(self, step, bootstrap_config, host_env):
        result = step.apply(bootstrap_config, host_env)

        assert result.context_updates['cert_fingerprint'] in result.message
        assert step.check(bootstrap_config, host_env).satisfied is True
        # Only the domain directory, no staging left behind
        assert [p.name for p in bootstrap_config.cert_dir.iterdir()] == ['example.org']

    def test_empty_domain_dir(self, step, bootstrap_config, host_env):
        domain_dir = bootstrap_config.cert_dir / 'example.org'
        domain_dir.mkdir()
        os.chmod(domain_dir, 0o700)
        with pytest.raises(InvalidCredentials) as exc_info:
            step.check(bootstrap_config, host_env)
        assert 'no certificate or key file' in str(exc_info.value)

    def test_missing_cert(self, step, bootstrap_config, host_env):
        domain_dir = bootstrap_config.cert_dir / 'example.org'
        domain_dir.mkdir()
        os.chmod(domain_dir, 0o700)
        (domain_dir / 'key.rsa').write_text('key')
        with pytest.raises(InvalidCredentials) as exc_info:
            step.check(bootstrap_config, host_env)
        assert 'certificate file' in str(exc_info.value)

    def test_domain_dir_drift(self, step, bootstrap_config, host_env):
        domain_dir = bootstrap_config.cert_dir / 'example.org'
        domain_dir.mkdir()
        os.chmod(domain_dir, 0o755)
        with pytest.raises(PermissionDrift):
            step.check(bootstrap_config, host_env)

    @pytest.mark.requires_openssl
    def test_mismatched_pair(self, step, bootstrap_config, host_env):
        step.apply(bootstrap_config, host_env)
        other = replace(step, domain='other.example',
                        domain_dir=replace(step.domain_dir, path=bootstrap_config.cert_dir / 'other.example'),
                        key=replace(step.key, path=bootstrap_config.cert_dir / 'other.example' / 'key.rsa'),
                        cert=replace(step.cert, path=bootstrap_config.cert_dir / 'other.example' / 'cert.pem'))
        other.apply(bootstrap_config, host_env)
        # Swap in the other domain's key
        key = bootstrap_config.cert_dir / 'example.org' / 'key.rsa'
        key.unlink()
        os.link(bootstrap_config.cert_dir / 'other.example' / 'key.rsa', key)

        with pytest.raises(InvalidCredentials) as exc_info:
            step.check(bootstrap_config, host_env)
        assert 'do not belong together' in str(exc_info.value)

    def test_openssl_failure_cleans_staging(self, step, bootstrap_config, host_env):
        import subprocess
        error = subprocess.CalledProcessError(1, 'openssl', stderr=b'unable to write key')
        with patch('steps.credentials.generate_self_signed_cert', side_effect=error):
            with pytest.raises(CredentialGenerationFailure) as exc_info:
                step.apply(bootstrap_config, host_env)
        assert 'unable to write key' in str(exc_info.value)
        assert list(bootstrap_config.cert_dir.iterdir()) == []

    @pytest.mark.requires_openssl
    def test_unknown_owner_cleans_staging(self, step, bootstrap_config, host_env):
        with patch('artifacts.resolve_uid', side_effect=KeyError('gemini')):
            with pytest.raises(CredentialGenerationFailure) as exc_info:
                step.apply(bootstrap_config, host_env)
        assert 'Unknown owner' in str(exc_info.value)
        assert list(bootstrap_config.cert_dir.iterdir()) == []

    def test_interrupt_cleans_staging(self, step, bootstrap_config, host_env):
        with patch('steps.credentials.generate_self_signed_cert', side_effect=KeyboardInterrupt):
            with pytest.raises(KeyboardInterrupt):
                step.apply(bootstrap_config, host_env)
        assert list(bootstrap_config.cert_dir.iterdir()) == []

    def test_leftover_staging_detected(self, step, bootstrap_config, host_env):
        (bootstrap_config.cert_dir / '.example.org.abcd1234').mkdir()
        (bootstrap_config.cert_dir / '.other.example.abcd1234').mkdir()
        assert [p.name for p in step.leftover_staging()] == ['.example.org.abcd1234']
        assert step.check(bootstrap_config, host_env).satisfied is False

    def test_leftover_non_directory_rejected(self, step, bootstrap_config, host_env):
        stray = bootstrap_config.cert_dir / '.example.org.abcd1234'
        stray.write_text('not ours')
        with pytest.raises(InvalidCredentials):
            step.apply(bootstrap_config, host_env)
        assert stray.read_text() == 'not ours'

    def test_store_missing(self, bootstrap_config, host_env, service_manager):
        step = plan_step(bootstrap_config, service_manager, 'credentials')
        with pytest.raises(CredentialGenerationFailure):
            step.apply(bootstrap_config, host_env)


class TestInstallUnitStep:
    """Tests for InstallUnitStep."""

    @pytest.fixture
    def step(self, bootstrap_config, service_manager):
        return plan_step(bootstrap_config, service_manager, 'service_unit')

    def test_install_and_reload(self, step, bootstrap_config, host_env, service_manager):
        assert step.check(bootstrap_config, host_env).satisfied is False

        result = step.apply(bootstrap_config, host_env)

        assert result.message.startswith('Installed')
        assert service_manager.reloads == 1
        assert step.check(bootstrap_config, host_env).satisfied is True
        assert 'ExecStart=' in bootstrap_config.unit_path.read_text()

    def test_pending_reload_not_satisfied(self, bootstrap_config, host_env):
        manager = FakeServiceManager(fail_reload=True)
        step = plan_step(bootstrap_config, manager, 'service_unit')
        with pytest.raises(ServiceRegistrationFailure):
            step.apply(bootstrap_config, host_env)

        check = step.check(bootstrap_config, host_env)
        assert check.satisfied is False
        assert 'not reloaded' in check.message

    def test_install_failure(self, bootstrap_config, host_env):
        manager = FakeServiceManager(fail_install=True)
        step = plan_step(bootstrap_config, manager, 'service_unit')
        with pytest.raises(ServiceRegistrationFailure):
            step.apply(bootstrap_config, host_env)
        assert manager.reloads == 0

    def test_unit_name(self, step):
        assert step.unit_name == 'gemini.service'


class TestInstallLogConfigStep:
    """Tests for InstallLogConfigStep."""

    def test_unavailable(self, bootstrap_config, host_env, service_manager):
        step = plan_step(bootstrap_config, service_manager, 'log_router')
        check = step.check(bootstrap_config, replace(host_env, has_log_router=False))
        assert check.available is False
        assert 'rsyslog' in check.message

    def test_install(self, bootstrap_config, host_env, service_manager):
        step = plan_step(bootstrap_config, service_manager, 'log_rotation')
        step.apply(bootstrap_config, host_env)
        assert step.check(bootstrap_config, host_env).satisfied is True
        assert str(bootstrap_config.log_file) in bootstrap_config.log_rotation_path.read_text()

    def test_conflicting_contents(self, bootstrap_config, host_env, current_user, current_group):
        path = bootstrap_config.log_router_dir / 'gemini.conf'
        path.parent.mkdir(parents=True)
        path.write_text('other rule\n')
        os.chmod(path, 0o644)
        artifact = Artifact(LOG_ROUTER_CONFIG, path, 0o644, current_user, current_group)
        step = InstallLogConfigStep('log_router', 'Install rsyslog rule', LOG_ROUTER, artifact, 'our rule\n')

        with pytest.raises(LogIntegrationFailure) as exc_info:
            step.check(bootstrap_config, host_env)
        assert exc_info.value.fatal is False
        assert path.read_text() == 'other rule\n'

    def test_write_failure_non_fatal(self, bootstrap_config, host_env, service_manager):
        step = plan_step(bootstrap_config, service_manager, 'log_router')
        with patch('steps.log_config.write_new_file', side_effect=PermissionError('read-only')):
            with pytest.raises(LogIntegrationFailure):
                step.apply(bootstrap_config, host_env)

    def test_unknown_subsystem(self, bootstrap_config, host_env, current_user, current_group):
        artifact = Artifact(SERVICE_UNIT, bootstrap_config.unit_path, 0o644, current_user, current_group)
        step = InstallLogConfigStep('x', 'x', 'journald', artifact, '')
        with pytest.raises(ValueError):
            step.check(bootstrap_config, host_env)
