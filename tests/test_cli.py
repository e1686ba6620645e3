"""Tests for CLI module."""

import json
import sys
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import cli
from conftest import FakeServiceManager
from errors import EXIT_CONFIG, EXIT_OK, EXIT_PREFLIGHT


@pytest.fixture
def patched(bootstrap_config, host_env):
    """Run main() against the test config, host facts and fake systemd."""
    manager = FakeServiceManager()
    with patch('cli.load_config', return_value=bootstrap_config) as mock_load, \
            patch('cli.probe_host', return_value=host_env) as mock_probe, \
            patch('cli.SystemdServiceManager', return_value=manager):
        yield mock_load, mock_probe, manager


class TestParser:
    """Tests for argument parsing."""

    def test_defaults(self):
        args = cli.build_parser().parse_args([])
        assert args.skip == []
        assert args.dry_run is False
        assert args.config is None

    def test_repeatable_skip(self):
        args = cli.build_parser().parse_args(['-s', 'log_router', '--skip', 'log_rotation'])
        assert args.skip == ['log_router', 'log_rotation']

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.build_parser().parse_args(['--version'])
        assert exc_info.value.code == 0
        assert 'gemini-bootstrap' in capsys.readouterr().out


class TestMain:
    """Tests for main()."""

    def test_config_error(self, tmp_path, capsys):
        assert cli.main(['--config', str(tmp_path / 'missing.yaml')]) == EXIT_CONFIG
        assert 'Config file not found' in capsys.readouterr().err

    def test_domain_passed_to_loader(self, patched):
        mock_load, _, _ = patched
        cli.main(['--domain', 'capsule.example', '--list-steps'])
        mock_load.assert_called_once_with(None, domain='capsule.example')

    def test_list_steps(self, patched, capsys):
        _, mock_probe, _ = patched
        assert cli.main(['--list-steps']) == EXIT_OK
        out = capsys.readouterr().out
        assert 'content_root: Ensure content root' in out
        assert 'log_rotation' in out
        mock_probe.assert_not_called()

    def test_preflight_failure(self, patched, host_env, capsys):
        _, mock_probe, _ = patched
        mock_probe.return_value = replace(host_env, is_privileged=False)
        assert cli.main(['--preflight']) == EXIT_PREFLIGHT
        assert '✗ Bootstrap requires root privileges' in capsys.readouterr().out

    def test_preflight_json(self, patched, capsys):
        assert cli.main(['--preflight', '--json-output']) == EXIT_OK
        data = json.loads(capsys.readouterr().out)
        assert data['success'] is True

    def test_unknown_skip(self, patched, capsys):
        assert cli.main(['--skip', 'bogus']) == EXIT_CONFIG
        assert 'bogus' in capsys.readouterr().err

    def test_dry_run_summary(self, patched, bootstrap_config, capsys):
        assert cli.main(['--dry-run']) == EXIT_OK
        out = capsys.readouterr().out
        assert 'DRY-RUN: example.org' in out
        assert not bootstrap_config.content_root.exists()

    @pytest.mark.requires_openssl
    def test_provision_json_and_reports(self, patched, tmp_path, capsys):
        _, _, manager = patched
        report_dir = tmp_path / 'reports'

        rc = cli.main(['--json-output', '--report-dir', str(report_dir)])

        data = json.loads(capsys.readouterr().out)
        assert rc == EXIT_OK
        assert data['exit_code'] == 0
        assert [s['status'] for s in data['steps']] == ['created'] * 6
        assert 'cert_fingerprint' in data['context']
        assert len(list(report_dir.iterdir())) == 2
        assert manager.reloads == 1

    def test_preflight_abort_exit_code(self, patched, host_env, capsys):
        _, mock_probe, _ = patched
        mock_probe.return_value = replace(host_env, tools={'openssl': False, 'systemctl': True})
        assert cli.main([]) == EXIT_PREFLIGHT
        assert '✗ Required tool not found: openssl' in capsys.readouterr().out
