#!/usr/bin/env python3
"""CLI entry point for gemini-bootstrap.

Provisions one Gemini server instance on the local host:
- content root and certificate store directories
- self-signed TLS key pair for the configured domain
- systemd unit registration (not started)
- rsyslog routing and logrotate rules

Examples:
    gemini-bootstrap --domain example.org
    gemini-bootstrap --config /etc/gemini-bootstrap/bootstrap.yaml --dry-run
    gemini-bootstrap --preflight
"""

import argparse
import json
import logging
import subprocess
import sys
from pathlib import Path

from config import ConfigError, load_config
from environment import probe_host
from errors import EXIT_CONFIG, EXIT_OK, EXIT_PREFLIGHT
from orchestrator import Orchestrator
from plan import build_plan
from service import SystemdServiceManager
from validation import format_preflight_results, run_preflight_checks

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def get_version():
    """Get version from git tags, 'dev' outside a checkout."""
    try:
        result = subprocess.run(
            ['git', 'describe', '--tags', '--abbrev=0'],
            capture_output=True, text=True,
            cwd=Path(__file__).parent,
            check=False,
        )
        return result.stdout.strip() if result.returncode == 0 else 'dev'
    except OSError:
        return 'dev'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='gemini-bootstrap',
        description='Provision a supervised Gemini server instance on this host'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'gemini-bootstrap {get_version()}'
    )
    parser.add_argument(
        '--config', '-c',
        type=Path,
        help='Bootstrap config file (default: $GEMINI_BOOTSTRAP_CONFIG or /etc/gemini-bootstrap/bootstrap.yaml)'
    )
    parser.add_argument(
        '--domain', '-d',
        help='Public domain the certificate is issued for (overrides config and $GEMINI_HOSTNAME)'
    )
    parser.add_argument(
        '--skip', '-s',
        action='append',
        default=[],
        metavar='STEP',
        help='Steps to skip (can be repeated)'
    )
    parser.add_argument(
        '--list-steps',
        action='store_true',
        help='List provisioning steps and exit'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Check every step without changing anything'
    )
    parser.add_argument(
        '--preflight',
        action='store_true',
        help='Run preflight checks only (no provisioning)'
    )
    parser.add_argument(
        '--report-dir', '-r',
        type=Path,
        help='Write JSON and markdown reports to this directory'
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs go to stderr)'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )
    return parser


def _configure_logging(args) -> None:
    root_logger = logging.getLogger()
    if args.json_output:
        # Remove existing handlers and redirect to stderr
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root_logger.addHandler(stderr_handler)

    if args.verbose:
        root_logger.setLevel(logging.DEBUG)


def _print_summary(report) -> None:
    mode = "DRY-RUN" if report.dry_run else "RESULT"
    print("")
    print("═══════════════════════════════════════════════════════════════")
    print(f"  {mode}: {report.domain} on {report.host}")
    print("═══════════════════════════════════════════════════════════════")
    for warning in report.warnings:
        print(f"  ! {warning}")
    for error in report.preflight_errors:
        for i, line in enumerate(str(error).split('\n')):
            prefix = "  ✗ " if i == 0 else "    "
            print(f"{prefix}{line}")
    for step in report.steps:
        print(f"  [{step.status:^17}] {step.name}: {step.message.splitlines()[0] if step.message else ''}")
    print("═══════════════════════════════════════════════════════════════")
    print(f"  Exit code: {report.exit_code}")
    print("")


def main(argv=None):
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    _configure_logging(args)

    try:
        config = load_config(args.config, domain=args.domain)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    service_manager = SystemdServiceManager()

    if args.list_steps:
        print(f"Steps for {config.name} ({config.domain}):")
        for step in build_plan(config, service_manager):
            print(f"  {step.name}: {step.description}")
        return EXIT_OK

    env = probe_host(config.required_tools)

    if args.preflight:
        logger.info(f"Running preflight checks for {env.hostname}")
        success, results = run_preflight_checks(config, env)
        if args.json_output:
            print(json.dumps({'success': success, 'results': results}, indent=2))
        else:
            print(format_preflight_results(env.hostname, results))
        return EXIT_OK if success else EXIT_PREFLIGHT

    try:
        orchestrator = Orchestrator(
            config=config,
            env=env,
            service_manager=service_manager,
            skip_steps=args.skip,
            dry_run=args.dry_run,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    report = orchestrator.run()

    if args.report_dir:
        try:
            paths = report.write(args.report_dir, orchestrator.context)
            logger.info(f"Wrote reports: {', '.join(str(p) for p in paths)}")
        except OSError as e:
            logger.warning(f"Failed to write reports to {args.report_dir}: {e}")

    if args.json_output:
        print(json.dumps(report.to_dict(orchestrator.context), indent=2))
    else:
        _print_summary(report)

    return report.exit_code


if __name__ == '__main__':
    sys.exit(main())
