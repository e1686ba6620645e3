"""Rendering of the files handed to systemd, rsyslog and logrotate."""

import re

from config import BootstrapConfig

_PLAIN_ARG = re.compile(r'[^\s"\'\\;]+')


def unit_arg(arg: str) -> str:
    """Quote one ExecStart argument for systemd's command-line parser.

    % and $ are doubled so systemd does not expand them as specifiers or
    environment variables.
    """
    arg = arg.replace('%', '%%').replace('$', '$$')
    if arg and _PLAIN_ARG.fullmatch(arg):
        return arg
    escaped = arg.replace('\\', '\\\\').replace('"', '\\"')
    return f'"{escaped}"'


def render_unit(config: BootstrapConfig) -> str:
    """Render the systemd unit that runs the daemon.

    The daemon reads its hostname from GEMINI_HOSTNAME as well as the
    --hostname flag; both are set so either loader works.
    """
    args = [
        str(config.binary),
        '--content', str(config.content_root),
        '--certs', str(config.cert_dir),
        '--hostname', config.domain,
    ]
    for addr in config.addresses:
        args.extend(['--addr', addr])
    if config.lang:
        args.extend(['--lang', config.lang])

    return f"""[Unit]
Description={config.name} Gemini server ({config.domain})
After=network-online.target
Wants=network-online.target

[Service]
Type=simple
User={config.user}
Group={config.group}
Environment=GEMINI_HOSTNAME={config.domain}
ExecStart={' '.join(unit_arg(arg) for arg in args)}
Restart=always
RestartSec=1
SyslogIdentifier={config.name}

[Install]
WantedBy=multi-user.target
"""


def render_log_router(config: BootstrapConfig) -> str:
    """Render the rsyslog rule sending the daemon's output to its own file."""
    return f"""# Managed by gemini-bootstrap
if $programname == '{config.name}' then {config.log_file}
& stop
"""


def render_log_rotation(config: BootstrapConfig) -> str:
    """Render the logrotate stanza for the daemon's log file."""
    return f"""# Managed by gemini-bootstrap
{config.log_file} {{
    daily
    rotate {config.log_retention_days}
    missingok
    notifempty
    compress
    delaycompress
    sharedscripts
    postrotate
        systemctl kill -s HUP rsyslog.service >/dev/null 2>&1 || true
    endscript
}}
"""
