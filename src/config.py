"""Bootstrap configuration management.

Configuration is loaded from a single YAML file with four sections:
- service: daemon identity (name, binary, user/group, domain, port, addresses)
- paths: content root, certificate store, unit and log rule directories
- tls: key size and validity of the generated self-signed pair
- system: owner/group of OS-level artifacts (unit, log rules)

Resolution order for the config file:
1. --config PATH (explicit)
2. $GEMINI_BOOTSTRAP_CONFIG environment variable
3. /etc/gemini-bootstrap/bootstrap.yaml (if present)
4. Built-in defaults

$GEMINI_HOSTNAME overrides service.domain; a --domain flag overrides both.
"""

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG_PATH = Path('/etc/gemini-bootstrap/bootstrap.yaml')
CONFIG_ENV = 'GEMINI_BOOTSTRAP_CONFIG'
HOSTNAME_ENV = 'GEMINI_HOSTNAME'

# Gemini's well-known port
DEFAULT_PORT = 1965
MIN_KEY_SIZE = 2048


class ConfigError(Exception):
    """Configuration error."""


# YAML section -> dataclass fields accepted in that section
_SECTIONS = {
    'service': ('name', 'binary', 'user', 'group', 'domain', 'port', 'addresses', 'lang'),
    'paths': ('content_root', 'cert_dir', 'unit_dir', 'log_router_dir',
              'log_rotation_dir', 'log_file'),
    'tls': ('key_size', 'cert_days'),
    'system': ('system_user', 'system_group', 'required_tools', 'log_retention_days'),
}

# YAML key -> dataclass field where the two differ
_ALIASES = {
    ('system', 'user'): 'system_user',
    ('system', 'group'): 'system_group',
    ('tls', 'days'): 'cert_days',
}

_PATH_FIELDS = ('binary', 'content_root', 'cert_dir', 'unit_dir',
                'log_router_dir', 'log_rotation_dir', 'log_file')
_INT_FIELDS = ('port', 'key_size', 'cert_days', 'log_retention_days')
_STR_FIELDS = ('domain', 'name', 'user', 'group', 'system_user', 'system_group')
_LIST_FIELDS = ('addresses', 'required_tools')

# The daemon only loads certificates for names it can parse as DNS names
_DOMAIN_LABEL = r'[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?'
_DOMAIN_RE = re.compile(rf'{_DOMAIN_LABEL}(?:\.{_DOMAIN_LABEL})*')
# Used in file names under the unit and log rule directories
_NAME_RE = re.compile(r'[A-Za-z0-9][A-Za-z0-9_.@-]*')
_ACCOUNT_RE = re.compile(r'[A-Za-z0-9_][A-Za-z0-9_.-]*\$?')
_LANG_RE = re.compile(r'[A-Za-z0-9-]+(?:,[A-Za-z0-9-]+)*')
_ADDRESS_RE = re.compile(r'[A-Za-z0-9.:\[\]%_-]+')


@dataclass
class BootstrapConfig:
    """Everything the bootstrap needs to provision one daemon instance."""
    domain: str = ''
    name: str = 'gemini'
    binary: Path = Path('/usr/local/bin/agate')
    user: str = 'gemini'
    group: str = 'gemini'
    port: int = DEFAULT_PORT
    addresses: list = field(default_factory=list)
    lang: Optional[str] = None

    content_root: Path = Path('/srv/gemini/content')
    cert_dir: Path = Path('/srv/gemini/.certificates')
    unit_dir: Path = Path('/etc/systemd/system')
    log_router_dir: Path = Path('/etc/rsyslog.d')
    log_rotation_dir: Path = Path('/etc/logrotate.d')
    log_file: Path = Path('/var/log/gemini.log')
    log_retention_days: int = 14

    key_size: int = 4096
    cert_days: int = 365

    system_user: str = 'root'
    system_group: str = 'root'
    required_tools: list = field(default_factory=lambda: ['openssl', 'systemctl'])

    config_file: Optional[Path] = None

    def __post_init__(self):
        for name in _PATH_FIELDS:
            value = getattr(self, name)
            if isinstance(value, str):
                setattr(self, name, Path(value))
        if isinstance(self.config_file, str):
            self.config_file = Path(self.config_file)
        if not self.addresses:
            self.addresses = [f'[::]:{self.port}', f'0.0.0.0:{self.port}']

    @property
    def unit_name(self) -> str:
        return f'{self.name}.service'

    @property
    def unit_path(self) -> Path:
        return self.unit_dir / self.unit_name

    @property
    def log_router_path(self) -> Path:
        return self.log_router_dir / f'{self.name}.conf'

    @property
    def log_rotation_path(self) -> Path:
        return self.log_rotation_dir / self.name

    @property
    def domain_cert_dir(self) -> Path:
        """Per-domain certificate directory the daemon loads."""
        return self.cert_dir / self.domain

    def _validate_types(self) -> None:
        for name in _INT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"{name} must be an integer (got {value!r})")
        for name in _STR_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, str):
                raise ConfigError(f"{name} must be a string (got {value!r})")
        if self.lang is not None and not isinstance(self.lang, str):
            raise ConfigError(f"lang must be a string (got {self.lang!r})")
        for name in _LIST_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ConfigError(f"{name} must be a list of strings (got {value!r})")
        for name in _PATH_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, Path):
                raise ConfigError(f"Path for {name} must be a string (got {value!r})")

    def validate(self) -> None:
        """Check invariants. Raises ConfigError on the first violation."""
        self._validate_types()

        if not self.domain:
            raise ConfigError(
                "No domain configured\n"
                f"  Set service.domain, ${HOSTNAME_ENV}, or pass --domain"
            )
        if not self.domain.isascii():
            raise ConfigError(
                f"The domain name {self.domain!r} cannot be processed, it must be punycoded"
            )
        if len(self.domain) > 253 or not _DOMAIN_RE.fullmatch(self.domain):
            raise ConfigError(
                f"The domain name {self.domain!r} cannot be processed\n"
                f"  Expected dot-separated labels of letters, digits and hyphens"
            )
        if not _NAME_RE.fullmatch(self.name):
            raise ConfigError(f"Invalid service name: {self.name!r}")
        for name in ('user', 'group', 'system_user', 'system_group'):
            if not _ACCOUNT_RE.fullmatch(getattr(self, name)):
                raise ConfigError(f"Invalid account name for {name}: {getattr(self, name)!r}")
        if self.lang is not None and not _LANG_RE.fullmatch(self.lang):
            raise ConfigError(f"Invalid lang: {self.lang!r}")
        for addr in self.addresses:
            if not _ADDRESS_RE.fullmatch(addr):
                raise ConfigError(f"Invalid listen address: {addr!r}")
        for tool in self.required_tools:
            if not _NAME_RE.fullmatch(tool):
                raise ConfigError(f"Invalid tool name: {tool!r}")

        if not 0 < self.port < 65536:
            raise ConfigError(f"Invalid port: {self.port}")
        if self.key_size < MIN_KEY_SIZE:
            raise ConfigError(f"tls.key_size must be at least {MIN_KEY_SIZE} (got {self.key_size})")
        if self.cert_days < 1:
            raise ConfigError(f"tls.days must be positive (got {self.cert_days})")
        if self.log_retention_days < 1:
            raise ConfigError(f"log_retention_days must be positive (got {self.log_retention_days})")

        for name in _PATH_FIELDS:
            path = getattr(self, name)
            if not path.is_absolute():
                raise ConfigError(f"Path for {name} must be absolute: {path}")
            if any(ch.isspace() or not ch.isprintable() for ch in str(path)):
                raise ConfigError(f"Path for {name} must not contain whitespace or control characters: {str(path)!r}")


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config file (expected a mapping): {path}")
    return data


def _flatten(data: dict, source: Path) -> dict:
    """Map sectioned YAML onto BootstrapConfig field names."""
    values = {}
    for section, body in data.items():
        if section not in _SECTIONS:
            raise ConfigError(f"Unknown section '{section}' in {source}")
        if not isinstance(body, dict):
            raise ConfigError(f"Section '{section}' in {source} must be a mapping")
        for key, value in body.items():
            target = _ALIASES.get((section, key), key)
            if target not in _SECTIONS[section]:
                raise ConfigError(f"Unknown key '{section}.{key}' in {source}")
            values[target] = value
    return values


def discover_config_path(explicit: Optional[Path] = None) -> Optional[Path]:
    """Find the config file to load, or None to use defaults.

    Raises:
        ConfigError: If an explicitly requested file does not exist
    """
    if explicit is not None:
        if not explicit.exists():
            raise ConfigError(f"Config file not found: {explicit}")
        return explicit

    if env_path := os.environ.get(CONFIG_ENV):
        path = Path(env_path)
        if not path.exists():
            raise ConfigError(f"{CONFIG_ENV}={env_path} does not exist")
        return path

    if DEFAULT_CONFIG_PATH.exists():
        return DEFAULT_CONFIG_PATH

    return None


def load_config(path: Optional[Path] = None, domain: Optional[str] = None) -> BootstrapConfig:
    """Load and validate the bootstrap configuration.

    Args:
        path: Explicit config file (overrides discovery)
        domain: Domain override (takes precedence over file and environment)

    Returns:
        Validated BootstrapConfig

    Raises:
        ConfigError: If the file is missing, malformed or violates an invariant
    """
    config_path = discover_config_path(path)
    values = {}
    if config_path is not None:
        values = _flatten(_parse_yaml(config_path), config_path)

    known = {f.name for f in fields(BootstrapConfig)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    if env_domain := os.environ.get(HOSTNAME_ENV):
        values['domain'] = env_domain
    if domain:
        values['domain'] = domain

    try:
        config = BootstrapConfig(config_file=config_path, **values)
    except TypeError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
    config.validate()
    return config
