"""TLS credential management for the daemon.

Generates the self-signed key/certificate pair the daemon serves and
verifies pairs that already exist. Keys are RSA in PKCS#8 PEM, which is
what the daemon's loader accepts. Fingerprints are logged for TOFU
(trust-on-first-use) clients.

Pairs live in a per-domain directory under the certificate store:
    <cert_dir>/<domain>/cert.pem
    <cert_dir>/<domain>/key.rsa
"""

import logging
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

CERT_FILE_NAME = 'cert.pem'
KEY_FILE_NAME = 'key.rsa'

# Certificate defaults
DEFAULT_CERT_DAYS = 365
DEFAULT_KEY_SIZE = 4096


@dataclass
class CredentialPair:
    """Paths of a key/certificate pair and the certificate's fingerprint."""

    cert_path: Path
    key_path: Path
    fingerprint: str = ''

    @classmethod
    def in_dir(cls, domain_dir: Path) -> "CredentialPair":
        return cls(cert_path=domain_dir / CERT_FILE_NAME, key_path=domain_dir / KEY_FILE_NAME)


def get_cert_fingerprint(cert_path: Path) -> str:
    """Get SHA256 fingerprint of a certificate.

    Returns:
        SHA256 fingerprint as hex string with colons (e.g., "AB:CD:EF:...")

    Raises:
        subprocess.CalledProcessError: If openssl command fails
    """
    result = subprocess.run(
        [
            "openssl", "x509",
            "-in", str(cert_path),
            "-noout",
            "-fingerprint",
            "-sha256"
        ],
        capture_output=True,
        text=True,
        check=True,
    )
    # Output format: "sha256 Fingerprint=AB:CD:EF:..."
    output = result.stdout.strip()
    if "=" in output:
        return output.split("=", 1)[1]
    return output


def _openssl_config(domain: str, key_size: int) -> str:
    return f"""
[req]
default_bits = {key_size}
prompt = no
default_md = sha256
distinguished_name = dn
x509_extensions = v3_ext

[dn]
CN = {domain}

[v3_ext]
basicConstraints = CA:FALSE
keyUsage = digitalSignature, keyEncipherment
extendedKeyUsage = serverAuth
subjectAltName = DNS:{domain}
"""


def generate_self_signed_cert(
    out_dir: Path,
    domain: str,
    days: int = DEFAULT_CERT_DAYS,
    key_size: int = DEFAULT_KEY_SIZE,
) -> CredentialPair:
    """Generate a self-signed certificate and key into out_dir.

    Creates a certificate with:
    - CN = domain, SAN = DNS:domain
    - RSA key of key_size bits, SHA-256 signature
    - Validity = days

    The caller owns out_dir and is responsible for permissions on the
    resulting files; out_dir must not already hold a pair.

    Raises:
        subprocess.CalledProcessError: If openssl command fails
    """
    pair = CredentialPair.in_dir(out_dir)
    logger.info("Generating self-signed certificate for %s (RSA %d, %d days)", domain, key_size, days)

    with tempfile.NamedTemporaryFile(mode="w", suffix=".cnf", delete=False) as f:
        f.write(_openssl_config(domain, key_size))
        config_path = f.name

    try:
        subprocess.run(
            [
                "openssl", "req",
                "-x509",
                "-nodes",
                "-newkey", f"rsa:{key_size}",
                "-keyout", str(pair.key_path),
                "-out", str(pair.cert_path),
                "-days", str(days),
                "-config", config_path,
            ],
            check=True,
            capture_output=True,
        )
    finally:
        Path(config_path).unlink(missing_ok=True)

    pair.fingerprint = get_cert_fingerprint(pair.cert_path)
    logger.info("Certificate fingerprint (SHA256): %s", pair.fingerprint)
    return pair


def verify_cert_key_match(cert_path: Path, key_path: Path) -> bool:
    """Verify that a certificate and key belong together.

    Compares public keys rather than RSA moduli so operator-supplied
    non-RSA pairs are handled too.
    """
    try:
        cert_result = subprocess.run(
            ["openssl", "x509", "-noout", "-pubkey", "-in", str(cert_path)],
            capture_output=True,
            text=True,
            check=True,
        )
        key_result = subprocess.run(
            ["openssl", "pkey", "-pubout", "-in", str(key_path)],
            capture_output=True,
            text=True,
            check=True,
        )
        return cert_result.stdout.strip() == key_result.stdout.strip()
    except subprocess.CalledProcessError:
        return False


def cert_matches_domain(cert_path: Path, domain: str) -> bool:
    """Check the certificate is valid for domain (CN/SAN, wildcards allowed)."""
    try:
        result = subprocess.run(
            ["openssl", "x509", "-noout", "-in", str(cert_path), "-checkhost", domain],
            capture_output=True,
            text=True,
            check=True,
        )
    except subprocess.CalledProcessError:
        return False
    # Output format: "Hostname example.org does match certificate"
    return "does match" in result.stdout and "does NOT match" not in result.stdout
