#!/usr/bin/env python3
"""Process configuration, resolved once at startup and shared read-only."""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

import httpx

from ..core.errors import ConfigError

SERVICE_ACCOUNT_DIR = Path('/var/run/secrets/kubernetes.io/serviceaccount')
DEFAULT_TOKEN_FILE = SERVICE_ACCOUNT_DIR / 'token'
DEFAULT_CA_CERT_FILE = SERVICE_ACCOUNT_DIR / 'ca.crt'

DEFAULT_PORT = 8080
DEFAULT_GROUP = 'openshift.org'
DEFAULT_NATIVE_PREFIX = '/oapi'


@dataclass(frozen=True)
class ProxyConfig:
    """Immutable settings handed to every pipeline layer that needs them."""
    upstream_url: str
    token: str
    insecure: bool = False
    ca_data: Optional[str] = None
    host: str = '0.0.0.0'
    port: int = DEFAULT_PORT
    group: str = DEFAULT_GROUP
    native_prefix: str = DEFAULT_NATIVE_PREFIX
    log_level: str = 'INFO'

    @property
    def group_prefix(self) -> str:
        """Client-visible route prefix of the synthetic group."""
        return f'/apis/{self.group}'


def _read_text(path, what: str) -> str:
    try:
        return Path(path).read_text(encoding='utf-8')
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f'failed to read {what} from {path}: {exc}') from exc


def upstream_url_from_env(environ: Mapping[str, str]) -> str:
    """Build the upstream base URL from the in-cluster service variables."""
    kube_host = environ.get('KUBERNETES_SERVICE_HOST', '')
    kube_port = environ.get('KUBERNETES_SERVICE_PORT', '')

    if not kube_host:
        raise ConfigError('kubernetes host not found in environment')
    if not kube_port:
        raise ConfigError('kubernetes port not found in environment')

    if ':' in kube_host and not kube_host.startswith('['):
        kube_host = f'[{kube_host}]'
    upstream_url = f'https://{kube_host}:{kube_port}'

    try:
        httpx.URL(upstream_url)
    except (httpx.InvalidURL, ValueError) as exc:
        raise ConfigError(f'invalid upstream URL {upstream_url}: {exc}') from exc
    return upstream_url


def load_config(
    token: str = '',
    insecure: bool = False,
    ca_cert_path=DEFAULT_CA_CERT_FILE,
    host: str = '0.0.0.0',
    port: int = DEFAULT_PORT,
    log_level: str = 'INFO',
    token_file=DEFAULT_TOKEN_FILE,
    environ: Optional[Mapping[str, str]] = None,
) -> ProxyConfig:
    """Resolve the proxy configuration.

    Args:
        token: Bearer token; read from ``token_file`` when empty
        insecure: Skip upstream TLS verification
        ca_cert_path: CA bundle trusted for the upstream (ignored when insecure)
        host: Listen address
        port: Listen port
        log_level: Logging level name
        token_file: Service account token file
        environ: Environment mapping (defaults to ``os.environ``)

    Raises:
        ConfigError: Any required input is missing or unreadable
    """
    if environ is None:
        environ = os.environ

    upstream_url = upstream_url_from_env(environ)

    if not token:
        token = _read_text(token_file, 'token').strip()

    ca_data = None
    if not insecure:
        ca_data = _read_text(ca_cert_path, 'CA certificate')

    return ProxyConfig(
        upstream_url=upstream_url,
        token=token,
        insecure=insecure,
        ca_data=ca_data,
        host=host,
        port=port,
        log_level=log_level,
    )
