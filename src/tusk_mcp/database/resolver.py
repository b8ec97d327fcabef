"""Layered connection resolution.

Each connection field is resolved independently by walking an ordered list
of layers, highest precedence first:

1. explicit per-field flags
2. the --connection-string flag
3. the DATABASE_URL environment variable
4. individual PG* environment variables
5. built-in defaults (localhost:5432)

The first layer that supplies a value wins for that field only, so a
``--user`` flag combined with a connection string for everything else is
valid.
"""

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Awaitable, Callable, Mapping, Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from ..constants import (
    DATABASE_URL_ENV,
    DEFAULT_HOST,
    DEFAULT_PORT,
    PGDATABASE_ENV,
    PGHOST_ENV,
    PGPORT_ENV,
    PGUSER_ENV,
)
from ..errors import ConfigurationError, TlsMaterialUnreadable
from .connection import ConnectionFragment, ConnectionSpec, TlsConfig, TlsMode, parse_connection_string
from .credentials import PasswordSources, resolve_password

logger = logging.getLogger(__name__)

CONNECTION_FIELDS = tuple(f.name for f in fields(ConnectionFragment))


@dataclass(frozen=True)
class ConnectionFlags:
    """Connection-related command-line flags."""

    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = None
    password_file: Optional[str] = None
    password_cmd: Optional[str] = None
    database: Optional[str] = None
    connection_string: Optional[str] = None
    ssl: bool = False
    ssl_ca: Optional[str] = None
    ssl_cert: Optional[str] = None
    ssl_key: Optional[str] = None


LayerProvider = Callable[[ConnectionFlags, Mapping[str, str]], Awaitable[Optional[ConnectionFragment]]]


def parse_port(value: str, source: str) -> int:
    """Parse a port from a flag or environment variable.

    Raises:
        ConfigurationError: If the value is not an integer in [1, 65535]
    """
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid port from {source}: {value!r}") from None
    if not 1 <= port <= 65535:
        raise ConfigurationError(f"Port from {source} out of range: {port}")
    return port


async def flag_layer(flags: ConnectionFlags, env: Mapping[str, str]) -> ConnectionFragment:
    # No env here: PGPASSWORD ranks below connection strings, in pg_env_layer
    password = await resolve_password(
        PasswordSources(flags.password, flags.password_file, flags.password_cmd)
    )
    port = parse_port(str(flags.port), "--port") if flags.port is not None else None
    return ConnectionFragment(
        host=flags.host,
        port=port,
        user=flags.user,
        password=password,
        database=flags.database,
    )


async def connection_string_layer(flags: ConnectionFlags, env: Mapping[str, str]) -> Optional[ConnectionFragment]:
    if not flags.connection_string:
        return None
    return parse_connection_string(flags.connection_string)


async def database_url_layer(flags: ConnectionFlags, env: Mapping[str, str]) -> Optional[ConnectionFragment]:
    url = env.get(DATABASE_URL_ENV)
    if not url:
        return None
    return parse_connection_string(url)


async def pg_env_layer(flags: ConnectionFlags, env: Mapping[str, str]) -> ConnectionFragment:
    port = env.get(PGPORT_ENV)
    return ConnectionFragment(
        host=env.get(PGHOST_ENV),
        port=parse_port(port, PGPORT_ENV) if port else None,
        user=env.get(PGUSER_ENV),
        password=await resolve_password(PasswordSources(), env),
        database=env.get(PGDATABASE_ENV),
    )


async def default_layer(flags: ConnectionFlags, env: Mapping[str, str]) -> ConnectionFragment:
    return ConnectionFragment(host=DEFAULT_HOST, port=DEFAULT_PORT)


# Highest precedence first
LAYERS: tuple[tuple[str, LayerProvider], ...] = (
    ("flags", flag_layer),
    ("connection-string", connection_string_layer),
    (DATABASE_URL_ENV, database_url_layer),
    ("PG* environment", pg_env_layer),
    ("defaults", default_layer),
)


def _present(value) -> bool:
    return value is not None and value != ""


def resolve_field(name: str, fragments: list[tuple[str, ConnectionFragment]]):
    """Return (value, layer name) for the first layer that supplies ``name``."""
    for layer_name, fragment in fragments:
        value = getattr(fragment, name)
        if _present(value):
            return value, layer_name
    return None, None


def _read_tls_file(path: str, label: str) -> bytes:
    try:
        return Path(path).expanduser().read_bytes()
    except OSError as e:
        raise TlsMaterialUnreadable(f"Cannot read TLS {label} {path}: {e.strerror or e}") from e


def load_tls_config(
    enabled: bool = False,
    ca: Optional[str] = None,
    cert: Optional[str] = None,
    key: Optional[str] = None,
) -> TlsConfig:
    """Derive the TLS configuration from which inputs are present.

    Every referenced file is read up front. CA and client certificates must
    parse as PEM X.509 and the client key as an unencrypted PEM private key.

    Raises:
        TlsMaterialUnreadable: If any referenced file cannot be read or parsed
    """
    if not (enabled or ca or cert or key):
        return TlsConfig()

    if ca:
        try:
            x509.load_pem_x509_certificates(_read_tls_file(ca, "CA bundle"))
        except ValueError as e:
            raise TlsMaterialUnreadable(f"TLS CA bundle {ca} is not a PEM certificate: {e}") from e
    if cert:
        try:
            x509.load_pem_x509_certificate(_read_tls_file(cert, "client certificate"))
        except ValueError as e:
            raise TlsMaterialUnreadable(f"TLS client certificate {cert} is not a PEM certificate: {e}") from e
    if key:
        try:
            serialization.load_pem_private_key(_read_tls_file(key, "client key"), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise TlsMaterialUnreadable(f"TLS client key {key} is not an unencrypted PEM private key: {e}") from e

    mode = TlsMode.VERIFIED if ca else TlsMode.OPPORTUNISTIC
    return TlsConfig(mode=mode, ca=ca, cert=cert, key=key)


async def resolve_connection(
    flags: ConnectionFlags,
    env: Mapping[str, str],
    layers: tuple[tuple[str, LayerProvider], ...] = LAYERS,
) -> ConnectionSpec:
    """Merge every configuration layer into one ConnectionSpec.

    Args:
        flags: Parsed command-line flags
        env: Process environment
        layers: Ordered layer providers, highest precedence first

    Returns:
        Immutable, fully-resolved ConnectionSpec

    Raises:
        ConfigurationError: If a port is invalid
        ParseError: If a connection string is malformed
        CredentialResolutionError: If the password cannot be resolved
        TlsMaterialUnreadable: If TLS material cannot be read
    """
    fragments: list[tuple[str, ConnectionFragment]] = []
    for layer_name, provider in layers:
        fragment = await provider(flags, env)
        if fragment is not None:
            fragments.append((layer_name, fragment))

    values = {}
    for name in CONNECTION_FIELDS:
        value, source = resolve_field(name, fragments)
        values[name] = value
        if source:
            logger.debug(f"Connection field '{name}' resolved from {source}")

    tls = load_tls_config(flags.ssl, flags.ssl_ca, flags.ssl_cert, flags.ssl_key)
    return ConnectionSpec(
        host=values["host"] or DEFAULT_HOST,
        port=values["port"] or DEFAULT_PORT,
        user=values["user"],
        password=values["password"],
        database=values["database"],
        tls=tls,
    )
