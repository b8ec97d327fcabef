"""Error types shared across tusk-mcp.

Startup failures (configuration, credentials, TLS material, tunnel) are fatal
and end the process. Per-call failures (read-only violations, query errors)
are reported back to the calling agent as structured tool errors.
"""


class TuskError(Exception):
    """Base class for all tusk-mcp errors."""


class ConfigurationError(TuskError):
    """Raised when a required setting is missing or invalid."""


class ParseError(TuskError):
    """Raised when a connection string cannot be parsed."""


class InvalidConnectionString(ParseError):
    """Raised when a connection string has no ``://`` scheme separator."""


class MissingCredentialSeparator(ParseError):
    """Raised when a connection string has no ``@`` after the scheme."""


class CredentialResolutionError(TuskError):
    """Raised when the database password cannot be resolved."""


class PasswordCommandFailed(CredentialResolutionError):
    """Raised when the configured password command fails or cannot run."""


class PasswordFileUnreadable(CredentialResolutionError):
    """Raised when the configured password file cannot be read."""


class TlsMaterialError(TuskError):
    """Raised for TLS certificate or key problems."""


class TlsMaterialUnreadable(TlsMaterialError):
    """Raised when a CA, certificate or key file cannot be read or parsed."""


class TunnelError(TuskError):
    """Raised when the SSH tunnel cannot be established or used."""


class TunnelAuthFailed(TunnelError):
    """Raised when the bastion rejects the private key or password."""


class TunnelUnreachable(TunnelError):
    """Raised when the bastion host cannot be reached."""


class ReadOnlyViolation(TuskError):
    """Raised when a statement is not classified as read-only."""


class QueryExecutionError(TuskError):
    """Raised when the database rejects or fails a statement."""


class ToolCallFailed(Exception):
    """Carries a formatted error payload out of a tool handler.

    The MCP server turns it into a tool result with ``isError`` set.
    """


# Categories that abort startup with a non-zero exit.
FATAL_ERRORS = (
    ConfigurationError,
    ParseError,
    CredentialResolutionError,
    TlsMaterialError,
    TunnelError,
)
