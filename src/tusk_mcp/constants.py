"""Constants and static configuration for the tusk-mcp server."""

# Application constants
SERVER_NAME = "tusk-mcp"
SERVER_VERSION = "0.1.0"
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
LOG_LEVEL_ENV = "TUSK_MCP_LOG_LEVEL"

# Connection defaults
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 5432
APPLICATION_NAME = "tusk-mcp"
READ_ONLY_SESSION_OPTIONS = "-c default_transaction_read_only=on"

# Environment fallbacks (consulted only when no flag supplies the field)
DATABASE_URL_ENV = "DATABASE_URL"
PGHOST_ENV = "PGHOST"
PGPORT_ENV = "PGPORT"
PGUSER_ENV = "PGUSER"
PGPASSWORD_ENV = "PGPASSWORD"
PGDATABASE_ENV = "PGDATABASE"

# Database pool constants
DB_POOL_SIZE = 5  # Maximum concurrent physical connections
DB_POOL_IDLE_TIMEOUT = 30.0  # Seconds before an idle connection is closed
DB_CONNECT_TIMEOUT = 10  # Seconds per dial attempt (libpq connect_timeout)
DB_ACQUIRE_TIMEOUT = 30.0  # Seconds to wait for a free pool slot

# Query constants
MAX_QUERY_ROWS = 5_000  # Hard ceiling regardless of caller input
DEFAULT_QUERY_LIMIT = 500
RESULT_ALIAS = "_tusk_result"
DEFAULT_SCHEMA = "public"

# SSH tunnel constants
DEFAULT_SSH_PORT = 22
TUNNEL_LOCAL_HOST = "127.0.0.1"
TUNNEL_CONNECT_TIMEOUT = 10.0  # Seconds for TCP connect + SSH handshake
TUNNEL_CHANNEL_TIMEOUT = 10.0  # Seconds to wait for a direct-tcpip channel
TUNNEL_BUFFER_SIZE = 32_768
SSH_KNOWN_HOSTS = "~/.ssh/known_hosts"

# Connection check run by --test
TEST_CONNECTION_QUERY = (
    "SELECT current_database() AS db, version() AS version, current_user AS usr"
)
