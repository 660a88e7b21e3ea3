"""Map driver errors to ordered lists of remediation hints."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Sequence

GENERIC_HINTS: tuple[str, ...] = (
    "Verify the host/server name, port and database name.",
    "Verify the username and password.",
    "Ensure the database server is running and reachable from this machine.",
)


class _Context(dict[str, object]):
    def __missing__(self, key: str) -> str:
        return "N/A"


@dataclass(frozen=True, slots=True)
class HintRule:
    """Hints attached to errors whose code or message matches."""

    hints: tuple[str, ...]
    codes: frozenset[str] = field(default_factory=frozenset)
    patterns: tuple[str, ...] = ()

    def matches(self, message: str, code: str | None) -> bool:
        if code is not None and code in self.codes:
            return True
        lowered = message.lower()
        return any(pattern in lowered for pattern in self.patterns)


class HintPolicy:
    """Ordered rules plus a generic fallback for unrecognized errors."""

    def __init__(self, rules: Sequence[HintRule], *, generic: Sequence[str] = GENERIC_HINTS) -> None:
        self._rules = tuple(rules)
        self._generic = tuple(generic)

    def matches(self, message: str, code: str | None = None) -> bool:
        return any(rule.matches(message, code) for rule in self._rules)

    def classify(
        self,
        message: str,
        code: str | None = None,
        context: Mapping[str, object] | None = None,
    ) -> list[str]:
        values = _Context(context or {})
        hints: list[str] = []
        for rule in self._rules:
            if not rule.matches(message, code):
                continue
            for hint in rule.hints:
                rendered = hint.format_map(values)
                if rendered not in hints:
                    hints.append(rendered)
        if hints:
            return hints
        fallback = [hint.format_map(values) for hint in self._generic]
        if message:
            fallback.append(f"Error reported by the driver: {message}")
        return fallback


TIMEOUT_RULE = HintRule(
    hints=(
        "The server did not answer within {timeout} seconds.",
        "Check that the server is running and that no firewall blocks port {port}.",
    ),
    codes=frozenset({"ETIMEOUT", "HYT00", "HYT01"}),
    patterns=("timed out", "timeout expired", "timeout"),
)

REFUSED_RULE = HintRule(
    hints=(
        "The connection was refused by {host}.",
        "Start the database service or check the configured port ({port}).",
    ),
    codes=frozenset({"ECONNREFUSED", "2003"}),
    patterns=("connection refused", "actively refused", "can't connect"),
)

HOST_RULE = HintRule(
    hints=(
        "The host name {host} could not be resolved.",
        "Check the spelling of the host/server, or use 127.0.0.1 for this machine.",
    ),
    codes=frozenset({"ENOTFOUND", "2005"}),
    patterns=("getaddrinfo failed", "name or service not known", "unknown mysql server host", "nodename nor servname"),
)

MYSQL_ACCESS_DENIED_HINTS: tuple[str, ...] = (
    "Confirm in a terminal: mysql -h 127.0.0.1 -u {user} -p and enter the SAME password as in the app. "
    "If that works but the app fails, the app may have the wrong password saved.",
    "Remove this connection in the app, then add it again with Host 127.0.0.1 and retype the password "
    "(do not copy-paste).",
    "MySQL 8.0: run ALTER USER '{user}'@'localhost' IDENTIFIED WITH mysql_native_password BY 'your_password'; "
    "then the same for '{user}'@'127.0.0.1'; then FLUSH PRIVILEGES;",
    "Or create a dedicated user: CREATE USER 'appuser'@'127.0.0.1' IDENTIFIED WITH mysql_native_password "
    "BY 'password'; GRANT ALL ON *.* TO 'appuser'@'127.0.0.1'; FLUSH PRIVILEGES;",
)

MYSQL_ACCESS_DENIED = HintRule(
    hints=MYSQL_ACCESS_DENIED_HINTS,
    codes=frozenset({"1045", "ER_ACCESS_DENIED_ERROR"}),
    patterns=("access denied",),
)

MYSQL_HINTS = HintPolicy(
    [
        MYSQL_ACCESS_DENIED,
        HintRule(
            hints=(
                "Database {database} does not exist on the server.",
                "Create it or leave the database field empty.",
            ),
            codes=frozenset({"1049"}),
            patterns=("unknown database",),
        ),
        HintRule(
            hints=(
                "The server requires an authentication plugin the client cannot use.",
                "Switch the account to mysql_native_password or install the 'cryptography' package.",
            ),
            codes=frozenset({"2059"}),
            patterns=("authentication plugin", "caching_sha2_password"),
        ),
        REFUSED_RULE,
        HOST_RULE,
        TIMEOUT_RULE,
    ]
)

POSTGRES_HINTS = HintPolicy(
    [
        HintRule(
            hints=(
                "Password authentication failed for user {user}.",
                "Re-enter the password, or check pg_hba.conf allows password logins from this host.",
            ),
            codes=frozenset({"28P01", "28000"}),
            patterns=("password authentication failed", "no pg_hba.conf entry"),
        ),
        HintRule(
            hints=(
                "Database {database} does not exist.",
                "Connect to the default 'postgres' database or create the database first.",
            ),
            codes=frozenset({"3D000"}),
        ),
        REFUSED_RULE,
        HOST_RULE,
        TIMEOUT_RULE,
    ]
)

MSSQL_HINTS = HintPolicy(
    [
        HintRule(
            hints=(
                "Login failed for {user}.",
                "Verify the SQL login and password, or enable Windows Authentication for this connection.",
                "Make sure SQL Server allows 'SQL Server and Windows Authentication mode'.",
            ),
            codes=frozenset({"28000", "ELOGIN"}),
            patterns=("login failed",),
        ),
        HintRule(
            hints=(
                "The SQL Server ODBC driver '{driver}' is not installed.",
                "Install 'ODBC Driver 17/18 for SQL Server' or change mssql_odbc_driver in config.toml.",
            ),
            codes=frozenset({"IM002"}),
            patterns=("data source name not found", "can't open lib"),
        ),
        HintRule(
            hints=(
                "The server certificate is not trusted.",
                "Enable 'Trust server certificate' or disable encryption for local servers.",
            ),
            patterns=("certificate", "ssl provider"),
        ),
        HintRule(
            hints=(
                "SQL Server at {host} could not be reached.",
                "Check the instance name, that the SQL Server service is running and TCP/IP is enabled.",
                "Named instances also need the SQL Server Browser service.",
            ),
            codes=frozenset({"08001", "ESOCKET"}),
            patterns=("server was not found", "network-related", "named pipes provider"),
        ),
        TIMEOUT_RULE,
    ]
)

MONGODB_HINTS = HintPolicy(
    [
        HintRule(
            hints=(
                "Authentication failed for {user}.",
                "Check the username/password and the authentication database (authSource).",
            ),
            codes=frozenset({"18"}),
            patterns=("authentication failed", "auth failed"),
        ),
        HintRule(
            hints=(
                "No MongoDB server answered at {host}:{port}.",
                "Start the MongoDB service or correct the connection string.",
            ),
            patterns=("server selection", "no servers", "connection refused"),
        ),
        HOST_RULE,
        TIMEOUT_RULE,
    ]
)

ODBC_GENERIC_HINTS: tuple[str, ...] = (
    'The DSN "{dsn}" must be configured in the Windows ODBC Data Source Administrator (32-bit).',
    "Eaglesoft typically uses the ProvideX ODBC driver. Ensure it is installed and the DSN is configured.",
    "Try opening the Eaglesoft application to verify database connectivity works there first.",
    "Connection string used: {connection_string}",
)

ODBC_HINTS = HintPolicy(
    [
        HintRule(
            hints=(
                'DSN "{dsn}" is not configured in Windows ODBC Data Sources.',
                'Open "ODBC Data Sources (32-bit)" from the Windows Start menu.',
                'Add a System DSN named "{dsn}" pointing to your database.',
                "If Eaglesoft uses ProvideX, ensure the ProvideX ODBC driver is installed.",
            ),
            codes=frozenset({"IM002"}),
            patterns=("data source name not found",),
        ),
        HintRule(
            hints=(
                "Invalid username or password for the DSN.",
                "Verify credentials: UID={user}",
                "Check the DSN configuration in ODBC Data Source Administrator.",
            ),
            codes=frozenset({"28000"}),
            patterns=("login failed",),
        ),
        HintRule(
            hints=(
                "Cannot establish connection to the database server.",
                "Ensure the database server/service is running.",
                "Verify network connectivity if using a remote server.",
            ),
            codes=frozenset({"08001"}),
            patterns=("unable to connect",),
        ),
        HintRule(
            hints=(
                "The DSN and this process have different bit-widths.",
                "32-bit DSNs must be tested through the 32-bit bridge (enable 'Use ODBC' on the connection).",
            ),
            codes=frozenset({"IM014"}),
            patterns=("architecture mismatch",),
        ),
    ],
    generic=ODBC_GENERIC_HINTS,
)

BRIDGE_DEFAULT_HINTS: tuple[str, ...] = (
    'Verify DSN "{dsn}" exists in ODBC Data Source Administrator (32-bit).',
    'Open Windows Start and search for "ODBC Data Sources (32-bit)".',
    "Ensure the Eaglesoft application can connect to the database.",
)


__all__ = [
    "BRIDGE_DEFAULT_HINTS",
    "GENERIC_HINTS",
    "HintPolicy",
    "HintRule",
    "MONGODB_HINTS",
    "MSSQL_HINTS",
    "MYSQL_ACCESS_DENIED",
    "MYSQL_HINTS",
    "ODBC_HINTS",
    "POSTGRES_HINTS",
]
