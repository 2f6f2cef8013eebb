class SqlRunnerError(Exception):
    """Base exception for sql_runner."""

class ConfigError(SqlRunnerError):
    """Raised when a data source or the process settings are unusable."""

class TimeoutNotSupported(SqlRunnerError):
    pass

class CacheStoreError(SqlRunnerError):
    pass


TIMEOUT_MESSAGE = "Query timed out :("

TIMEOUT_ERRORS = [
    "canceling statement due to statement timeout",  # postgres
    "cancelled on user's request",  # redshift
    "canceled on user's request",  # redshift
    "system requested abort",  # redshift
    "maximum statement execution time exceeded",  # mysql
]

# Server error codes that only a statement timeout produces. SQLSTATE 57014 and
# MySQL 1317 also cover manual cancels, so those are recognised by message only.
TIMEOUT_ERROR_CODES = {
    3024,  # mysql ER_QUERY_TIMEOUT
}
