"""Connection URL and engine option helpers for the credential store"""
from urllib.parse import quote_plus


def get_database_url(
    driver: str,
    host: str | None,
    port: int,
    user: str | None,
    password: str | None,
    name: str | None,
) -> str:
    """
    Build an SQLAlchemy URL from DB_* components.

    User and password are URL-quoted, so generated passwords containing
    '@', ':' or '/' survive.

    Raises:
        RuntimeError: If host, user, password or database name is missing

    Example:
        >>> get_database_url("postgresql+asyncpg", "db", 5432, "guardian", "p@ss", "auth")
        'postgresql+asyncpg://guardian:p%40ss@db:5432/auth'
    """
    missing = [
        label
        for label, value in (("DB_HOST", host), ("DB_USER", user), ("DB_PASSWORD", password), ("DB_NAME", name))
        if not value
    ]
    if missing:
        raise RuntimeError(f"Database settings missing: {', '.join(missing)}")
    return f"{driver}://{quote_plus(user)}:{quote_plus(password)}@{host}:{port}/{name}"


def engine_options(url: str | None) -> dict:
    """Keyword arguments for create_async_engine that depend on the backend."""
    if url and url.startswith("sqlite"):
        # aiosqlite hands the connection to a worker thread
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}
