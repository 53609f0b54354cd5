"""Redis connection settings shared by the render worker and the job queue."""
from urllib.parse import unquote, urlparse

from arq.connections import RedisSettings

from sessionreplay.config import settings


def parse_redis_url(url: str) -> RedisSettings:
    """
    Translate ``redis://`` or ``rediss://`` URLs into arq settings.

    Args:
        url: e.g. ``redis://:secret@cache:6380/2``

    Returns:
        RedisSettings with host, port, credentials, database and TLS flag
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("redis", "rediss"):
        raise ValueError(f"Unsupported Redis URL scheme: {parsed.scheme!r}")

    database = parsed.path.lstrip("/")
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        username=unquote(parsed.username) if parsed.username else None,
        password=unquote(parsed.password) if parsed.password else None,
        database=int(database) if database else 0,
        ssl=parsed.scheme == "rediss",
    )


redis_settings = parse_redis_url(settings.redis_url)
