from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


def normalize_database_url(url: str) -> str:
    """Coerce any postgres URL onto the asyncpg driver.

    Hosted providers hand out ``postgres://`` URLs with ``sslmode``/``ssl``
    query flags; asyncpg only understands ``ssl``.
    """
    url = (url or "").strip()
    if not url:
        return url

    parts = urlsplit(url)
    scheme = parts.scheme
    if scheme in {"postgres", "postgresql", "postgresql+psycopg", "postgresql+psycopg2"}:
        scheme = "postgresql+asyncpg"

    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    ssl_key = next((key for key in query if key.lower() in {"ssl", "sslmode"}), None)
    if ssl_key is not None:
        normalized = query.pop(ssl_key).lower().strip()
        if normalized in {"0", "false", "no", "off", "disable"}:
            query["ssl"] = "disable"
        elif normalized in {"verify-ca", "verify-full"}:
            query["ssl"] = normalized
        else:
            query["ssl"] = "require"

    new_query = urlencode(query, doseq=True)
    return urlunsplit((scheme, parts.netloc, parts.path, new_query, parts.fragment))
