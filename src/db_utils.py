"""
Shared database utilities.
Single source of truth for PostgreSQL connection-string resolution.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv


def get_conn_str() -> str:
    """Return the log-store PostgreSQL connection string.

    Checks FLARE_DATABASE_URL, then POSTGRES_CONNECTION_STRING, then
    DATABASE_URL (Heroku standard).  Normalises postgres:// to postgresql://
    for psycopg2.
    """
    load_dotenv()
    url = (
        os.getenv("FLARE_DATABASE_URL")
        or os.getenv("POSTGRES_CONNECTION_STRING")
        or os.getenv("DATABASE_URL")
        or ""
    ).strip()
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url
