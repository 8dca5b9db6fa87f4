from urllib.parse import parse_qs, urlsplit

import pytest

from app.database import database_url_from_env, normalize_database_url


def _ssl_flag(url: str):
    return parse_qs(urlsplit(url).query).get("ssl", [None])[0]


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, None),
        ("", ""),
        ("sqlite:///kp.db", "sqlite+aiosqlite:///kp.db"),
        ("sqlite+aiosqlite:///tmp/kp.db", "sqlite+aiosqlite:///tmp/kp.db"),
        ("postgres://kp:pw@db.kampus.ac.id/kp", "postgresql+asyncpg://kp:pw@db.kampus.ac.id/kp"),
        ("postgresql+psycopg2://kp@localhost/kp", "postgresql+asyncpg://kp@localhost/kp"),
        ("not a url", "not a url"),
    ],
)
def test_drivers_become_async(raw, expected):
    assert normalize_database_url(raw) == expected


@pytest.mark.parametrize(
    "mode, flag",
    [("require", "true"), ("verify-full", "true"), ("disable", "false"), ("prefer", None)],
)
def test_sslmode_query_maps_to_asyncpg_flag(mode, flag):
    url = normalize_database_url(f"postgresql://kp@db/kp?sslmode={mode}&application_name=kp-api")

    params = parse_qs(urlsplit(url).query)
    assert "sslmode" not in params
    assert params.get("ssl", [None])[0] == flag
    assert params["application_name"] == ["kp-api"]


def test_pgsslmode_fills_in_for_database_url():
    url = database_url_from_env({"DATABASE_URL": "postgresql://kp@db/kp", "PGSSLMODE": "require"})

    assert url.startswith("postgresql+asyncpg://")
    assert _ssl_flag(url) == "true"


@pytest.mark.parametrize("query", ["sslmode=disable", "ssl=false"])
def test_url_ssl_setting_wins_over_pgsslmode(query):
    url = database_url_from_env({"DATABASE_URL": f"postgresql://kp@db/kp?{query}", "PGSSLMODE": "require"})

    assert _ssl_flag(url) == "false"


def test_database_url_takes_precedence():
    env = {
        "DATABASE_URL": "postgresql://kp@primary/kp",
        "POSTGRES_URL": "postgresql://kp@secondary/kp",
        "PGHOST": "tertiary",
        "PGDATABASE": "kp",
        "PGUSER": "kp",
    }
    assert urlsplit(database_url_from_env(env)).hostname == "primary"

    env.pop("DATABASE_URL")
    assert urlsplit(database_url_from_env(env)).hostname == "secondary"


def test_pg_variables_build_a_url():
    url = database_url_from_env(
        {
            "PGHOST": "db.internal",
            "PGPORT": "6543",
            "PGDATABASE": "kp",
            "PGUSER": "kp_app",
            "PGPASSWORD": "s3cret",
            "PGSSLMODE": "verify-ca",
        }
    )

    parts = urlsplit(url)
    assert parts.scheme == "postgresql+asyncpg"
    assert (parts.hostname, parts.port, parts.path) == ("db.internal", 6543, "/kp")
    assert (parts.username, parts.password) == ("kp_app", "s3cret")
    assert _ssl_flag(url) == "true"


def test_incomplete_pg_variables_resolve_to_nothing():
    assert database_url_from_env({"PGHOST": "db.internal", "PGUSER": "kp_app"}) is None
    assert database_url_from_env({}) is None
