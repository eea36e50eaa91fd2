from sqlalchemy import text
from sqlalchemy.engine import Engine

# columns added after the first connected_accounts schema shipped
_ACCOUNT_COLUMNS = {
    "refresh_token_encrypted": "TEXT",
    "token_expires_at": "DATETIME",
    "updated_at": "DATETIME",
}

def column_exists(engine: Engine, table: str, column: str) -> bool:
    with engine.connect() as conn:
        res = conn.execute(text(f"PRAGMA table_info({table})"))
        cols = [row[1] for row in res.fetchall()]
        return column in cols

def migrate(engine: Engine) -> None:
    # SQLite only; other backends get the full schema from create_all
    if engine.dialect.name != "sqlite":
        return
    missing = [c for c in _ACCOUNT_COLUMNS if not column_exists(engine, "connected_accounts", c)]
    if not missing:
        return
    with engine.begin() as conn:
        for column in missing:
            conn.execute(text(f"ALTER TABLE connected_accounts ADD COLUMN {column} {_ACCOUNT_COLUMNS[column]}"))
