# Bring an existing SQLite database up to the current connected_accounts schema.
# Usage: DATABASE_URL=sqlite:///./multipost.db python scripts/apply_sqlite_migration.py
from multipost.db.base import engine
from multipost.db.migrate import _ACCOUNT_COLUMNS, column_exists
from multipost.deps import init_db

init_db()
for col in _ACCOUNT_COLUMNS:
    print(f"{col}: {'ok' if column_exists(engine, 'connected_accounts', col) else 'missing'}")
