import shutil
import tempfile
from datetime import datetime, timedelta
from pathlib import Path

from phiguard.core.crypto import generate_key
from phiguard.core.database import create_db_and_tables, create_db_engine, make_session_factory
from phiguard.core.settings import Settings
from phiguard.auth.tokens import generate_secret


class FakeClock:
    """Settable naive-UTC clock for time-dependent services."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class TemporaryDatabase:
    """File-backed SQLite database in a temporary directory."""

    def __init__(self):
        self.directory = tempfile.mkdtemp(prefix="phiguard-test-")
        self.url = f"sqlite:///{Path(self.directory) / 'test.db'}"
        self.engine = create_db_engine(self.url)
        create_db_and_tables(self.engine)
        self.session_factory = make_session_factory(self.engine)

    def close(self) -> None:
        self.engine.dispose()
        shutil.rmtree(self.directory, ignore_errors=True)


def make_settings(database_url: str = "sqlite:///:memory:", **overrides) -> Settings:
    values = {
        "DATABASE_URL": database_url,
        "PHI_ENCRYPTION_KEY": generate_key(),
        "JWT_SECRET": generate_secret(),
        "LOG_LEVEL": "WARNING",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)
