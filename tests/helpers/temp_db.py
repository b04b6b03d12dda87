from __future__ import annotations

import shutil
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from sourcing_engine.db import Database, connect_database, ensure_schema


_REPO_ROOT = Path(__file__).resolve().parents[2]
_TEMP_ROOT = Path(tempfile.gettempdir()).resolve()


def assert_safe_temp_db_path(db_path: str) -> None:
    resolved = Path(db_path).resolve()
    if not resolved.is_relative_to(_TEMP_ROOT):
        raise ValueError(f"Temporary DB must live under TEMP: {resolved}")
    if resolved.is_relative_to(_REPO_ROOT):
        raise ValueError(f"Temporary DB cannot live inside repository: {resolved}")


def remove_tree_with_retry(path: str, attempts: int = 6, base_delay: float = 0.05) -> None:
    # Connections closed by another thread can hold the file for a moment.
    for attempt in range(attempts):
        try:
            shutil.rmtree(path)
            return
        except FileNotFoundError:
            return
        except OSError:
            if attempt == attempts - 1:
                raise
            time.sleep(base_delay * (2**attempt))


@dataclass
class TempDbSandbox:
    """A throwaway directory holding one SQLite database for a test."""

    prefix: str = "sourcing_engine_tests"
    db_name: str = "sourcing_engine_test.db"
    _connections: List[Database] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        self.temp_dir = tempfile.mkdtemp(prefix=f"{self.prefix}_", dir=_TEMP_ROOT)
        self.db_path = str(Path(self.temp_dir) / self.db_name)
        assert_safe_temp_db_path(self.db_path)
        Path(self.db_path).touch()

    def database(self, *, with_schema: bool = True) -> Database:
        """Open an engine connection; the sandbox closes it on cleanup."""
        db = connect_database(self.db_path)
        self._connections.append(db)
        if with_schema:
            ensure_schema(db)
        return db

    def make_config(self, base_config, **overrides):
        attrs = {"DATABASE_DIR": self.temp_dir, "DB_PATH": self.db_path}
        attrs.update(overrides)
        return type("TempConfig", (base_config,), attrs)

    def cleanup(self) -> None:
        while self._connections:
            self._connections.pop().close()
        remove_tree_with_retry(self.temp_dir)
