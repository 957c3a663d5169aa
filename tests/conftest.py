import os

os.environ.setdefault("LOG_TO_FILE", "false")

import pytest  # noqa: E402

from core.storage import CatalogStore  # noqa: E402


@pytest.fixture
def store(tmp_path) -> CatalogStore:
    s = CatalogStore(str(tmp_path / "catalog.sqlite3"))
    s.ensure_db()
    return s
