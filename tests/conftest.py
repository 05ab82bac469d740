import dataclasses
import os
import sys

import pytest

# Ensure project root is importable (so `import main` / `import cli` work reliably across environments)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from dcr import db  # noqa: E402
from dcr.settings import settings  # noqa: E402


@pytest.fixture(autouse=True)
def event_journal(tmp_path, monkeypatch):
    """Point the event journal at an isolated sqlite file."""
    isolated = dataclasses.replace(settings, db_path=str(tmp_path / "events.db"))
    monkeypatch.setattr(db, "settings", isolated)
    db.init_db()
    return isolated
