# emma/main.py
from __future__ import annotations

from emma.bootstrap import create_app
from emma.lifecycle import register_lifecycle

app = create_app()
register_lifecycle(app)
