# serve.py
from __future__ import annotations

import os
from pathlib import Path

import uvicorn


def main() -> None:
    # relative paths in settings (e.g. sqlite:///data/app.db) resolve against the project root
    os.chdir(Path(__file__).resolve().parent)

    # Import after cwd is prepared so .env is picked up
    from chatgate.core.settings import get_settings
    from apps.api.main import app  # noqa: WPS433

    settings = get_settings()
    uvicorn.run(app, host=settings.app_host, port=settings.app_port, reload=False)


if __name__ == "__main__":
    main()
