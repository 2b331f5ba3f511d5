"""
Command-line launcher for ScholarAgent.

```
python -m scholar_agent.frontend.main [server|ui|both]
```

``both`` (the default) runs the API server in a daemon thread and the
Streamlit UI in the foreground.  Ports come from ``SCHOLAR_API_PORT``
(default 8001) and ``SCHOLAR_UI_PORT`` (default 8000).
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
import threading
from pathlib import Path

logger = logging.getLogger(__name__)

API_PORT = int(os.getenv("SCHOLAR_API_PORT", "8001"))
UI_PORT = int(os.getenv("SCHOLAR_UI_PORT", "8000"))
HOST = os.getenv("SCHOLAR_HOST", "0.0.0.0")


def run_server() -> None:
    from scholar_agent.backend import api_server
    api_server.run(host=HOST, port=API_PORT)


def run_ui() -> int:
    """Run Streamlit in a subprocess and return its exit code."""
    app_path = Path(__file__).parent / "app.py"
    logger.info(f"Starting Streamlit UI on {HOST}:{UI_PORT}")
    completed = subprocess.run([
        sys.executable, "-m", "streamlit", "run", str(app_path),
        "--server.port", str(UI_PORT),
        "--server.address", HOST,
    ])
    return completed.returncode


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    command = args[0].lower() if args else "both"
    if command == "server":
        run_server()
        return 0
    if command == "ui":
        return run_ui()
    if command == "both":
        # the UI only talks to the database, so it does not wait on the server
        threading.Thread(target=run_server, daemon=True).start()
        return run_ui()
    print(f"Unknown command: {command}", file=sys.stderr)
    print("Usage: python -m scholar_agent.frontend.main [server|ui|both]", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
