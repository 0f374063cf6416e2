#!/usr/bin/env python3
"""
Container entry point: release phase, then exec gunicorn on app.wsgi:app.

Environment:
  PORT               listen port (default 8080)
  WEB_CONCURRENCY    gunicorn workers (default 2)
  GUNICORN_TIMEOUT   worker timeout in seconds (default 60)
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _port() -> int:
    raw = (os.environ.get("PORT") or "8080").strip()
    if not raw.isdigit() or not 1 <= int(raw) <= 65535:
        print(f"[start] invalid PORT {raw!r}; expected 1-65535", flush=True)
        sys.exit(1)
    return int(raw)


def gunicorn_argv(port: int) -> list[str]:
    workers = (os.environ.get("WEB_CONCURRENCY") or "2").strip()
    timeout = (os.environ.get("GUNICORN_TIMEOUT") or "60").strip()
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", workers,
        "--timeout", timeout,
        # Engines are disposed in each child after fork (see create_app).
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    port = _port()
    from scripts.release import run_release

    try:
        run_release()
    except Exception as e:
        print(f"[start] release failed: {e}", flush=True)
        sys.exit(1)

    argv = gunicorn_argv(port)
    print(f"[start] exec {' '.join(argv)}", flush=True)
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
