#!/usr/bin/env python3
"""Run the tokendash server.

Usage:
  python -m tokendash
  python -m tokendash --port 4001
  python -m tokendash --path ~/.claude/projects/<project>/<session>.jsonl
"""
from __future__ import annotations

import argparse
from pathlib import Path

import uvicorn

from tokendash import config


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Live token usage for Claude Code session logs")
    parser.add_argument("--host", default=config.HOST)
    parser.add_argument("--port", type=int, default=config.PORT)
    parser.add_argument("--path", default=config.SESSION_PATH, help="Default session .jsonl to stream")
    args = parser.parse_args(argv)

    if args.path:
        config.SESSION_PATH = str(Path(args.path).expanduser().resolve())

    from tokendash.main import app

    uvicorn.run(app, host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
