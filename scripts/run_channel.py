"""Bootstraps the channel session loop with repository-relative imports."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from pathlib import Path


def main() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(repo_root))

    # Lazy import after adjusting sys.path
    from courier.bootstrap import serve_forever  # type: ignore
    from courier.config import get_settings  # type: ignore

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(serve_forever(settings))


if __name__ == "__main__":
    main()
