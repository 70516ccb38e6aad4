from __future__ import annotations

import logging
import os
from pathlib import Path


logger = logging.getLogger("devflow-deployer.env")


def load_local_env(env_path: Path | str = Path(".env"), *, override: bool = False) -> list[str]:
    """Load KEY=value pairs from a local .env file into ``os.environ``.

    Variables already present in the process environment win unless
    ``override`` is set, so provider tokens exported by the shell are never
    replaced by a stale file. Returns the keys that were applied.
    """
    path = Path(env_path)
    if not path.exists():
        return []

    applied: list[str] = []
    for number, raw_line in enumerate(path.read_text().splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if "=" not in line:
            logger.warning("Skipping malformed .env line %d in %s", number, path)
            continue

        key, value = line.split("=", 1)
        clean_key = key.strip()
        if not clean_key:
            continue
        if clean_key in os.environ and not override:
            continue
        os.environ[clean_key] = value.strip().strip('"').strip("'")
        applied.append(clean_key)

    if applied:
        logger.info("Loaded %d setting(s) from %s", len(applied), path)
    return applied
