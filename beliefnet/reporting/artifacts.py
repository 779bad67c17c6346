"""Run artifact helpers."""

from __future__ import annotations

import json
import os
import platform
import time
from pathlib import Path
from typing import Mapping

from ._git import git_sha


def write_manifest(
    path: str | Path,
    *,
    config: Mapping[str, object],
    network: Mapping[str, object],
    dataset_provenance: Mapping[str, object],
) -> str:
    """Write a manifest JSON file capturing reproducibility metadata."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    manifest = {
        "git_sha": git_sha(),
        "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "config": config,
        "network": dict(network),
        "dataset": dict(dataset_provenance),
        "environment": {
            "python": platform.python_version(),
            "threads": os.environ.get("OMP_NUM_THREADS", "unset"),
        },
    }
    path.write_text(json.dumps(manifest, indent=2))
    return str(path)
