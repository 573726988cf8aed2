"""Run artifacts: the reproducibility manifest and serialized networks."""

from __future__ import annotations

import json
import os
import platform
import subprocess
import time
from pathlib import Path
from typing import Mapping

import numpy as np

from ..core.errors import DeserializationError
from ..core.network import NeuralNet


def git_sha() -> str:
    try:
        out = subprocess.check_output(["git", "rev-parse", "HEAD"], stderr=subprocess.DEVNULL)
    except (OSError, subprocess.CalledProcessError):  # pragma: no cover - git may be unavailable
        return "unknown"
    return out.decode().strip()


def write_manifest(
    path: str | Path,
    *,
    config: Mapping[str, object],
    dataset_provenance: Mapping[str, object],
    network: Mapping[str, object] | None = None,
) -> str:
    """Write a manifest JSON file capturing reproducibility metadata."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    manifest = {
        "git_sha": git_sha(),
        "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "config": config,
        "dataset": dict(dataset_provenance),
        "network": dict(network or {}),
        "environment": {
            "python": platform.python_version(),
            "numpy": np.__version__,
            "run_tag": os.environ.get("LAYERNET_RUN_TAG", ""),
        },
    }
    path.write_text(json.dumps(manifest, indent=2))
    return str(path)


def save_network(network: NeuralNet, path: str | Path) -> str:
    """Write ``network.serialize()`` as JSON."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(network.serialize(), indent=2))
    return str(path)


def load_network(path: str | Path, rand: np.random.Generator | None = None) -> NeuralNet:
    """Read a network written by :func:`save_network`."""

    text = Path(path).read_text()
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as exc:
        raise DeserializationError(f"{path} is not valid JSON: {exc}") from exc
    return NeuralNet.deserialize(doc, rand=rand)


__all__ = ["git_sha", "load_network", "save_network", "write_manifest"]
