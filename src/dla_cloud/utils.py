# src/dla_cloud/utils.py
from __future__ import annotations

import json
import os
import time
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import trimesh


@dataclass
class ClusterResult:
    """Container for a finished aggregate handed to exporters."""

    positions: Optional[np.ndarray] = None
    radii: Optional[np.ndarray] = None
    parents: Optional[np.ndarray] = None
    meta: Optional[Dict[str, Any]] = None

    def ensure_meta(self) -> Dict[str, Any]:
        if self.meta is None:
            self.meta = {}
        return self.meta

    def __len__(self) -> int:
        return 0 if self.positions is None else int(self.positions.shape[0])


def now_str() -> str:
    return time.strftime("%Y%m%d-%H%M%S")


def save_cluster_result(
    path: str | os.PathLike[str], result: ClusterResult, *, overwrite: bool = True
) -> None:
    """Serialize a ClusterResult to a compressed .npz archive."""
    out_dir = Path(path).parent
    out_dir.mkdir(parents=True, exist_ok=True)
    if not overwrite and Path(path).exists():
        raise FileExistsError(f"{path} already exists")

    out: Dict[str, Any] = {}
    if result.positions is not None:
        out["positions"] = np.asarray(result.positions, dtype=np.float32)
    if result.radii is not None:
        out["radii"] = np.asarray(result.radii, dtype=np.float32)
    if result.parents is not None:
        out["parents"] = np.asarray(result.parents, dtype=np.int64)

    # numpy arrays in meta go to the top level, everything else is pickled
    meta_clean = {}
    for key, value in (result.meta or {}).items():
        if isinstance(value, np.ndarray):
            out[key] = value
        else:
            meta_clean[key] = value
    out["meta"] = meta_clean

    np.savez_compressed(path, **out)


def load_cluster(path: str | os.PathLike[str]) -> ClusterResult:
    """
    Load a .npz archive written by :func:`save_cluster_result`.
    """
    data = np.load(path, allow_pickle=True)
    positions = data["positions"] if "positions" in data else None
    radii = data["radii"] if "radii" in data else None
    parents = data["parents"] if "parents" in data else None
    meta: Dict[str, Any] = {}
    if "meta" in data:
        meta_raw = data["meta"]
        meta = meta_raw.item() if hasattr(meta_raw, "item") else dict(meta_raw)
    for key in data.files:
        if key not in {"positions", "radii", "parents", "meta"} and key not in meta:
            meta[key] = data[key]
    return ClusterResult(positions=positions, radii=radii, parents=parents, meta=meta)


def write_ply(
    path: str | os.PathLike[str], positions: np.ndarray, *, encoding: str = "ascii"
) -> None:
    """
    Write particle centres as PLY ``vertex`` elements.

    Older rdla dumps named the element ``point``; readers matching on the
    element name need to accept both.
    """
    points = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    out_dir = Path(path).parent
    out_dir.mkdir(parents=True, exist_ok=True)
    cloud = trimesh.PointCloud(points)
    cloud.export(str(path), file_type="ply", encoding=encoding)


def load_params(path: str | os.PathLike[str]) -> Dict[str, Any]:
    """
    Load simulation parameters from JSON or TOML.
    """
    path = str(path)
    with open(path, "rb") as fh:
        data = fh.read()
    suffix = Path(path).suffix.lower()
    if suffix in {".json", ""}:
        return json.loads(data.decode("utf-8"))
    if suffix in {".toml", ".tml"}:
        return tomllib.loads(data.decode("utf-8"))
    raise ValueError(f"Unsupported parameter file format: {suffix}")
