"""
io.py - Run-Settings Snapshots

Records which stochastic configuration actually governed a run: for every
registered item its qualified id, resolved sample mode, family, compact
description and explicit parameter view.

Supported formats:
- JSON: Complete snapshot, loadable with `load_run_settings`
- TEXT: Properties lines `Owner.id = MODE` with the description as a
  comment, so a run's modes can be replayed as an override file

Example Usage:
-------------
    >>> from stoch_lab.io import save_run_settings, load_run_settings
    >>>
    >>> snapshots = run.finalise_registrations()
    >>> save_run_settings(snapshots, "settings.json", run_id=run.run_id)
    >>> settings = load_run_settings("settings.json")
    >>> settings.items[0].qualified_id
    'Clinic.arrivals'
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
from loguru import logger

from .distributions import StochasticItem
from .types import DistributionFamily, RunId, SampleMode


class SettingsFormat(str, Enum):
    """Supported run-settings file formats."""
    JSON = "json"
    TEXT = "text"


# =============================================================================
# SNAPSHOTS
# =============================================================================

@dataclass
class ItemSnapshot:
    """
    What governed one stochastic item in a run.

    Attributes
    ----------
    qualified_id : str
        `Owner.id` of the item.
    sample_mode : SampleMode
        Mode resolved for the run.
    family : DistributionFamily
        Distribution family.
    description : str
        Compact representation, e.g. "N(5.0,1.5)".
    params : dict
        JSON-compatible parameter view.
    """
    qualified_id: str
    sample_mode: SampleMode
    family: DistributionFamily
    description: str
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "qualified_id": self.qualified_id,
            "sample_mode": self.sample_mode.name,
            "family": self.family.name,
            "description": self.description,
            "params": self.params,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ItemSnapshot":
        return cls(
            qualified_id=data["qualified_id"],
            sample_mode=SampleMode.from_token(data["sample_mode"]),
            family=DistributionFamily[data["family"]],
            description=data["description"],
            params=data.get("params", {}),
        )


@dataclass
class RunSettings:
    """A loaded settings file: the run id (if recorded) and item snapshots."""
    run_id: Optional[RunId]
    items: List[ItemSnapshot]


def _plain(value: Any) -> Any:
    """Convert numpy values and tuples to JSON-compatible builtins."""
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, np.ndarray):
        return _plain(value.tolist())
    if isinstance(value, np.generic):
        return value.item()
    return value


def snapshot_item(item: StochasticItem) -> ItemSnapshot:
    """
    Snapshot a registered item.

    Raises
    ------
    UnregisteredItemError
        If the item is not registered for a run.
    """
    return ItemSnapshot(
        qualified_id=item.qualified_id,
        sample_mode=item.sample_mode,
        family=item.family,
        description=repr(item),
        params=_plain(item.params()),
    )


# =============================================================================
# SAVE / LOAD
# =============================================================================

def save_run_settings(
    snapshots: Sequence[ItemSnapshot],
    path: Union[str, Path],
    format: SettingsFormat = SettingsFormat.JSON,
    run_id: Optional[RunId] = None,
) -> Path:
    """
    Write run settings to disk.

    Parameters
    ----------
    snapshots : Sequence[ItemSnapshot]
        Items to record, typically from `RunRegistry.finalise_registrations()`.
    path : str or Path
        Destination file; parent directories are created.
    format : SettingsFormat, default=SettingsFormat.JSON
        JSON (complete, reloadable) or TEXT (override-file replay).
    run_id : str, optional
        Run the settings belong to.

    Returns
    -------
    Path
        The written file.
    """
    path = Path(path)
    format = SettingsFormat(format)
    path.parent.mkdir(parents=True, exist_ok=True)

    if format == SettingsFormat.JSON:
        _save_json(snapshots, path, run_id)
    elif format == SettingsFormat.TEXT:
        _save_text(snapshots, path, run_id)
    else:
        raise ValueError(f"Unsupported format: {format}")

    logger.info(f"Saved settings of {len(snapshots)} stochastic items to {path}")
    return path


def load_run_settings(path: Union[str, Path]) -> RunSettings:
    """
    Load a JSON run-settings file.

    TEXT files are override files; load those with `OverrideConfig.from_file`.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the file is not a run-settings JSON document.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict) or "items" not in data:
        raise ValueError(f"Not a run-settings file: {path}")
    return RunSettings(
        run_id=data.get("run_id"),
        items=[ItemSnapshot.from_dict(entry) for entry in data["items"]],
    )


def _save_json(snapshots: Sequence[ItemSnapshot], path: Path, run_id: Optional[RunId]) -> None:
    data = {
        "run_id": run_id,
        "items": [snap.to_dict() for snap in snapshots],
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(_plain(data), f, indent=2)


def _save_text(snapshots: Sequence[ItemSnapshot], path: Path, run_id: Optional[RunId]) -> None:
    lines = [f"# Stochastic item settings for run {run_id or '<unknown>'}"]
    for snap in snapshots:
        lines.append(f"# {snap.family.name}: {snap.description}")
        lines.append(f"{snap.qualified_id} = {snap.sample_mode.name}")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
