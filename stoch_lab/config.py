"""
config.py - Sample-Mode Override Configuration

Overrides let a run force stochastic items into COLLAPSE_MID (or back to
NORMAL) without touching model code, e.g. for debugging or "mean-path"
sensitivity runs. They are read from a properties-style text file
(`stoch_control.properties` in a model's inputs directory):

    # Collapse everything except the clinic's arrivals
    ALL = COLLAPSE_MID
    Clinic.ALL = COLLAPSE_MID
    Clinic.arrivals = NORMAL

Resolution:
----------
For an item `Owner.id`, the keys `ALL`, `Owner.ALL` and `Owner.id` are
applied in that order, each present key replacing the previous result.
Absent keys are skipped; if none is present the mode is NORMAL. An empty
file, or one holding only `ALL = NORMAL`, means "no overrides".

Example Usage:
-------------
    >>> from stoch_lab.config import OverrideConfig
    >>> config = OverrideConfig.from_text("ALL = COLLAPSE_MID\\nClinic.ALL = NORMAL")
    >>> config.resolve("Clinic", "arrivals")
    <SampleMode.NORMAL: 'NORMAL'>
    >>> config.explain("Ward", "stay")
    'ALL'
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional, Tuple, Union

from loguru import logger

from .types import ALL_GROUP_ID, InvalidParameterError, SampleMode

STOCH_CONTROL_FILE = "stoch_control.properties"

_COMMENT_PREFIXES = ("#", "!")


def _check_key(key: str) -> str:
    """Accept `ALL`, `Owner.ALL` or `Owner.id` (exactly one dot)."""
    if key == ALL_GROUP_ID:
        return key
    parts = key.split(".")
    if len(parts) != 2 or not all(part and not any(c.isspace() for c in part) for part in parts):
        raise InvalidParameterError(
            f"Override key '{key}' must be ALL, <Owner>.ALL or <Owner>.<id>"
        )
    return key


def _check_mode(value: Union[str, SampleMode]) -> SampleMode:
    if isinstance(value, SampleMode):
        return value
    return SampleMode.from_token(value)


def _name_of(owner: Union[type, str]) -> str:
    return owner.__name__ if isinstance(owner, type) else owner


def _split_line(line: str) -> Optional[Tuple[str, str]]:
    """Key and value of a properties line; None for blank and comment lines."""
    stripped = line.strip()
    if not stripped or stripped.startswith(_COMMENT_PREFIXES):
        return None
    positions = [pos for pos in (stripped.find("="), stripped.find(":")) if pos >= 0]
    if not positions:
        raise InvalidParameterError("expected 'key = value'")
    cut = min(positions)
    return stripped[:cut].strip(), stripped[cut + 1:].strip()


class OverrideConfig:
    """
    Parsed sample-mode overrides.

    Parameters
    ----------
    overrides : Mapping[str, SampleMode or str], optional
        Override key to mode. Keys and values are validated.
    source : str, optional
        Where the overrides came from (for log messages).

    Raises
    ------
    InvalidParameterError
        If a key or value is malformed.
    """

    def __init__(
        self,
        overrides: Optional[Mapping[str, Union[str, SampleMode]]] = None,
        source: Optional[str] = None,
    ):
        self._overrides: Dict[str, SampleMode] = {}
        for key, value in (overrides or {}).items():
            self._overrides[_check_key(key)] = _check_mode(value)
        self.source = source

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def empty(cls) -> "OverrideConfig":
        return cls({}, source=None)

    @classmethod
    def from_mapping(
        cls, mapping: Mapping[str, Union[str, SampleMode]], source: Optional[str] = None
    ) -> "OverrideConfig":
        return cls(mapping, source=source)

    @classmethod
    def from_text(cls, text: str, source: str = "<text>") -> "OverrideConfig":
        """
        Parse properties-style text.

        Lines are `key = value` or `key: value`; blank lines and lines
        starting with `#` or `!` are ignored; a repeated key takes its last
        value.

        Raises
        ------
        InvalidParameterError
            Naming the source and line of the first malformed entry.
        """
        overrides: Dict[str, SampleMode] = {}
        for number, line in enumerate(text.splitlines(), start=1):
            try:
                entry = _split_line(line)
                if entry is None:
                    continue
                key, value = entry
                overrides[_check_key(key)] = _check_mode(value)
            except InvalidParameterError as exc:
                raise InvalidParameterError(f"{source} line {number}: {exc}") from None
        return cls(overrides, source=source)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "OverrideConfig":
        """
        Load overrides from a properties file.

        Raises
        ------
        FileNotFoundError
            If the file does not exist.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Override file not found: {path}")
        text = path.read_text(encoding="utf-8")
        if not text.strip():
            logger.warning(f"Override file {path} is empty; using normal stochasticity")
        return cls.from_text(text, source=str(path))

    @classmethod
    def from_inputs_dir(cls, inputs_dir: Union[str, Path]) -> "OverrideConfig":
        """Load `stoch_control.properties` from a directory; missing means none."""
        path = Path(inputs_dir) / STOCH_CONTROL_FILE
        if not path.exists():
            logger.debug(f"No {STOCH_CONTROL_FILE} in {inputs_dir}; no overrides")
            return cls.empty()
        return cls.from_file(path)

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def explain(self, owner: Union[type, str], item_id: Optional[str]) -> Optional[str]:
        """The override key deciding the item's mode, or None for the default."""
        owner_name = _name_of(owner)
        item_id = ALL_GROUP_ID if item_id is None else item_id
        winner = None
        for key in (ALL_GROUP_ID, f"{owner_name}.{ALL_GROUP_ID}", f"{owner_name}.{item_id}"):
            if key in self._overrides:
                winner = key
        return winner

    def resolve(self, owner: Union[type, str], item_id: Optional[str]) -> SampleMode:
        """Effective sample mode for `Owner.id`."""
        key = self.explain(owner, item_id)
        return SampleMode.NORMAL if key is None else self._overrides[key]

    def resolve_qualified(self, qualified_id: str) -> SampleMode:
        """Effective sample mode for an `Owner.id` string."""
        owner, _, item_id = qualified_id.partition(".")
        return self.resolve(owner, item_id or None)

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def overrides(self) -> Dict[str, SampleMode]:
        return dict(self._overrides)

    @property
    def has_overrides(self) -> bool:
        """False when empty or holding only `ALL = NORMAL`."""
        if not self._overrides:
            return False
        return self._overrides != {ALL_GROUP_ID: SampleMode.NORMAL}

    def log_summary(self) -> None:
        if self.has_overrides:
            listing = ", ".join(f"{k}={v.name}" for k, v in self._overrides.items())
            logger.info(
                f"Using stochasticity control overrides from {self.source or '<mapping>'}: {listing}"
            )
        else:
            logger.info("Using normal stochasticity (no overrides)")

    def __len__(self) -> int:
        return len(self._overrides)

    def __contains__(self, key: str) -> bool:
        return key in self._overrides

    def __iter__(self) -> Iterator[str]:
        return iter(self._overrides)

    def __repr__(self) -> str:
        return f"OverrideConfig({len(self._overrides)} overrides, source={self.source!r})"
