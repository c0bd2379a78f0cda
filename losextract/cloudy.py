"""Tabulated silicon ion fractions and their interpolation in z, log T and log nH."""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass
from os import PathLike
from pathlib import Path
from typing import Union

import numpy as np

DEFAULT_SIZE_FILE = Path("cloudy_tables/tablesize_p19.dat")
DEFAULT_TABLE_FILE = Path("cloudy_tables/cloudytable_p19.dat")

_AXIS = struct.Struct("=ddi")
_EDGE = 1.0e-6

PathType = Union[str, PathLike]


@dataclass(frozen=True)
class TableRange:
    """One evenly spaced table axis: first value, last value and number of points."""

    minimum: float
    maximum: float
    count: int

    def __post_init__(self) -> None:
        if self.count < 2:
            raise ValueError(f"table axis needs at least two points, got {self.count}")
        if not self.maximum > self.minimum:
            raise ValueError(
                f"table axis maximum {self.maximum} must exceed minimum {self.minimum}"
            )

    def _position(self, value: float) -> tuple[int, float]:
        t = (value - self.minimum) * ((self.count - 1.0) / (self.maximum - self.minimum))
        j = math.floor(t)
        return j, t - j

    def _clamp(self, value: float) -> float:
        lo = self.minimum
        hi = self.maximum - _EDGE
        value = value if value > lo else lo
        return value if value < hi else hi


def _interpolate(
    grid: np.ndarray, jz: int, fz: float, jd: int, fd: float, jt: int, ft: float
) -> float:
    block = grid[jz : jz + 2, jd : jd + 2, jt : jt + 2]
    zint = (1 - fz) * block[0] + fz * block[1]
    dint = (1 - fd) * zint[0] + fd * zint[1]
    return float((1 - ft) * dint[0] + ft * dint[1])


@dataclass(eq=False)
class IonTable:
    """log10 SiII/Si and SiIII/Si on a (redshift, log nH, log T) grid."""

    redshift: TableRange
    temperature: TableRange
    density: TableRange
    si2: np.ndarray
    si3: np.ndarray

    def __post_init__(self) -> None:
        shape = (self.redshift.count, self.density.count, self.temperature.count)
        size = shape[0] * shape[1] * shape[2]
        for name in ("si2", "si3"):
            values = np.asarray(getattr(self, name), dtype=np.float64)
            if values.size != size:
                raise ValueError(
                    f"{name} table has {values.size} entries, expected {size}"
                )
            setattr(self, name, values.reshape(shape))

    def ion_fractions(
        self, redshift: float, log_t: float, log_nh: float
    ) -> tuple[float, float]:
        """Return (SiII/Si, SiIII/Si) at the given redshift, log10(T/K) and log10(nH/cm^-3).

        Temperature and density are clamped to the table; a redshift outside
        the table raises ValueError.
        """
        jz, fz = self.redshift._position(redshift)
        if jz < 0 or jz > self.redshift.count - 2:
            raise ValueError(
                f"z={redshift:.3f} is outside range of cloudy tables "
                f"(z_min={self.redshift.minimum:.3f}, z_max<{self.redshift.maximum:.3f})"
            )
        jd, fd = self.density._position(self.density._clamp(log_nh))
        jt, ft = self.temperature._position(self.temperature._clamp(log_t))
        si2 = 10.0 ** _interpolate(self.si2, jz, fz, jd, fd, jt, ft)
        si3 = 10.0 ** _interpolate(self.si3, jz, fz, jd, fd, jt, ft)
        return si2, si3


def read_table_size(path: PathType) -> tuple[TableRange, TableRange, TableRange]:
    """Read the (redshift, temperature, density) axes from a binary table-size file."""
    raw = Path(path).read_bytes()
    needed = 3 * _AXIS.size
    if len(raw) < needed:
        raise ValueError(
            f"table size file {path} holds {len(raw)} bytes, expected {needed}"
        )
    redshift, temperature, density = (
        TableRange(*_AXIS.unpack_from(raw, i * _AXIS.size)) for i in range(3)
    )
    return redshift, temperature, density


def load_ion_table(
    size_path: PathType = DEFAULT_SIZE_FILE, table_path: PathType = DEFAULT_TABLE_FILE
) -> IonTable:
    """Load the table axes and the SiII and SiIII ion fraction tables."""
    redshift, temperature, density = read_table_size(size_path)
    n = redshift.count * temperature.count * density.count
    values = np.fromfile(Path(table_path), dtype=np.float64, count=2 * n)
    if values.size < 2 * n:
        raise ValueError(
            f"ion table {table_path} holds {values.size} values, expected {2 * n}"
        )
    return IonTable(redshift, temperature, density, values[:n], values[n:])