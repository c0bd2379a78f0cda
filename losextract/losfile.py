"""Reading and writing sight-line (LOS) files and optical depth outputs."""

from __future__ import annotations

import struct
from dataclasses import dataclass, fields
from os import PathLike
from pathlib import Path
from typing import Iterable, Optional, Union

import numpy as np

from .config import Options

PathType = Union[str, PathLike]

_HEADER = struct.Struct("=7d2i")
_INT = np.dtype("=i4")
_DOUBLE = np.dtype("=f8")
_REDSHIFT_TOLERANCE = 1.0e-3


@dataclass(frozen=True)
class LosHeader:
    """Cosmology and grid description at the start of a LOS file."""

    redshift: float
    omega_m: float
    omega_l: float
    omega_b: float
    h100: float
    box100: float
    hydrogen_fraction: float
    nbins: int
    nlos: int

    def __post_init__(self) -> None:
        if self.nbins < 1 or self.nlos < 1:
            raise ValueError(
                f"LOS file needs positive nbins and nlos, got {self.nbins} and {self.nlos}"
            )

    def pack(self) -> bytes:
        """Return the header in its binary layout."""
        return _HEADER.pack(
            self.redshift, self.omega_m, self.omega_l, self.omega_b,
            self.h100, self.box100, self.hydrogen_fraction, self.nbins, self.nlos,
        )

    def __str__(self) -> str:
        return "\n".join(
            (
                f"z      = {self.redshift:f}",
                f"omegaM = {self.omega_m:f}",
                f"omegaL = {self.omega_l:f}",
                f"omegab = {self.omega_b:f}",
                f"h100   = {self.h100:f}",
                f"box100 = {self.box100:f}",
                f"Xh     = {self.hydrogen_fraction:f}",
                f"nbins  = {self.nbins}",
                f"nlos   = {self.nlos}",
            )
        )


_PER_LOS = ("axis", "x", "y", "z")
_PER_BIN = ("posaxis", "velaxis")
_FIELDS_H1 = ("rho_h", "rho_h1", "temp_h1", "vel_h1")
_FIELDS_HE2 = ("rho_he2", "temp_he2", "vel_he2")


@dataclass(eq=False)
class LosData:
    """The contents of a LOS file; per-pixel fields have shape (nlos, nbins).

    rho_h is the gas overdensity, rho_h1 the HI/H fraction, temp_h1 the HI
    weighted temperature [K] and vel_h1 the HI weighted peculiar velocity
    [km/s]; the He2 fields are present only when the file holds them.
    """

    header: LosHeader
    axis: np.ndarray
    x: np.ndarray
    y: np.ndarray
    z: np.ndarray
    posaxis: np.ndarray
    velaxis: np.ndarray
    rho_h: np.ndarray
    rho_h1: np.ndarray
    temp_h1: np.ndarray
    vel_h1: np.ndarray
    rho_he2: Optional[np.ndarray] = None
    temp_he2: Optional[np.ndarray] = None
    vel_he2: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        nbins, nlos = self.header.nbins, self.header.nlos
        self.axis = _coerce(self.axis, _INT, (nlos,), "axis")
        for name in _PER_LOS[1:]:
            setattr(self, name, _coerce(getattr(self, name), _DOUBLE, (nlos,), name))
        for name in _PER_BIN:
            setattr(self, name, _coerce(getattr(self, name), _DOUBLE, (nbins,), name))
        for name in _FIELDS_H1:
            setattr(
                self, name, _coerce(getattr(self, name), _DOUBLE, (nlos, nbins), name)
            )
        present = [getattr(self, name) is not None for name in _FIELDS_HE2]
        if any(present) and not all(present):
            raise ValueError("HeII fields must be given all together or not at all")
        if all(present):
            for name in _FIELDS_HE2:
                setattr(
                    self, name,
                    _coerce(getattr(self, name), _DOUBLE, (nlos, nbins), name),
                )

    @property
    def has_he2(self) -> bool:
        return self.rho_he2 is not None


@dataclass(eq=False)
class OpticalDepths:
    """Optical depths and optional tau-weighted quantities, each of shape (nlos, nbins)."""

    h1: np.ndarray
    rho_tau_h1: Optional[np.ndarray] = None
    temp_tau_h1: Optional[np.ndarray] = None
    he2: Optional[np.ndarray] = None
    rho_tau_he2: Optional[np.ndarray] = None
    temp_tau_he2: Optional[np.ndarray] = None
    si2_1190: Optional[np.ndarray] = None
    si2_1193: Optional[np.ndarray] = None
    si2_1260: Optional[np.ndarray] = None
    si3_1207: Optional[np.ndarray] = None
    h1_fraction: Optional[np.ndarray] = None


def _coerce(values, dtype: np.dtype, shape: tuple[int, ...], name: str) -> np.ndarray:
    array = np.asarray(values, dtype=dtype)
    size = int(np.prod(shape))
    if array.size != size:
        raise ValueError(f"{name} has {array.size} entries, expected {size}")
    return array.reshape(shape)


def los_filename(directory: PathType, base: str, redshift: float) -> Path:
    """Return the path of the LOS file for a redshift."""
    return Path(directory) / f"{base}_z{redshift:.3f}.dat"


def tau_filename(
    directory: PathType, prefix: str, nbins: int, nlos: int, redshift: float
) -> Path:
    """Return the path of an optical depth output file."""
    return Path(directory) / f"{prefix}_v{nbins}_n{nlos}_z{redshift:.3f}.dat"


class _Reader:
    def __init__(self, raw: bytes, offset: int, path: PathType) -> None:
        self.raw = raw
        self.offset = offset
        self.path = path

    def take(self, dtype: np.dtype, count: int) -> np.ndarray:
        end = self.offset + dtype.itemsize * count
        if end > len(self.raw):
            raise ValueError(
                f"LOS file {self.path} is truncated: needs at least {end} bytes, "
                f"holds {len(self.raw)}"
            )
        values = np.frombuffer(self.raw, dtype=dtype, count=count, offset=self.offset)
        self.offset = end
        return values.copy()


def read_los(
    path: PathType,
    expected_redshift: Optional[float] = None,
    options: Optional[Options] = None,
) -> LosData:
    """Read a binary LOS file.

    The header redshift must lie within 1e-3 of expected_redshift when one
    is given; the HeII fields are read when options.he2lya is set.
    """
    options = options if options is not None else Options()
    raw = Path(path).read_bytes()
    if len(raw) < _HEADER.size:
        raise ValueError(
            f"LOS file {path} holds {len(raw)} bytes, shorter than its header"
        )
    header = LosHeader(*_HEADER.unpack_from(raw, 0))
    if (
        expected_redshift is not None
        and abs(header.redshift - expected_redshift) > _REDSHIFT_TOLERANCE
    ):
        raise ValueError(
            "redshift in the header does not match the file name: "
            f"header z={header.redshift:3.4f}, file z={expected_redshift:3.4f}"
        )

    nbins, nlos = header.nbins, header.nlos
    reader = _Reader(raw, _HEADER.size, path)
    columns = {"axis": reader.take(_INT, nlos)}
    for name in _PER_LOS[1:]:
        columns[name] = reader.take(_DOUBLE, nlos)
    for name in _PER_BIN:
        columns[name] = reader.take(_DOUBLE, nbins)
    for name in _FIELDS_H1:
        columns[name] = reader.take(_DOUBLE, nbins * nlos)
    if options.he2lya:
        for name in _FIELDS_HE2:
            columns[name] = reader.take(_DOUBLE, nbins * nlos)
    return LosData(header=header, **columns)


def _write_arrays(path: Path, arrays: Iterable[np.ndarray]) -> None:
    with path.open("wb") as handle:
        for array in arrays:
            np.ascontiguousarray(array, dtype=_DOUBLE).tofile(handle)


def write_los(path: PathType, data: LosData) -> Path:
    """Write data in the binary LOS file layout; the HeII fields go in when present."""
    path = Path(path)
    names = _PER_LOS[1:] + _PER_BIN + _FIELDS_H1
    if data.has_he2:
        names += _FIELDS_HE2
    with path.open("wb") as handle:
        handle.write(data.header.pack())
        np.ascontiguousarray(data.axis, dtype=_INT).tofile(handle)
        for name in names:
            np.ascontiguousarray(getattr(data, name), dtype=_DOUBLE).tofile(handle)
    return path


def write_tau(
    directory: PathType,
    depths: OpticalDepths,
    nbins: int,
    nlos: int,
    redshift: float,
    options: Optional[Options] = None,
) -> list[Path]:
    """Write the optical depth files selected by options; return the paths written."""
    options = options if options is not None else Options()
    size = nbins * nlos

    def need(*names: str) -> list[np.ndarray]:
        arrays = []
        for name in names:
            values = getattr(depths, name)
            if values is None:
                raise ValueError(f"optical depths lack {name}, required by the options")
            array = np.asarray(values, dtype=_DOUBLE)
            if array.size != size:
                raise ValueError(f"{name} has {array.size} entries, expected {size}")
            arrays.append(array)
        return arrays

    outputs: list[tuple[str, list[str]]] = []
    h1_names = ["h1", "h1_fraction"] if options.self_shield else ["h1"]
    outputs.append(("tauH1", h1_names))
    if options.tau_weight:
        outputs.append(("tauwH1", ["rho_tau_h1", "temp_tau_h1"]))
    if options.he2lya:
        outputs.append(("tauHe2r", ["he2"]))
        if options.tau_weight:
            outputs.append(("tauwHe2", ["rho_tau_he2", "temp_tau_he2"]))
    if options.silicon:
        outputs.extend(
            (
                ("tauSi2_1190", ["si2_1190"]),
                ("tauSi2_1193", ["si2_1193"]),
                ("tauSi2_1260", ["si2_1260"]),
                ("tauSi3_1207", ["si3_1207"]),
            )
        )

    prepared = [
        (tau_filename(directory, prefix, nbins, nlos, redshift), need(*names))
        for prefix, names in outputs
    ]
    for path, arrays in prepared:
        _write_arrays(path, arrays)
    return [path for path, _ in prepared]


__all__ = [
    "LosHeader",
    "LosData",
    "OpticalDepths",
    "los_filename",
    "tau_filename",
    "read_los",
    "write_los",
    "write_tau",
]

_ = fields  # dataclass helpers kept available for callers introspecting these types