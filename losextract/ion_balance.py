"""Equilibrium hydrogen and helium ionisation with a self-shielding correction."""

from __future__ import annotations

import math
from dataclasses import dataclass
from os import PathLike
from pathlib import Path
from typing import Union

import numpy as np

from .config import BOLTZMANN, ELECTRONVOLT

PathType = Union[str, PathLike]

SMALLNUM = 1.0e-60
TMIN = 1.0
TMAX = 1.0e9
MAXITER = 150
NCOOLTAB = 2000
TABLESIZE = 500

# Verner & Ferland (1996) case-A recombination fit coefficients: H+, He+, He++
_A_VF96 = (7.982e-11, 9.356e-10, 1.891e-10)
_B_VF96 = (0.7480, 0.7892, 0.7524)
_T0_VF96 = (3.148e0, 4.266e-2, 9.370e0)
_T1_VF96 = (7.036e5, 4.677e6, 2.7674e6)

# Voronov (1997) collisional ionisation fit coefficients: H0, He0, He+
_DE_VOR97 = (13.6, 24.6, 54.4)
_P_VOR97 = (0.0, 0.0, 1.0)
_A_VOR97 = (0.291e-7, 0.175e-7, 0.205e-8)
_X_VOR97 = (0.232, 0.180, 0.265)
_K_VOR97 = (0.39, 0.35, 0.25)

# Self-shielding fits at z = 0, 1, ..., 10 (Rahmati et al. 2013; Chardin et al. 2017)
_SS_N0 = (1.148e-3, 5.129e-3, 8.710e-3, 9.0e-3, 9.3e-3, 1.03e-2,
          7.0e-3, 2.7e-3, 4.0e-3, 4.6e-3, 4.7e-3)
_SS_ALPHA1 = (-3.98, -2.94, -2.22, -1.12, -0.95, -1.29,
              -0.94, -0.86, -0.74, -0.64, -0.39)
_SS_ALPHA2 = (-1.09, -0.90, -1.09, -1.65, -1.50, -1.60,
              -1.51, -1.27, -1.40, -1.21, -0.86)
_SS_BETA = (1.29, 1.21, 1.75, 5.32, 5.87, 5.06,
            6.11, 7.08, 7.12, 9.99, 12.94)
_SS_FVAL = (0.01, 0.03, 0.03, 0.018, 0.015, 0.024,
            0.029, 0.041, 0.041, 0.029, 0.006)


class ConvergenceError(RuntimeError):
    """The electron density iteration did not converge."""


@dataclass(frozen=True)
class Rates:
    """Recombination and collisional ionisation rates [cm^3 s^-1] at one temperature."""

    alpha_hp: float
    alpha_hep: float
    alpha_hepp: float
    alpha_d: float
    gamma_eh0: float
    gamma_ehe0: float
    gamma_ehep: float


@dataclass(eq=False)
class RateTable:
    """Rate coefficients tabulated on an even grid in log10(T/K)."""

    log_tmin: float
    log_tmax: float
    delta_t: float
    alpha_hp: np.ndarray
    alpha_hep: np.ndarray
    alpha_hepp: np.ndarray
    alpha_d: np.ndarray
    gamma_eh0: np.ndarray
    gamma_ehe0: np.ndarray
    gamma_ehep: np.ndarray

    def rates(self, log_t: float) -> Rates:
        """Linearly interpolate every rate at log10(T/K) inside the table."""
        if not self.log_tmin <= log_t < self.log_tmax:
            raise ValueError(
                f"log T={log_t} outside rate table [{self.log_tmin}, {self.log_tmax})"
            )
        t = (log_t - self.log_tmin) / self.delta_t
        j = int(t)
        last = len(self.alpha_hp) - 2
        if j > last:
            j = last
        fhi = t - j
        flow = 1.0 - fhi

        def at(values: np.ndarray) -> float:
            return float(flow * values[j] + fhi * values[j + 1])

        return Rates(
            alpha_hp=at(self.alpha_hp),
            alpha_hep=at(self.alpha_hep),
            alpha_hepp=at(self.alpha_hepp),
            alpha_d=at(self.alpha_d),
            gamma_eh0=at(self.gamma_eh0),
            gamma_ehe0=at(self.gamma_ehe0),
            gamma_ehep=at(self.gamma_ehep),
        )


def _case_a(temperature: np.ndarray, k: int) -> np.ndarray:
    r0 = np.sqrt(temperature / _T0_VF96[k])
    r1 = np.sqrt(temperature / _T1_VF96[k])
    return _A_VF96[k] / (
        r0 * (1.0 + r0) ** (1.0 - _B_VF96[k]) * (1.0 + r1) ** (1.0 + _B_VF96[k])
    )


def _collisional(t_ev: np.ndarray, k: int) -> np.ndarray:
    u = _DE_VOR97[k] / t_ev
    rate = (
        _A_VOR97[k] * u ** _K_VOR97[k] * np.exp(-u)
        * (1.0 + _P_VOR97[k] * np.sqrt(u)) / (_X_VOR97[k] + u)
    )
    return np.where(u < 70, rate, 0.0)


def make_rate_table() -> RateTable:
    """Tabulate case-A recombination, dielectronic and collisional ionisation rates."""
    log_tmin = math.log10(TMIN)
    log_tmax = math.log10(TMAX)
    delta_t = (log_tmax - log_tmin) / NCOOLTAB
    temperature = 10.0 ** (log_tmin + delta_t * np.arange(NCOOLTAB + 1))
    t_ev = temperature * BOLTZMANN / ELECTRONVOLT
    with np.errstate(all="ignore"):
        dielectronic = (
            1.9e-3 * (1.0 + 0.3 * np.exp(-9.4e4 / temperature))
            * np.exp(-4.7e5 / temperature) * temperature ** -1.5
        )
        alpha_d = np.where(4.7e5 / temperature < 70, dielectronic, 0.0)
        return RateTable(
            log_tmin=log_tmin,
            log_tmax=log_tmax,
            delta_t=delta_t,
            alpha_hp=_case_a(temperature, 0),
            alpha_hep=_case_a(temperature, 1),
            alpha_hepp=_case_a(temperature, 2),
            alpha_d=alpha_d,
            gamma_eh0=_collisional(t_ev, 0),
            gamma_ehe0=_collisional(t_ev, 1),
            gamma_ehep=_collisional(t_ev, 2),
        )


@dataclass(frozen=True)
class PhotoRates:
    """Photoionisation rates [s^-1] for H0, He0 and He+; inactive means no UV background."""

    gamma_h0: float
    gamma_he0: float
    gamma_hep: float
    active: bool


_NO_UVB = PhotoRates(0.0, 0.0, 0.0, False)


@dataclass(eq=False)
class UVBTable:
    """A UV background table: log10(1+z), photoionisation and photoheating rates."""

    log_z: np.ndarray
    gamma_h0: np.ndarray
    gamma_he0: np.ndarray
    gamma_hep: np.ndarray
    heat_h0: np.ndarray
    heat_he0: np.ndarray
    heat_hep: np.ndarray

    def __len__(self) -> int:
        return len(self.log_z)

    def photoionisation_rates(self, redshift: float) -> PhotoRates:
        """Interpolate the rates in log space at the given redshift."""
        n = len(self)
        if n == 0:
            return _NO_UVB
        logz = math.log10(redshift + 1.0)
        below = np.nonzero(self.log_z < logz)[0]
        # index of the last entry below logz within the leading run of such entries
        ilow = 0
        for i in below:
            if i != ilow and i != ilow + 1:
                break
            ilow = int(i)
        if logz > self.log_z[-1] or ilow + 1 >= n:
            return _NO_UVB
        if self.gamma_h0[ilow] == 0 or self.gamma_h0[ilow + 1] == 0:
            return _NO_UVB
        dzlow = logz - float(self.log_z[ilow])
        dzhi = float(self.log_z[ilow + 1]) - logz

        def interp(values: np.ndarray) -> float:
            lo = math.log10(float(values[ilow]))
            hi = math.log10(float(values[ilow + 1]))
            return 10.0 ** ((dzhi * lo + dzlow * hi) / (dzlow + dzhi))

        return PhotoRates(
            gamma_h0=interp(self.gamma_h0),
            gamma_he0=interp(self.gamma_he0),
            gamma_hep=interp(self.gamma_hep),
            active=True,
        )


def read_treecool(path: PathType) -> UVBTable:
    """Read a TREECOOL text table, keeping the leading rows with a non-zero H0 rate."""
    tokens = Path(path).read_text().split()
    try:
        values = [float(token) for token in tokens]
    except ValueError as exc:
        raise ValueError(f"malformed ionisation table {path}: {exc}") from None
    nrows = min(len(values) // 7, TABLESIZE)
    if len(values) % 7 and len(values) // 7 < TABLESIZE:
        raise ValueError(
            f"ionisation table {path} has {len(values)} values, not a multiple of 7"
        )
    rows = np.array(values[: nrows * 7], dtype=np.float64).reshape(nrows, 7)
    zero = np.nonzero(rows[:, 1] == 0.0)[0]
    if zero.size:
        rows = rows[: zero[0]]
    return UVBTable(*(rows[:, k].copy() for k in range(7)))


@dataclass(frozen=True)
class SelfShieldParams:
    """Parameters of the self-shielding fit to the HI photoionisation rate."""

    n0: float
    alpha1: float
    alpha2: float
    beta: float
    fval: float


def self_shield_fit(redshift: float) -> SelfShieldParams:
    """Interpolate the self-shielding fit parameters, held constant beyond z=10."""
    t = redshift / 1.0
    j = int(t)
    if j < 0:
        raise ValueError(f"redshift {redshift} is below the self-shielding fits")
    if j >= 10:
        return SelfShieldParams(
            _SS_N0[10], _SS_ALPHA1[10], _SS_ALPHA2[10], _SS_BETA[10], _SS_FVAL[10]
        )
    fhi = t - j
    flow = 1.0 - fhi

    def at(values: tuple[float, ...]) -> float:
        return flow * values[j] + fhi * values[j + 1]

    return SelfShieldParams(
        at(_SS_N0), at(_SS_ALPHA1), at(_SS_ALPHA2), at(_SS_BETA), at(_SS_FVAL)
    )


@dataclass(eq=False)
class IonBalance:
    """Ionisation equilibrium solver for one redshift and UV background."""

    rate_table: RateTable
    photo: PhotoRates
    shield: SelfShieldParams
    hydrogen_fraction: float

    def ion_balance(self, nh_cgs: float, log_t: float) -> float:
        """Return the equilibrium HI/H fraction without self-shielding."""
        return self._solve(nh_cgs, log_t, self.photo.gamma_h0)

    def self_shield(self, nh_cgs: float, log_t: float) -> float:
        """Return the HI/H fraction with the self-shielded HI photoionisation rate."""
        p = self.shield
        f = nh_cgs / p.n0
        gamma_ss = self.photo.gamma_h0 * (
            (1.0 - p.fval) * (1.0 + f ** p.beta) ** p.alpha1
            + p.fval * (1.0 + f) ** p.alpha2
        )
        return self._solve(nh_cgs, log_t, gamma_ss)

    def _solve(self, nh_cgs: float, log_t: float, gamma_h0: float) -> float:
        table = self.rate_table
        if log_t <= table.log_tmin:
            return 1.0
        if log_t >= table.log_tmax:
            return 0.0

        r = table.rates(log_t)
        x = self.hydrogen_fraction
        yhelium = (1.0 - x) / (4.0 * x)
        active = self.photo.active

        ne = 1.0
        necgs = ne * nh_cgs
        nh0 = 0.0
        niter = 0
        while True:
            niter += 1
            if necgs <= 1.0e-25 or not active:
                g_h0 = g_he0 = g_hep = 0.0
            else:
                g_h0 = gamma_h0 / necgs
                g_he0 = self.photo.gamma_he0 / necgs
                g_hep = self.photo.gamma_hep / necgs

            nh0 = r.alpha_hp / (r.alpha_hp + r.gamma_eh0 + g_h0)
            nhp = 1.0 - nh0

            if g_he0 + r.gamma_ehe0 <= SMALLNUM:
                nhep = nhepp = 0.0
            else:
                nhep = yhelium / (
                    1.0
                    + (r.alpha_hep + r.alpha_d) / (r.gamma_ehe0 + g_he0)
                    + (r.gamma_ehep + g_hep) / r.alpha_hepp
                )
                nhepp = nhep * (r.gamma_ehep + g_hep) / r.alpha_hepp

            neold = ne
            ne = nhp + nhep + 2.0 * nhepp
            necgs = ne * nh_cgs

            if not active:
                break

            ne = 0.5 * (ne + neold)
            necgs = ne * nh_cgs

            if abs(ne - neold) < 1.0e-4 or niter >= MAXITER:
                break

        if niter >= MAXITER:
            raise ConvergenceError("no convergence reached in ion balance")
        return nh0


def init_cool(
    treecool_path: PathType, redshift: float, hydrogen_fraction: float
) -> IonBalance:
    """Build the rate table, UV background rates and self-shielding fit for a redshift."""
    rate_table = make_rate_table()
    photo = read_treecool(treecool_path).photoionisation_rates(redshift)
    return IonBalance(rate_table, photo, self_shield_fit(redshift), hydrogen_fraction)