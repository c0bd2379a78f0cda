"""Line-of-sight optical depths from convolving gas fields with line profiles."""

from __future__ import annotations

import logging
import math
from functools import lru_cache
from typing import Optional, Union

import numpy as np

from .cloudy import IonTable
from .config import (
    AMU,
    BOLTZMANN,
    C,
    FOSC_1190_SI2,
    FOSC_1193_SI2,
    FOSC_1207_SI3,
    FOSC_1260_SI2,
    FOSC_LYA_H1,
    FOSC_LYA_HE2,
    GAMMA_LYA_H1,
    GAMMA_LYA_HE2,
    GRAVITY,
    HEMASS,
    HMASS,
    KPC,
    LAMBDA_1190_SI2,
    LAMBDA_1193_SI2,
    LAMBDA_1207_SI3,
    LAMBDA_1260_SI2,
    LAMBDA_LYA_H1,
    LAMBDA_LYA_HE2,
    MPC,
    NXTAB,
    PI,
    SI_SOLAR,
    SIGMA_T,
    SIMASS,
    XMAX,
    Options,
)
from .ion_balance import IonBalance
from .losfile import LosData, OpticalDepths
from .utils import lerp

logger = logging.getLogger(__name__)

ArrayLike = Union[float, int, np.ndarray]

_TAYLOR_LIMIT = 1.0e-4
_GAUSS_CORE = 1.0e-6
_T_THERMAL = 1.0e4
_ESCALE = 1.0e10  # (km/s)^2 to (cm/s)^2
_CHUNK_ELEMENTS = 1 << 22


class LineProfileTable:
    """Look-up table for exp(-x) on [0, xmax], used for quick line profiles."""

    def __init__(self, xmax: float = XMAX, ntab: int = NXTAB) -> None:
        if ntab < 1:
            raise ValueError(f"profile table needs at least one interval, got {ntab}")
        if not xmax > 0.0:
            raise ValueError(f"profile table range must be positive, got {xmax}")
        self.xmax = float(xmax)
        self.ntab = int(ntab)
        dx = self.xmax / self.ntab
        self.dx_inv = 1.0 / dx
        self.table = np.exp(-dx * np.arange(self.ntab + 1, dtype=np.float64))

    def exp_neg(self, x: ArrayLike) -> ArrayLike:
        """Approximate exp(-x) for x >= 0: Taylor near zero, table lookup, zero past xmax."""
        values = np.asarray(x, dtype=np.float64)
        t = values * self.dx_inv
        tint = np.minimum(t, self.ntab - 1).astype(np.int64)
        tint = np.maximum(tint, 0)
        fhi = t - tint
        looked_up = (1.0 - fhi) * self.table[tint] + fhi * self.table[tint + 1]
        result = np.where(
            values < _TAYLOR_LIMIT,
            1.0 - values,
            np.where(values < self.xmax, looked_up, 0.0),
        )
        if result.ndim == 0:
            return float(result)
        return result


@lru_cache(maxsize=1)
def _default_profile_table() -> LineProfileTable:
    return LineProfileTable()


def _thermal_velocity(mass: float) -> float:
    """Thermal velocity [km/s] at 10^4 K for an atom of the given weight in a.m.u."""
    return 1.0e-5 * math.sqrt(BOLTZMANN * _T_THERMAL / (mass * AMU))


def resample_factor(dvbin: float, options: Optional[Options] = None) -> int:
    """Return how many sub-pixels each pixel needs to resolve the thermal kernel."""
    options = options if options is not None else Options()
    if not options.resample:
        return 1
    vth = _thermal_velocity(HMASS)
    if options.he2lya:
        vth = min(vth, _thermal_velocity(HEMASS))
    if options.silicon:
        vth = min(vth, _thermal_velocity(SIMASS))
    return math.ceil(dvbin / vth) if dvbin > vth else 1


def resample(field, iconv: ArrayLike, nhires: int, vmax: float) -> ArrayLike:
    """Linearly interpolate a periodic sight-line field onto sub-pixel iconv.

    field holds one sight-line of nbins values; iconv runs over nbins*nhires
    sub-pixels and vmax is the box size in km/s.
    """
    values = np.asarray(field, dtype=np.float64)
    if values.ndim != 1:
        raise ValueError("resample expects a single sight-line")
    nbins = values.shape[0]
    if nhires < 1:
        raise ValueError(f"resample factor must be positive, got {nhires}")
    index = np.asarray(iconv, dtype=np.int64)
    if np.any(index < 0) or np.any(index >= nbins * nhires):
        raise ValueError(f"sub-pixel index outside 0..{nbins * nhires - 1}")
    iv = index // nhires

    if nhires == 1:
        result = values[iv]
    else:
        dvbin = vmax / nbins
        velhub = iv * dvbin
        velhub_hires = index * (dvbin / nhires)
        below = velhub_hires < velhub
        neighbour = np.where(below, iv - 1, iv + 1)
        neighbour = np.where(neighbour < 0, nbins - 1, neighbour)
        neighbour = np.where(neighbour > nbins - 1, 0, neighbour)
        velhub_next = np.where(below, velhub - dvbin, velhub + dvbin)
        result = lerp(velhub_hires, velhub, velhub_next, values[iv], values[neighbour])

    result = np.asarray(result, dtype=np.float64)
    if result.ndim == 0:
        return float(result)
    return result


def _gaussian(v0: np.ndarray, table: Optional[LineProfileTable]) -> np.ndarray:
    if table is not None:
        return table.exp_neg(v0)
    return np.exp(-v0)


def _voigt(v0: np.ndarray, v1: np.ndarray, aa: np.ndarray) -> np.ndarray:
    # Tepper-Garcia (2006) approximation; 1/sqrt(pi) is absorbed into aa.
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        v2 = 1.5 / v0
        wing = v1 - aa / v0 * (v1 * v1 * (4.0 * v0 * v0 + 7.0 * v0 + 4.0 + v2) - v2 - 1.0)
    return np.where(v0 < _GAUSS_CORE, v1, wing)


def _periodic_distance(vel: np.ndarray, u: np.ndarray, vmax: float) -> np.ndarray:
    vdiff = np.abs(vel[:, None] - u[None, :])
    return np.where(vdiff > 0.5 * vmax, vmax - vdiff, vdiff)


def compute_absorption(
    data: LosData,
    options: Optional[Options] = None,
    ion_table: Optional[IonTable] = None,
    ion_balance: Optional[IonBalance] = None,
) -> OpticalDepths:
    """Compute optical depths of shape (nlos, nbins) for every sight-line in data.

    ion_table is required for silicon and ion_balance for self-shielding.
    """
    options = (options if options is not None else Options()).validate()
    header = data.header
    nbins, nlos = header.nbins, header.nlos

    if options.silicon and ion_table is None:
        raise ValueError("silicon absorption requires an ion table")
    if options.self_shield and ion_balance is None:
        raise ValueError("self-shielding requires an ion balance solver")
    if options.he2lya and not data.has_he2:
        raise ValueError("HeII absorption requires HeII fields in the LOS data")

    if options.resample:
        if nbins < 2:
            raise ValueError("resampling needs at least two pixels per sight-line")
        dvbin = float(data.velaxis[1] - data.velaxis[0])
        nhires = resample_factor(dvbin, options)
        logger.info(
            "Resample %dx: n1=%d n2=%d dv1=%f dv2=%f",
            nhires, nbins, nbins * nhires, dvbin, dvbin / nhires,
        )
    else:
        nhires = 1

    n = nbins * nhires
    redshift = header.redshift
    atime = 1.0 / (1.0 + redshift)
    h100 = header.h100
    rscale = KPC * atime / h100
    drbin = header.box100 / n
    hz = 100.0 * h100 * math.sqrt(header.omega_m / atime**3 + header.omega_l)
    h0 = 1.0e7 / MPC
    vmax = header.box100 * hz * rscale / MPC
    rhoc = 3.0 * (h0 * h100) ** 2 / (8.0 * PI * GRAVITY)
    crit_h = rhoc * header.omega_b * header.hydrogen_fraction / atime**3

    cross = math.sqrt(3.0 * PI * SIGMA_T / 8.0)
    column = C * rscale * drbin * crit_h / (math.sqrt(PI) * HMASS * AMU)

    k1_h1 = 2.0 * BOLTZMANN / (HMASS * AMU)
    k2_h1 = cross * LAMBDA_LYA_H1 * FOSC_LYA_H1 * column
    kv_h1 = GAMMA_LYA_H1 * LAMBDA_LYA_H1 / (4.0 * PI * math.sqrt(PI))

    k1_he2 = 2.0 * BOLTZMANN / (HEMASS * AMU)
    k2_he2 = cross * LAMBDA_LYA_HE2 * FOSC_LYA_HE2 * column
    kv_he2 = GAMMA_LYA_HE2 * LAMBDA_LYA_HE2 / (4.0 * PI * math.sqrt(PI))

    k1_si = 2.0 * BOLTZMANN / (SIMASS * AMU)
    k2_1190 = cross * LAMBDA_1190_SI2 * FOSC_1190_SI2 * column
    k2_1193 = cross * LAMBDA_1193_SI2 * FOSC_1193_SI2 * column
    k2_1260 = cross * LAMBDA_1260_SI2 * FOSC_1260_SI2 * column
    k2_1207 = cross * LAMBDA_1207_SI3 * FOSC_1207_SI3 * column

    table = _default_profile_table() if options.quick_line else None
    vel_hires = np.arange(n, dtype=np.float64) * (vmax / n)
    out_pixels = np.arange(0, n, nhires)
    chunk = max(1, _CHUNK_ELEMENTS // n)
    iconv = np.arange(n)

    def blank() -> np.ndarray:
        return np.zeros((nlos, nbins), dtype=np.float64)

    tau_h1 = blank()
    rho_tau_h1 = blank() if options.tau_weight else None
    temp_tau_h1 = blank() if options.tau_weight else None
    tau_he2 = blank() if options.he2lya else None
    rho_tau_he2 = blank() if options.he2lya and options.tau_weight else None
    temp_tau_he2 = blank() if options.he2lya and options.tau_weight else None
    si_out = {key: blank() for key in ("1190", "1193", "1260", "1207")} if options.silicon else {}

    pccount = 0.0
    for ilos in range(nlos):
        rho_h = resample(data.rho_h[ilos], iconv, nhires, vmax)
        rho_h1 = resample(data.rho_h1[ilos], iconv, nhires, vmax)
        temp_h1 = resample(data.temp_h1[ilos], iconv, nhires, vmax)
        if options.he2lya:
            rho_he2 = resample(data.rho_he2[ilos], iconv, nhires, vmax)
            temp_he2 = resample(data.temp_he2[ilos], iconv, nhires, vmax)

        if options.self_shield:
            nh_cgs = crit_h * rho_h / (HMASS * AMU)
            with np.errstate(divide="ignore"):
                log_t = np.log10(temp_h1)
            for k in np.nonzero(nh_cgs >= ion_balance.shield.n0)[0]:
                rho_h1[k] = ion_balance.self_shield(float(nh_cgs[k]), float(log_t[k]))

        if options.test_kernel:
            rho_h1 = np.full(n, 1.0e-5)
            temp_h1 = np.full(n, 1.0e3)
            if options.he2lya:
                rho_he2 = np.full(n, 1.0e-4)
                temp_he2 = np.full(n, 1.0e3)

        if options.no_pecvel:
            u_h1 = vel_hires
        else:
            u_h1 = vel_hires + resample(data.vel_h1[ilos], iconv, nhires, vmax)
        b_h1 = np.sqrt(k1_h1 * temp_h1)
        b2_h1 = b_h1 * b_h1 / _ESCALE
        dtau_h1 = k2_h1 * rho_h * rho_h1 / b_h1
        aa_h1 = kv_h1 / b_h1

        if options.he2lya:
            if options.no_pecvel:
                u_he2 = vel_hires
            else:
                u_he2 = vel_hires + resample(data.vel_he2[ilos], iconv, nhires, vmax)
            b_he2 = np.sqrt(k1_he2 * temp_he2)
            b2_he2 = b_he2 * b_he2 / _ESCALE
            dtau_he2 = k2_he2 * rho_h * rho_he2 / b_he2
            aa_he2 = kv_he2 / b_he2

        if options.silicon:
            with np.errstate(divide="ignore"):
                if options.silicon_pod:
                    zsi_rel = 10.0 ** (
                        -2.70 + 0.08 * (redshift - 3.0) + 0.65 * (np.log10(rho_h) - 0.5)
                    )
                else:
                    zsi_rel = np.full(n, 10.0 ** options.z_si)
                log_t_si = np.log10(temp_h1)
                log_nh = np.log10(crit_h * rho_h / (HMASS * AMU))
            fractions = np.array(
                [
                    ion_table.ion_fractions(redshift, float(lt), float(ln))
                    for lt, ln in zip(log_t_si, log_nh)
                ],
                dtype=np.float64,
            ).reshape(n, 2)
            si2_h = fractions[:, 0] * zsi_rel * SI_SOLAR
            si3_h = fractions[:, 1] * zsi_rel * SI_SOLAR
            b_si = np.sqrt(k1_si * temp_h1)
            b2_si = b_si * b_si / _ESCALE
            dtau_1190 = k2_1190 * rho_h * si2_h / b_si
            dtau_si = {
                "1190": dtau_1190,
                "1193": (k2_1193 / k2_1190) * dtau_1190,
                "1260": (k2_1260 / k2_1190) * dtau_1190,
                "1207": k2_1207 * rho_h * si3_h / b_si,
            }

        for start in range(0, nbins, chunk):
            rows = out_pixels[start : start + chunk]
            stop = start + len(rows)
            vel_rows = vel_hires[rows]

            vdiff = _periodic_distance(vel_rows, u_h1, vmax)
            v0 = vdiff * vdiff / b2_h1
            profile = _gaussian(v0, table)
            if options.voigt:
                profile = _voigt(v0, profile, aa_h1)
            weighted = dtau_h1 * profile
            tau_rows = weighted.sum(axis=1)
            tau_h1[ilos, start:stop] = tau_rows
            if options.tau_weight:
                with np.errstate(divide="ignore", invalid="ignore"):
                    rho_tau_h1[ilos, start:stop] = (weighted * rho_h).sum(axis=1) / tau_rows
                    temp_tau_h1[ilos, start:stop] = (weighted * temp_h1).sum(axis=1) / tau_rows

            if options.he2lya:
                vdiff_he2 = _periodic_distance(vel_rows, u_he2, vmax)
                v0_he2 = vdiff_he2 * vdiff_he2 / b2_he2
                profile_he2 = _gaussian(v0_he2, table)
                if options.voigt:
                    profile_he2 = _voigt(v0_he2, profile_he2, aa_he2)
                weighted_he2 = dtau_he2 * profile_he2
                tau_rows_he2 = weighted_he2.sum(axis=1)
                tau_he2[ilos, start:stop] = tau_rows_he2
                if options.tau_weight:
                    with np.errstate(divide="ignore", invalid="ignore"):
                        rho_tau_he2[ilos, start:stop] = (
                            (weighted_he2 * rho_h).sum(axis=1) / tau_rows_he2
                        )
                        temp_tau_he2[ilos, start:stop] = (
                            (weighted_he2 * temp_he2).sum(axis=1) / tau_rows_he2
                        )

            if options.silicon:
                profile_si = _gaussian(vdiff * vdiff / b2_si, table)
                for key, dtau in dtau_si.items():
                    si_out[key][ilos, start:stop] = (dtau * profile_si).sum(axis=1)

        pcdone = 100.0 * ilos / (nlos - 1.0) if nlos > 1 else 100.0
        if pcdone >= pccount:
            logger.info("%3.2f%%", pcdone)
            pccount += 10.0

    return OpticalDepths(
        h1=tau_h1,
        rho_tau_h1=rho_tau_h1,
        temp_tau_h1=temp_tau_h1,
        he2=tau_he2,
        rho_tau_he2=rho_tau_he2,
        temp_tau_he2=temp_tau_he2,
        si2_1190=si_out.get("1190"),
        si2_1193=si_out.get("1193"),
        si2_1260=si_out.get("1260"),
        si3_1207=si_out.get("1207"),
        h1_fraction=data.rho_h1.copy() if options.self_shield else None,
    )