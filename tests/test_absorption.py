import math

import numpy as np
import pytest

from losextract.absorption import (
    LineProfileTable,
    compute_absorption,
    resample,
    resample_factor,
)
from losextract.cloudy import IonTable, TableRange
from losextract.config import (
    AMU,
    FOSC_1190_SI2,
    FOSC_1193_SI2,
    FOSC_1207_SI3,
    FOSC_LYA_H1,
    GRAVITY,
    HMASS,
    LAMBDA_1190_SI2,
    LAMBDA_1193_SI2,
    LAMBDA_1207_SI3,
    LAMBDA_LYA_H1,
    MPC,
    SIGMA_T,
    Options,
)
from losextract.ion_balance import IonBalance, PhotoRates, make_rate_table, self_shield_fit
from losextract.losfile import LosData, LosHeader

Z, OM, OL, OB, H100, BOX, XH = 3.0, 0.3, 0.7, 0.045, 0.7, 1000.0, 0.76


def make_data(nbins=32, nlos=2, rho=None, rho_h1=None, temp=None, vel=None, dv=1.0):
    header = LosHeader(Z, OM, OL, OB, H100, BOX, XH, nbins, nlos)
    shape = (nlos, nbins)
    return LosData(
        header=header,
        axis=np.ones(nlos),
        x=np.zeros(nlos),
        y=np.zeros(nlos),
        z=np.zeros(nlos),
        posaxis=np.linspace(0.0, BOX, nbins, endpoint=False),
        velaxis=np.arange(nbins) * dv,
        rho_h=np.ones(shape) if rho is None else rho,
        rho_h1=np.full(shape, 1.0e-5) if rho_h1 is None else rho_h1,
        temp_h1=np.full(shape, 1.0e4) if temp is None else temp,
        vel_h1=np.zeros(shape) if vel is None else vel,
    )


def plain(**kwargs):
    base = dict(silicon=False, resample=False, voigt=False, quick_line=False)
    base.update(kwargs)
    return Options(**base)


def constant_ion_table():
    size = 3 * 5 * 4
    return IonTable(
        TableRange(2.0, 4.0, 3),
        TableRange(1.0, 9.0, 5),
        TableRange(-10.0, 2.0, 4),
        np.full(size, math.log10(0.5)),
        np.full(size, math.log10(0.25)),
    )


class TestLineProfileTable:
    def test_zero_gives_one(self):
        assert LineProfileTable(100.0, 1000).exp_neg(0.0) == 1.0

    def test_taylor_region(self):
        assert LineProfileTable(100.0, 1000).exp_neg(1.0e-5) == pytest.approx(1.0 - 1.0e-5, abs=0)

    def test_beyond_range_is_zero(self):
        table = LineProfileTable(100.0, 1000)
        assert table.exp_neg(100.0) == 0.0
        assert table.exp_neg(250.0) == 0.0

    def test_grid_point_is_exact(self):
        table = LineProfileTable(100.0, 1000)
        assert table.exp_neg(1.0) == pytest.approx(math.exp(-1.0), rel=1e-12)

    def test_default_table_accuracy(self):
        table = LineProfileTable()
        x = np.linspace(0.0, 20.0, 997)
        assert np.allclose(table.exp_neg(x), np.exp(-x), atol=1e-8)

    def test_array_shape_preserved(self):
        table = LineProfileTable(100.0, 1000)
        assert table.exp_neg(np.zeros((3, 4))).shape == (3, 4)

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            LineProfileTable(100.0, 0)


class TestResampleFactor:
    def test_disabled(self):
        assert resample_factor(1000.0, Options(resample=False)) == 1

    def test_fine_pixels(self):
        assert resample_factor(5.0, Options(silicon=False)) == 1

    def test_coarse_pixels(self):
        assert resample_factor(20.0, Options(silicon=False)) == 3

    def test_heavier_ions_need_more(self):
        hydrogen = resample_factor(5.0, Options(silicon=False))
        assert resample_factor(5.0, Options(silicon=True)) > hydrogen
        assert resample_factor(20.0, Options(silicon=False, he2lya=True)) >= resample_factor(
            20.0, Options(silicon=False)
        )

    def test_monotonic(self):
        opts = Options()
        factors = [resample_factor(dv, opts) for dv in (1.0, 2.0, 5.0, 10.0, 40.0)]
        assert factors == sorted(factors)


class TestResample:
    def test_no_resampling_returns_field(self):
        field = np.array([3.0, 1.0, 4.0, 1.5])
        assert np.array_equal(resample(field, np.arange(4), 1, 4.0), field)

    def test_base_pixels_unchanged(self):
        field = np.array([3.0, 1.0, 4.0, 1.5])
        assert np.allclose(resample(field, np.arange(0, 12, 3), 3, 4.0), field)

    def test_midpoint(self):
        assert resample([0.0, 1.0, 2.0, 3.0], 1, 2, 4.0) == pytest.approx(0.5)

    def test_periodic_wrap(self):
        assert resample([0.0, 1.0, 2.0, 3.0], 7, 2, 4.0) == pytest.approx(1.5)

    def test_constant_field(self):
        values = resample(np.full(5, 2.5), np.arange(20), 4, 10.0)
        assert np.allclose(values, 2.5)

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            resample([1.0, 2.0], 4, 2, 2.0)
        with pytest.raises(ValueError):
            resample([1.0, 2.0], -1, 2, 2.0)


class TestComputeAbsorption:
    def test_shapes_and_positivity(self):
        depths = compute_absorption(make_data(), plain())
        assert depths.h1.shape == (2, 32)
        assert np.all(depths.h1 > 0.0)
        assert depths.si2_1190 is None

    def test_gunn_peterson_limit(self):
        nbins = 64
        data = make_data(nbins=nbins, nlos=1)
        opts = plain(test_kernel=True, no_pecvel=True)
        depths = compute_absorption(data, opts)
        a = 1.0 / (1.0 + Z)
        h0 = 1.0e7 / MPC
        rhoc = 3.0 * (h0 * H100) ** 2 / (8.0 * math.pi * GRAVITY)
        nh = rhoc * OB * XH / a**3 / (HMASS * AMU)
        hz = h0 * H100 * math.sqrt(OM / a**3 + OL)
        sigma = math.sqrt(3.0 * math.pi * SIGMA_T / 8.0) * LAMBDA_LYA_H1 * FOSC_LYA_H1
        tau_gp = sigma * 2.99792458e10 * 1.0e-5 * nh / hz
        assert np.allclose(depths.h1, tau_gp, rtol=1e-2)

    def test_uniform_gas_gives_uniform_depth(self):
        depths = compute_absorption(make_data(), plain(voigt=True, quick_line=True))
        assert np.allclose(depths.h1, depths.h1[0, 0], rtol=1e-6)

    def test_quick_line_matches_exp(self):
        rng = np.random.default_rng(1)
        data = make_data(rho=rng.uniform(0.5, 2.0, (2, 32)))
        exact = compute_absorption(data, plain())
        quick = compute_absorption(data, plain(quick_line=True))
        assert np.allclose(quick.h1, exact.h1, rtol=1e-5)

    def test_roll_invariance(self):
        rng = np.random.default_rng(7)
        rho = rng.uniform(0.2, 3.0, (1, 32))
        temp = rng.uniform(5e3, 2e4, (1, 32))
        vel = rng.uniform(-5.0, 5.0, (1, 32))
        opts = plain(voigt=True)
        base = compute_absorption(make_data(nlos=1, rho=rho, temp=temp, vel=vel), opts)
        rolled = compute_absorption(
            make_data(
                nlos=1,
                rho=np.roll(rho, 5, axis=1),
                temp=np.roll(temp, 5, axis=1),
                vel=np.roll(vel, 5, axis=1),
            ),
            opts,
        )
        assert np.allclose(rolled.h1, np.roll(base.h1, 5, axis=1), rtol=1e-9)

    def test_resampled_uniform_matches_native(self):
        native = compute_absorption(make_data(dv=1.0), plain())
        fine = compute_absorption(make_data(dv=30.0), plain(resample=True))
        assert np.allclose(fine.h1, native.h1, rtol=1e-6)

    def test_tau_weighted_quantities(self):
        rng = np.random.default_rng(3)
        data = make_data(
            rho=np.full((2, 32), 2.0),
            rho_h1=rng.uniform(1e-6, 1e-4, (2, 32)),
            temp=np.full((2, 32), 1.5e4),
        )
        depths = compute_absorption(data, plain(tau_weight=True))
        assert np.allclose(depths.rho_tau_h1, 2.0, rtol=1e-10)
        assert np.allclose(depths.temp_tau_h1, 1.5e4, rtol=1e-10)

    def test_silicon_line_ratios(self):
        rng = np.random.default_rng(5)
        data = make_data(rho=rng.uniform(0.5, 2.0, (2, 32)))
        depths = compute_absorption(
            data, plain(silicon=True), ion_table=constant_ion_table()
        )
        ratio_1193 = (LAMBDA_1193_SI2 * FOSC_1193_SI2) / (LAMBDA_1190_SI2 * FOSC_1190_SI2)
        assert np.allclose(depths.si2_1193, ratio_1193 * depths.si2_1190, rtol=1e-10)
        ratio_1207 = (LAMBDA_1207_SI3 * FOSC_1207_SI3 * 0.25) / (
            LAMBDA_1190_SI2 * FOSC_1190_SI2 * 0.5
        )
        assert np.allclose(depths.si3_1207, ratio_1207 * depths.si2_1190, rtol=1e-10)
        assert np.all(depths.si2_1260 > 0.0)

    def test_silicon_needs_table(self):
        with pytest.raises(ValueError):
            compute_absorption(make_data(), plain(silicon=True))

    def test_self_shield_needs_solver(self):
        with pytest.raises(ValueError):
            compute_absorption(make_data(), plain(self_shield=True))

    def test_he2_needs_fields(self):
        with pytest.raises(ValueError):
            compute_absorption(make_data(), plain(he2lya=True))

    def test_invalid_options(self):
        with pytest.raises(ValueError):
            compute_absorption(make_data(), plain(test_kernel=True))

    def test_self_shield_low_density_unchanged(self):
        solver = IonBalance(
            make_rate_table(),
            PhotoRates(1.0e-12, 1.0e-12, 1.0e-14, True),
            self_shield_fit(Z),
            XH,
        )
        data = make_data()
        shielded = compute_absorption(data, plain(self_shield=True), ion_balance=solver)
        reference = compute_absorption(data, plain())
        assert np.allclose(shielded.h1, reference.h1, rtol=1e-12)
        assert np.array_equal(shielded.h1_fraction, data.rho_h1)