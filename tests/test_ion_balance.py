import math

import numpy as np
import pytest

from losextract.ion_balance import (
    NCOOLTAB,
    IonBalance,
    PhotoRates,
    RateTable,
    SelfShieldParams,
    UVBTable,
    init_cool,
    make_rate_table,
    read_treecool,
    self_shield_fit,
)


@pytest.fixture(scope="module")
def table() -> RateTable:
    return make_rate_table()


def _write_treecool(path, rows):
    path.write_text("\n".join(" ".join(f"{v:g}" for v in row) for row in rows) + "\n")
    return path


ROWS = [
    (0.0, 1.0e-13, 2.0e-13, 1.0e-15, 1.0e-24, 2.0e-24, 1.0e-26),
    (0.5, 4.0e-13, 8.0e-13, 4.0e-15, 4.0e-24, 8.0e-24, 4.0e-26),
    (1.0, 2.0e-13, 4.0e-13, 2.0e-15, 2.0e-24, 4.0e-24, 2.0e-26),
]


def test_rate_table_grid(table):
    assert len(table.alpha_hp) == NCOOLTAB + 1
    assert table.log_tmin == 0.0
    assert table.log_tmax == 9.0
    assert table.delta_t == pytest.approx(9.0 / NCOOLTAB)


def test_rate_table_low_temperature_cutoffs(table):
    assert table.alpha_d[0] == 0.0
    assert table.gamma_eh0[0] == 0.0
    assert table.gamma_ehe0[0] == 0.0
    assert table.gamma_ehep[0] == 0.0
    assert np.all(table.alpha_hp > 0.0)
    assert table.gamma_eh0[-1] > 0.0


def test_recombination_decreases_with_temperature(table):
    alpha = np.asarray(table.alpha_hp)
    steps = np.diff(alpha)
    assert float(steps.max()) < 0.0
    assert alpha[0] > alpha[NCOOLTAB // 2] > alpha[-1]


def test_rates_at_grid_node_match_table(table):
    r = table.rates(table.log_tmin + 1000 * table.delta_t)
    assert r.alpha_hp == pytest.approx(table.alpha_hp[1000])
    assert r.gamma_eh0 == pytest.approx(table.gamma_eh0[1000])


def test_rates_outside_table_raise(table):
    with pytest.raises(ValueError):
        table.rates(9.5)
    with pytest.raises(ValueError):
        table.rates(-0.1)


def test_read_treecool_truncates_at_zero_rate(tmp_path):
    rows = ROWS + [(1.5, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0), (2.0, 1e-13, 1e-13, 1e-15, 1, 1, 1)]
    uvb = read_treecool(_write_treecool(tmp_path / "TREECOOL", rows))
    assert len(uvb) == 3
    assert list(uvb.log_z) == [0.0, 0.5, 1.0]


def test_read_treecool_rejects_bad_tokens(tmp_path):
    path = tmp_path / "TREECOOL"
    path.write_text("0.0 1e-13 abc 1 1 1 1\n")
    with pytest.raises(ValueError):
        read_treecool(path)


def test_photoionisation_rates_at_node(tmp_path):
    uvb = read_treecool(_write_treecool(tmp_path / "TREECOOL", ROWS))
    rates = uvb.photoionisation_rates(10.0 ** 0.5 - 1.0)
    assert rates.active
    assert rates.gamma_h0 == pytest.approx(4.0e-13, rel=1e-6)
    assert rates.gamma_he0 == pytest.approx(8.0e-13, rel=1e-6)
    assert rates.gamma_hep == pytest.approx(4.0e-15, rel=1e-6)


def test_photoionisation_rates_log_interpolation(tmp_path):
    uvb = read_treecool(_write_treecool(tmp_path / "TREECOOL", ROWS))
    rates = uvb.photoionisation_rates(10.0 ** 0.75 - 1.0)
    assert rates.gamma_h0 == pytest.approx(math.sqrt(4.0e-13 * 2.0e-13), rel=1e-6)
    assert 2.0e-13 < rates.gamma_h0 < 4.0e-13


def test_photoionisation_beyond_table_is_off(tmp_path):
    uvb = read_treecool(_write_treecool(tmp_path / "TREECOOL", ROWS))
    rates = uvb.photoionisation_rates(20.0)
    assert not rates.active
    assert rates.gamma_h0 == 0.0


def test_empty_uvb_is_off():
    empty = np.array([])
    uvb = UVBTable(empty, empty, empty, empty, empty, empty, empty)
    assert uvb.photoionisation_rates(3.0).active is False


def test_self_shield_fit_at_node():
    p = self_shield_fit(3.0)
    assert p.n0 == pytest.approx(9.0e-3)
    assert p.alpha1 == pytest.approx(-1.12)
    assert p.alpha2 == pytest.approx(-1.65)
    assert p.beta == pytest.approx(5.32)
    assert p.fval == pytest.approx(0.018)


def test_self_shield_fit_high_redshift_is_constant():
    assert self_shield_fit(12.0) == self_shield_fit(10.0)
    assert self_shield_fit(15.0).beta == pytest.approx(12.94)


def test_self_shield_fit_between_nodes():
    lo, mid, hi = self_shield_fit(3.0), self_shield_fit(3.5), self_shield_fit(4.0)
    assert min(lo.beta, hi.beta) < mid.beta < max(lo.beta, hi.beta)
    assert mid.n0 == pytest.approx(0.5 * (lo.n0 + hi.n0))


def test_self_shield_fit_negative_redshift_raises():
    with pytest.raises(ValueError):
        self_shield_fit(-2.0)


def _solver(table, photo):
    return IonBalance(table, photo, self_shield_fit(3.0), 0.76)


def test_temperature_limits(table):
    solver = _solver(table, PhotoRates(1e-12, 1e-12, 1e-14, True))
    assert solver.ion_balance(1e-4, 0.0) == 1.0
    assert solver.ion_balance(1e-4, 9.0) == 0.0


def test_neutral_fraction_bounds_and_trend(table):
    solver = _solver(table, PhotoRates(1e-12, 1e-12, 1e-14, True))
    low = solver.ion_balance(1e-5, 4.0)
    high = solver.ion_balance(1e-1, 4.0)
    assert 0.0 < low < high < 1.0


def test_collisional_equilibrium_without_uvb(table):
    solver = _solver(table, PhotoRates(0.0, 0.0, 0.0, False))
    cold = solver.ion_balance(1e-3, 4.0)
    hot = solver.ion_balance(1e-3, 5.5)
    assert cold > 0.9
    assert hot < cold
    # without photoionisation the result does not depend on density
    assert solver.ion_balance(1e-6, 5.0) == pytest.approx(solver.ion_balance(1.0, 5.0))


def test_self_shielding_raises_neutral_fraction(table):
    solver = _solver(table, PhotoRates(1e-12, 1e-12, 1e-14, True))
    n = 10 * solver.shield.n0
    assert solver.self_shield(n, 4.0) > solver.ion_balance(n, 4.0)


def test_self_shielding_negligible_at_low_density(table):
    solver = _solver(table, PhotoRates(1e-12, 1e-12, 1e-14, True))
    n = 1e-4 * solver.shield.n0
    assert solver.self_shield(n, 4.0) == pytest.approx(solver.ion_balance(n, 4.0), rel=1e-3)


def test_init_cool(tmp_path):
    path = _write_treecool(tmp_path / "TREECOOL", ROWS)
    solver = init_cool(path, 10.0 ** 0.5 - 1.0, 0.76)
    assert solver.photo.active
    assert solver.photo.gamma_h0 == pytest.approx(4.0e-13, rel=1e-6)
    assert isinstance(solver.shield, SelfShieldParams)
    assert solver.shield == self_shield_fit(10.0 ** 0.5 - 1.0)
    assert 0.0 < solver.ion_balance(1e-4, 4.0) < 1.0


def test_init_cool_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        init_cool(tmp_path / "absent", 3.0, 0.76)