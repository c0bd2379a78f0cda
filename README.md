# losextract

`losextract` reads binary line-of-sight (LOS) files written by a
cosmological hydrodynamical simulation and computes absorption optical
depths along every sight-line.

For each sight-line it convolves the gas overdensity, neutral hydrogen
fraction, temperature and peculiar velocity with a thermal line profile
(Voigt by default, or Gaussian) to give the HI Lyman-alpha optical depth in
each pixel. Depending on the options it also computes:

- HeII Lyman-alpha (304 Å) optical depths,
- SiII (1190, 1193, 1260 Å) and SiIII (1207 Å) optical depths, with ion
  fractions interpolated from tables in redshift, log(nH/cm^-3) and
  log(T/K), and either a fixed [Si/H] or a density dependent one,
- optical-depth-weighted density and temperature,
- a self-shielding correction to the HI fraction in dense pixels, solved
  from ionisation equilibrium with a UV background (TREECOOL) table.

When the pixel width is larger than the thermal velocity at 10^4 K, each
sight-line is resampled onto a finer grid by periodic linear interpolation
so that the optical depth converges; the results are reported at the
original resolution.

## Installation

```
pip install .
```

The only runtime dependency is NumPy.

## Command line

```
losextract <path>
```

`<path>` is the directory holding the LOS files, named
`<los-base>_z<redshift>.dat` (by default `los2048_n5000_z3.000.dat`). The
redshift in each file's header must match the one in its name to within
0.001. Outputs are written to the same directory as raw arrays of doubles,
shaped (nlos, nbins):

| file prefix | contents | written when |
|---|---|---|
| `tauH1` | HI Lyman-alpha optical depth (followed by the HI fraction with `--self-shield`) | always |
| `tauwH1` | tau-weighted density and temperature for HI | `--tau-weight` |
| `tauHe2r` | HeII Lyman-alpha optical depth | `--he2lya` |
| `tauwHe2` | tau-weighted density and temperature for HeII | `--he2lya --tau-weight` |
| `tauSi2_1190`, `tauSi2_1193`, `tauSi2_1260`, `tauSi3_1207` | silicon optical depths | unless `--no-silicon` |

Each name is completed as `<prefix>_v<nbins>_n<nlos>_z<redshift>.dat`.

Silicon is on by default and needs the ion fraction tables
`tablesize_p19.dat` and `cloudytable_p19.dat` in `--cloudy-dir`
(default `cloudy_tables`). `--self-shield` needs the UV background table
named by `--uvb-file` (default `TREECOOL_P19`) in `--treecool-dir`
(default `treecool`). These tables are not included in the package.

Main options:

- `--nlos-files`, `--z-initial`, `--dz`: how many LOS files to process, the
  redshift of the first and the step between them (defaults 1, 3.0, 1.0)
- `--los-base`: base of the LOS file name
- `--z-si`: [Si/H] for the density independent metallicity (default -2.0)
- `--tau-weight`, `--he2lya`, `--no-silicon`, `--silicon-pod`,
  `--self-shield`, `--no-pecvel`, `--gaussian`, `--no-resample`,
  `--exact-line`, `--test-kernel` (the last requires `--no-pecvel`)

Run `losextract --help` for the full list. The command exits with status 1
and a message on standard error when a file is missing or malformed or the
options conflict.

## Library use

```python
from losextract.config import Options
from losextract.losfile import read_los, write_tau, los_filename
from losextract.absorption import compute_absorption

options = Options(silicon=False).validate()

path = los_filename("output", "los2048_n5000", 3.0)
data = read_los(path, 3.0, options)
depths = compute_absorption(data, options)
write_tau("output", depths, data.header.nbins, data.header.nlos, 3.0, options)
```

`compute_absorption` returns an `OpticalDepths` object whose arrays
(`h1`, `he2`, `si2_1190`, ...) have shape (nlos, nbins). With silicon
enabled (the default in `Options`), pass an ion table from
`losextract.cloudy.load_ion_table(size_path, table_path)`; for
self-shielding pass the solver returned by
`losextract.ion_balance.init_cool(treecool_path, redshift, hydrogen_fraction)`.
`losextract.losfile.write_los` writes a `LosData` object in the LOS file
layout.

## What it does not do

The package computes and writes optical depths only. It does not make
transmitted-flux plots, compute flux power spectra, rescale the mean
transmission, or generate sight-line coordinate or output-time lists.

## Running the tests

```
pip install .[test]
pytest
```