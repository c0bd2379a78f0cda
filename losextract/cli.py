"""Command line entry point: extract optical depths from LOS files."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Optional, Sequence

from .absorption import compute_absorption
from .cloudy import DEFAULT_SIZE_FILE, DEFAULT_TABLE_FILE, IonTable, load_ion_table
from .config import DZ_LOS, LOSBASE, NLOSFILES, UVBFILE, Z_SI, ZI_LOS, Options
from .ion_balance import ConvergenceError, init_cool
from .losfile import los_filename, read_los, write_tau

DEFAULT_CLOUDY_DIR = DEFAULT_SIZE_FILE.parent
DEFAULT_TREECOOL_DIR = Path("treecool")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="losextract",
        description="Compute Lyman-alpha forest and metal line optical depths "
        "from sight-line (LOS) files.",
    )
    parser.add_argument("path", help="directory holding the LOS files; outputs go here too")
    parser.add_argument("--nlos-files", type=int, default=NLOSFILES,
                        help="number of LOS files to process")
    parser.add_argument("--z-initial", type=float, default=ZI_LOS,
                        help="redshift of the first LOS file")
    parser.add_argument("--dz", type=float, default=DZ_LOS,
                        help="redshift step between LOS files")
    parser.add_argument("--los-base", default=LOSBASE, help="base of the LOS file name")
    parser.add_argument("--uvb-file", default=UVBFILE, help="UV background table name")
    parser.add_argument("--z-si", type=float, default=Z_SI,
                        help="[Si/H] for the density independent metallicity")
    parser.add_argument("--cloudy-dir", type=Path, default=DEFAULT_CLOUDY_DIR,
                        help="directory holding the ion fraction tables")
    parser.add_argument("--treecool-dir", type=Path, default=DEFAULT_TREECOOL_DIR,
                        help="directory holding the UV background table")

    switches = parser.add_argument_group("computation switches")
    switches.add_argument("--tau-weight", action="store_true",
                          help="also write optical depth weighted density and temperature")
    switches.add_argument("--he2lya", action="store_true", help="compute HeII Lyman-alpha")
    switches.add_argument("--no-silicon", action="store_true",
                          help="skip SiII and SiIII absorption")
    switches.add_argument("--silicon-pod", action="store_true",
                          help="use a density dependent [Si/H]")
    switches.add_argument("--self-shield", action="store_true",
                          help="apply the HI self-shielding correction")
    switches.add_argument("--no-pecvel", action="store_true",
                          help="ignore peculiar velocities")
    switches.add_argument("--gaussian", action="store_true",
                          help="use a Gaussian instead of a Voigt profile for Lyman-alpha")
    switches.add_argument("--no-resample", action="store_true",
                          help="do not resample under-resolved thermal kernels")
    switches.add_argument("--exact-line", action="store_true",
                          help="evaluate exp(-x) directly instead of from a table")
    switches.add_argument("--test-kernel", action="store_true",
                          help="isothermal, constant-fraction kernel test (needs --no-pecvel)")
    return parser


def _options(args: argparse.Namespace) -> Options:
    return Options(
        tau_weight=args.tau_weight,
        he2lya=args.he2lya,
        silicon=not args.no_silicon,
        silicon_pod=args.silicon_pod,
        self_shield=args.self_shield,
        no_pecvel=args.no_pecvel,
        voigt=not args.gaussian,
        resample=not args.no_resample,
        quick_line=not args.exact_line,
        test_kernel=args.test_kernel,
        nlos_files=args.nlos_files,
        z_initial=args.z_initial,
        dz=args.dz,
        los_base=args.los_base,
        uvb_file=args.uvb_file,
        z_si=args.z_si,
    )


def _run(directory: Path, options: Options, cloudy_dir: Path, treecool_dir: Path) -> None:
    ion_table: Optional[IonTable] = None
    if options.silicon:
        ion_table = load_ion_table(
            cloudy_dir / DEFAULT_SIZE_FILE.name, cloudy_dir / DEFAULT_TABLE_FILE.name
        )

    ztime_file = options.z_initial
    for _ in range(options.nlos_files):
        print(f"\nReading los output at z={ztime_file:.3f}:")
        data = read_los(
            los_filename(directory, options.los_base, ztime_file), ztime_file, options
        )
        header = data.header
        print(header)

        balance = None
        if options.self_shield:
            balance = init_cool(
                treecool_dir / options.uvb_file, header.redshift, header.hydrogen_fraction
            )

        print("\nComputing optical depths...")
        depths = compute_absorption(data, options, ion_table, balance)
        print("Done.\n")

        write_tau(directory, depths, header.nbins, header.nlos, ztime_file, options)
        ztime_file += options.dz


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the extraction over the LOS files in a directory; return the exit status."""
    args = _build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    start = time.perf_counter()
    try:
        options = _options(args).validate()
        _run(Path(args.path), options, args.cloudy_dir, args.treecool_dir)
    except (OSError, ValueError, ConvergenceError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"\nTotal wall time {time.perf_counter() - start:f} s")
    return 0


if __name__ == "__main__":
    sys.exit(main())