"""Physical constants, atomic data, run parameters and compile-time style options."""

from __future__ import annotations

import math
from dataclasses import dataclass

# Numbers
PI = math.pi
ADIABATIC_INDEX = 5.0 / 3.0

# Physical constants (cgs units)
GRAVITY = 6.67384e-8
BOLTZMANN = 1.3806488e-16
C = 2.99792458e10
AMU = 1.66053886e-24  # 1 atomic mass unit (Dalton)
MPC = 3.08568025e24
KPC = 3.08568025e21
SIGMA_T = 6.652458734e-25
SOLAR_MASS = 1.989e33
ELECTRONVOLT = 1.602176565e-12

# Hydrogen
HMASS = 1.00794  # atomic weight in a.m.u.
LAMBDA_LYA_H1 = 1215.6701e-8  # cm
FOSC_LYA_H1 = 0.416400
GAMMA_LYA_H1 = 6.265e8  # s^-1

# Helium
HEMASS = 4.002602  # helium-4 atomic weight in a.m.u.
LAMBDA_LYA_HE2 = 303.7822e-8
FOSC_LYA_HE2 = 0.416400
GAMMA_LYA_HE2 = 6.265e8

# Silicon
SIMASS = 28.085
SI_SOLAR = 3.236e-5  # 10^(7.60-12)
LAMBDA_1190_SI2 = 1190.4158e-8
FOSC_1190_SI2 = 0.2920
LAMBDA_1193_SI2 = 1193.2897e-8
FOSC_1193_SI2 = 0.5820
LAMBDA_1260_SI2 = 1260.4221e-8
FOSC_1260_SI2 = 1.180
LAMBDA_1207_SI3 = 1206.50e-8
FOSC_1207_SI3 = 1.63000

# Line profile look-up table
XMAX = 100.0
NXTAB = 1000000

# Run parameters
NLOSFILES = 1
ZI_LOS = 3.0
DZ_LOS = 1.0
LOSBASE = "los2048_n5000"
UVBFILE = "TREECOOL_P19"
Z_SI = -2.0


@dataclass(frozen=True)
class Options:
    """Feature switches and run parameters for an extraction run."""

    tau_weight: bool = False
    he2lya: bool = False
    silicon: bool = True
    silicon_pod: bool = False
    self_shield: bool = False
    no_pecvel: bool = False
    voigt: bool = True
    resample: bool = True
    quick_line: bool = True
    test_kernel: bool = False

    nlos_files: int = NLOSFILES
    z_initial: float = ZI_LOS
    dz: float = DZ_LOS
    los_base: str = LOSBASE
    uvb_file: str = UVBFILE
    z_si: float = Z_SI

    def validate(self) -> Options:
        """Check that the chosen switches are compatible; return self."""
        if self.test_kernel and not self.no_pecvel:
            raise ValueError("test_kernel requires no_pecvel")
        if self.silicon_pod and not self.silicon:
            raise ValueError("silicon_pod requires silicon")
        return self