"""
Copyright (c) 2024 Marcel S. Claro

GNU Lesser General Public License v3.0
"""

import numpy as np


"""
Convert
"""
# convert Joule to Electron-volt
J_to_eV = 6.241506363094e18

# convert second to femtosecond
s_to_fs = 1.0e15


"""
Constant
"""
# Planck constant
hbar_SI = 1.054571628e-34  # m^2 kg / s
hbar_eV = hbar_SI * J_to_eV  # eV s


def time_to_fs(time):
    """Convert time in units of hbar/eV to femtoseconds."""
    return np.asarray(time) * hbar_eV * s_to_fs


def jackson_kernel(n_moments):
    """
    Jackson damping factors g_n, n = 0 .. n_moments-1.

    :param n_moments: number of Chebyshev moments
    :return: (n_moments,) float64 array with g_0 = 1
    """
    n = np.arange(n_moments)
    a = np.pi / (n_moments + 1)
    return ((n_moments - n + 1) * np.cos(a * n) + np.sin(a * n) / np.tan(a)) / (n_moments + 1)


def lorentz_kernel(n_moments, l=4.0):
    """
    Lorentz damping factors, better suited to Green's functions.

    :param n_moments: number of Chebyshev moments
    :param l: decay parameter of the kernel
    :return: (n_moments,) float64 array with g_0 = 1
    """
    n = np.arange(n_moments)
    return np.sinh(l * (1 - n / n_moments)) / np.sinh(l)


KERNELS = {
    'jackson': jackson_kernel,
    'lorentz': lorentz_kernel,
}
