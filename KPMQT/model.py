"""
Copyright (c) 2024 Marcel S. Claro

GNU Lesser General Public License v3.0
"""

import numpy as np
import torch

from .util import KERNELS, time_to_fs


class Model:
    """
    Read-only parameter set of a KPM transport run.

    Attributes
    ----------
    dimension : int
        Hilbert-space dimension N (number of basis states).
    number_of_moments : int
        Number of Chebyshev moments K.
    number_of_random_vectors : int
        Number of random-phase realizations R.
    number_of_steps_correlation : int
        Number of time steps used by the VAC and MSD drivers.
    time_step : np.ndarray
        (number_of_steps_correlation,) time steps in units of hbar/eV.
    energies : np.ndarray or None
        Energy grid in eV on which spectra are reconstructed. When None a grid
        of num_energies points spanning the rescaled band is used.
    energy_max : float or None
        Rescaling factor of the Hamiltonian. Estimated from the matrix if None.
    kernel : str
        Damping kernel, 'jackson' or 'lorentz'.
    device : torch.device
        Device holding the state vectors and the Hamiltonian.
    dtype : torch.dtype
        Real dtype of the vector buffers (float32 or float64).
    seed : int
        Base seed; realization r uses seed + r.
    block_size : int
        Width of the partial sums in the two-stage inner product.
    wfn_check_step, wfn_check_thr :
        Every wfn_check_step time steps the norm of the evolved state is
        compared to its initial value and a warning is logged above wfn_check_thr.
    bessel_max, bessel_precision :
        Truncation of the Chebyshev-Bessel time evolution series.
    num_workers : int
        Number of realizations processed concurrently.
    """
    def __init__(self,
                 dimension,
                 number_of_moments = 1000,
                 number_of_random_vectors = 1,
                 number_of_steps_correlation = 1,
                 time_step = 1.0,
                 energies = None,
                 num_energies = 1001,
                 energy_max = None,
                 kernel = 'jackson',
                 device = 'cpu',
                 dtype = torch.float64,
                 seed = 42,
                 block_size = 512,
                 wfn_check_step = 128,
                 wfn_check_thr = 1e-9,
                 bessel_max = 250,
                 bessel_precision = 1.0e-14,
                 num_workers = 1
                 ) -> None:
        self.dimension = int(dimension)  # Hilbert-space dimension
        self.number_of_moments = int(number_of_moments)  # Chebyshev moments per realization
        self.number_of_random_vectors = int(number_of_random_vectors)  # Stochastic trace realizations
        self.number_of_steps_correlation = int(number_of_steps_correlation)  # Time steps for VAC/MSD
        self.num_energies = int(num_energies)  # Size of the default energy grid
        self.energy_max = None if energy_max is None else float(energy_max)  # Hamiltonian rescaling factor
        self.kernel = kernel  # Damping kernel name
        self.device = torch.device(device)  # Device of the vector buffers
        self.dtype = dtype  # Real dtype of the vector buffers
        self.seed = int(seed)  # Base random seed
        self.block_size = int(block_size)  # Partial-sum width of inner products
        self.wfn_check_step = int(wfn_check_step)  # Norm check period
        self.wfn_check_thr = float(wfn_check_thr)  # Norm check threshold
        self.bessel_max = int(bessel_max)  # Maximum Bessel order in time evolution
        self.bessel_precision = float(bessel_precision)  # Bessel truncation threshold
        self.num_workers = int(num_workers)  # Concurrent realizations

        if self.dimension <= 0:
            raise ValueError(f"dimension must be positive, got {self.dimension}")
        if self.number_of_moments < 1:
            raise ValueError(f"number_of_moments must be at least 1, got {self.number_of_moments}")
        if self.number_of_random_vectors < 1:
            raise ValueError(f"number_of_random_vectors must be at least 1, got {self.number_of_random_vectors}")
        if self.number_of_steps_correlation < 1:
            raise ValueError(f"number_of_steps_correlation must be at least 1, got {self.number_of_steps_correlation}")
        if self.energy_max is not None and self.energy_max <= 0:
            raise ValueError(f"energy_max must be positive, got {self.energy_max}")
        if self.kernel not in KERNELS:
            raise ValueError(f"Illegal kernel {self.kernel}, expected one of {list(KERNELS)}")
        if self.dtype not in (torch.float32, torch.float64):
            raise ValueError(f"dtype must be torch.float32 or torch.float64, got {self.dtype}")
        if self.block_size < 1:
            raise ValueError(f"block_size must be positive, got {self.block_size}")
        if self.num_workers < 1:
            raise ValueError(f"num_workers must be positive, got {self.num_workers}")

        time_step = np.asarray(time_step, dtype=np.float64)
        if time_step.ndim == 0:
            time_step = np.full(self.number_of_steps_correlation, float(time_step))
        if time_step.shape != (self.number_of_steps_correlation,):
            raise ValueError(f"time_step must be a scalar or have {self.number_of_steps_correlation} entries, "
                             f"got shape {time_step.shape}")
        self.time_step = time_step  # Time steps in hbar/eV

        if energies is not None:
            energies = np.asarray(energies, dtype=np.float64).ravel()
            if energies.size == 0:
                raise ValueError("energies must not be empty")
        self.energies = energies  # Energy grid in eV

    @property
    def grid_size(self):
        """Number of partial sums produced per inner product."""
        return (self.dimension - 1) // self.block_size + 1

    @property
    def damping(self):
        """Damping factors of the configured kernel."""
        return KERNELS[self.kernel](self.number_of_moments)

    def energy_grid(self, energy_max):
        """Energy grid in eV; defaults to the open interval of the rescaled band."""
        if self.energies is not None:
            return self.energies
        return 0.99 * energy_max * np.linspace(-1.0, 1.0, self.num_energies)

    def print_param(self, file=None):
        text = f"""
    Dimension: {self.dimension}
    Number of Moments: {self.number_of_moments}
    Number of Random Vectors: {self.number_of_random_vectors}
    Number of Correlation Steps: {self.number_of_steps_correlation}
    Time Step (hbar/eV): {self.time_step}
    Time Step (fs): {time_to_fs(self.time_step)}
    Energies: {self.energies if self.energies is not None else f'{self.num_energies} points in band'}
    Energy Max: {self.energy_max}
    Kernel: {self.kernel}
    Device: {self.device}
    Dtype: {self.dtype}
    Seed: {self.seed}
    Block Size: {self.block_size}
    Wavefunction Check Step: {self.wfn_check_step}
    Wavefunction Check Threshold: {self.wfn_check_thr}
    Bessel Max: {self.bessel_max}
    Bessel Precision: {self.bessel_precision}
    Workers: {self.num_workers}
    """
        if file:
            with open(file, 'w') as f:
                f.write(text)
        else:
            print(text)
