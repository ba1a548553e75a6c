"""
Copyright (c) 2024 Marcel S. Claro

GNU Lesser General Public License v3.0
"""

import logging

import numpy as np
import scipy.linalg
import scipy.sparse as sp
from scipy.sparse.linalg import eigsh
import torch

from .errors import DimensionMismatchError

logger = logging.getLogger(__name__)

# Below this size the spectrum is obtained from a dense diagonalization
DENSE_LIMIT = 64


def _to_scipy(matrix):
    if isinstance(matrix, torch.Tensor):
        matrix = matrix.to_dense() if matrix.is_sparse else matrix
        return sp.coo_matrix(matrix.detach().cpu().numpy())
    return sp.coo_matrix(matrix)


def estimate_energy_max(H, margin=0.01):
    """
    Rescaling factor putting the spectrum of H inside [-1, 1].

    :param H: Hermitian matrix (scipy sparse, numpy or torch)
    :param margin: relative safety margin added to the spectral radius
    :return: (1 + margin) * max|eigenvalue|, or 1.0 for a zero matrix
    """
    H = sp.csr_matrix(_to_scipy(H))
    if H.nnz == 0:
        return 1.0
    if H.shape[0] <= DENSE_LIMIT:
        radius = np.max(np.abs(scipy.linalg.eigvalsh(H.toarray())))
    else:
        radius = np.abs(eigsh(H, k=1, which='LM', return_eigenvectors=False)[0])
    if radius == 0:
        return 1.0
    return float(radius * (1 + margin))


class Hamiltonian:
    """
    Sparse tight-binding Hamiltonian rescaled into [-1, 1].

    Args:
        matrix: (N, N) Hermitian matrix in eV, scipy sparse, numpy or torch.
        model (Model): supplies N, device and dtype.
        positions (array, optional): coordinate of every basis state along the
            transport direction. Required by the position commutator and the
            velocity operator (VAC and MSD).
        energy_max (float, optional): rescaling factor. Falls back to
            model.energy_max, then to an estimate of the spectral radius.
    """

    def __init__(self, matrix, model, positions=None, energy_max=None):
        H = _to_scipy(matrix)
        self.model = model
        self.n = model.dimension
        if H.shape != (self.n, self.n):
            raise DimensionMismatchError((self.n, self.n), H.shape, "Hamiltonian")

        if energy_max is None:
            energy_max = model.energy_max
        if energy_max is None:
            energy_max = estimate_energy_max(H)
        if energy_max <= 0:
            raise ValueError(f"energy_max must be positive, got {energy_max}")
        self.energy_max = float(energy_max)
        logger.info(f"Rescaling factor (Maximum Eigenvalue): {self.energy_max}")

        row, col, values = H.row, H.col, H.data / self.energy_max
        self.H = self._sparse_pair(row, col, values)

        self.positions = None
        self.XH = None
        if positions is not None:
            positions = np.asarray(positions, dtype=np.float64).ravel()
            if positions.shape != (self.n,):
                raise DimensionMismatchError(self.n, positions.shape, "positions")
            self.positions = positions
            # [X, H]_ij = (x_i - x_j) H_ij
            dr_values = positions[row] - positions[col]
            self.XH = self._sparse_pair(row, col, values * dr_values)

    def _sparse_pair(self, row, col, values):
        """Real and (optional) imaginary parts as coalesced torch COO tensors."""
        indices = torch.tensor(np.vstack((row, col)), dtype=torch.int64)

        def build(data):
            return torch.sparse_coo_tensor(indices, torch.tensor(data), size=(self.n, self.n),
                                           dtype=self.model.dtype, device=self.model.device).coalesce()

        imag = np.imag(values)
        return build(np.real(values)), (build(imag) if np.any(imag != 0) else None)

    def _check(self, *vectors):
        for vector in vectors:
            if vector.n != self.n:
                raise DimensionMismatchError(self.n, vector.n, "Hamiltonian")

    @staticmethod
    def _matvec(pair, real, imag):
        mat_real, mat_imag = pair
        out_real = torch.sparse.mm(mat_real, real.unsqueeze(1)).squeeze(1)
        out_imag = torch.sparse.mm(mat_real, imag.unsqueeze(1)).squeeze(1)
        if mat_imag is not None:
            out_real = out_real - torch.sparse.mm(mat_imag, imag.unsqueeze(1)).squeeze(1)
            out_imag = out_imag + torch.sparse.mm(mat_imag, real.unsqueeze(1)).squeeze(1)
        return out_real, out_imag

    @staticmethod
    def _scale(real, imag, coeff):
        coeff = complex(coeff)
        if coeff.imag == 0:
            return coeff.real * real, coeff.real * imag
        return coeff.real * real - coeff.imag * imag, coeff.real * imag + coeff.imag * real

    @staticmethod
    def _store(destination, real, imag, other=None, other_coeff=1.0):
        if other is not None:
            real = real + other_coeff * other.real_part
            imag = imag + other_coeff * other.imag_part
        destination.real_part.copy_(real)
        destination.imag_part.copy_(imag)

    def apply(self, source, destination, coeff=1.0):
        """destination = coeff * H source. ``source`` is left untouched."""
        self._check(source, destination)
        real, imag = self._matvec(self.H, source.real_part, source.imag_part)
        self._store(destination, *self._scale(real, imag, coeff))

    def chebyshev_step(self, previous, current, destination, coeff=2.0, previous_coeff=-1.0):
        """
        Three-term recursion destination = coeff * H current + previous_coeff * previous.

        The defaults give T_{n+1} = 2 H T_n - T_{n-1}. ``destination`` may be
        the same object as ``previous``.
        """
        self._check(previous, current, destination)
        real, imag = self._matvec(self.H, current.real_part, current.imag_part)
        real, imag = self._scale(real, imag, coeff)
        self._store(destination, real, imag, previous, previous_coeff)

    def _require_positions(self):
        if self.XH is None:
            raise ValueError("Orbital positions are required for the position commutator and the velocity operator.")

    def apply_commutator(self, source, destination, coeff=1.0):
        """destination = coeff * [X, H] source (rescaled H)."""
        self._require_positions()
        self._check(source, destination)
        real, imag = self._matvec(self.XH, source.real_part, source.imag_part)
        self._store(destination, *self._scale(real, imag, coeff))

    def commutator_step(self, previous, current, current_state, destination, coeff):
        """
        Recursion of [X, T_n]: destination = coeff * ([X, H] current_state + H current) + previous.

        ``current`` and ``previous`` hold the commutators of the last two
        polynomial orders, ``current_state`` the matching polynomial vector.
        """
        self._require_positions()
        self._check(previous, current, current_state, destination)
        xh_real, xh_imag = self._matvec(self.XH, current_state.real_part, current_state.imag_part)
        h_real, h_imag = self._matvec(self.H, current.real_part, current.imag_part)
        real, imag = self._scale(xh_real + h_real, xh_imag + h_imag, coeff)
        self._store(destination, real, imag, previous, 1.0)

    def apply_current(self, source, destination):
        """destination = V source with V = i[H, X] in eV times length (hbar = 1)."""
        self.apply_commutator(source, destination, coeff=-1j * self.energy_max)

    def rescale_energies(self, energies):
        return np.asarray(energies) / self.energy_max

    def restore_energies(self, scaled):
        return np.asarray(scaled) * self.energy_max
