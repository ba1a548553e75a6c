"""
Copyright (c) 2024 Marcel S. Claro

GNU Lesser General Public License v3.0
"""

import math

import numpy as np
import torch
import torch.nn.functional as F

from .errors import AllocationError, DimensionMismatchError


def _allocate(n, model):
    try:
        return torch.zeros(n, dtype=model.dtype, device=model.device)
    except (RuntimeError, MemoryError) as e:
        # CUDA raises OutOfMemoryError, the CPU allocator a plain RuntimeError
        raise AllocationError(f"Cannot allocate {n} elements on {model.device}") from e


class ComplexVector:
    """
    Complex state vector stored as two real tensors of equal length.

    The real and imaginary parts live on ``model.device`` unless the vector was
    created as a host view with ``from_host(..., device=False)``. The model is
    only borrowed for its dimension, device, dtype and block size.
    """

    def __init__(self, model, n=None):
        self.model = model
        self.n = model.dimension if n is None else int(n)
        if self.n <= 0:
            raise ValueError(f"Vector dimension must be positive, got {self.n}")
        self.on_device = True
        self.real_part = _allocate(self.n, model)
        self.imag_part = _allocate(self.n, model)

    @classmethod
    def from_vector(cls, original):
        """Deep copy of ``original`` into newly owned storage."""
        vector = cls(original.model, n=original.n)
        vector.copy(original)
        return vector

    @classmethod
    def from_host(cls, original_real, original_imag, model, device=True):
        """
        Build a vector from caller-owned host buffers.

        With ``device=True`` the data is copied to ``model.device``. Otherwise
        the vector stays on the host and shares memory with the given arrays,
        so writes through the vector are visible to the caller (staging only).
        """
        original_real = np.asarray(original_real)
        original_imag = np.asarray(original_imag)
        if original_real.ndim != 1 or original_real.shape != original_imag.shape:
            raise DimensionMismatchError(original_real.shape, original_imag.shape, "from_host")
        if device:
            vector = cls(model, n=original_real.shape[0])
            vector.copy_from_host(original_real, original_imag)
            return vector

        vector = cls.__new__(cls)
        vector.model = model
        vector.n = original_real.shape[0]
        vector.on_device = False
        vector.real_part = torch.from_numpy(original_real)
        vector.imag_part = torch.from_numpy(original_imag)
        return vector

    def __len__(self):
        return self.n

    @property
    def grid_size(self):
        """Number of partial sums produced by ``inner_product_1``."""
        return (self.n - 1) // self.model.block_size + 1

    def _check(self, other, operation):
        if other.n != self.n:
            raise DimensionMismatchError(self.n, other.n, operation)

    def add(self, other, coeff=1.0):
        """In place ``self += coeff * other``."""
        self._check(other, "add")
        self.real_part.add_(other.real_part, alpha=coeff)
        self.imag_part.add_(other.imag_part, alpha=coeff)

    def copy(self, other):
        self._check(other, "copy")
        self.real_part.copy_(other.real_part)
        self.imag_part.copy_(other.imag_part)

    def zero(self):
        """Reset to the zero vector, used when buffers are reused across realizations."""
        self.real_part.zero_()
        self.imag_part.zero_()

    def copy_from_host(self, other_real, other_imag):
        other_real = np.asarray(other_real)
        other_imag = np.asarray(other_imag)
        if other_real.shape != (self.n,):
            raise DimensionMismatchError(self.n, other_real.shape, "copy_from_host")
        if other_imag.shape != (self.n,):
            raise DimensionMismatchError(self.n, other_imag.shape, "copy_from_host")
        self.real_part.copy_(torch.as_tensor(other_real, dtype=self.real_part.dtype))
        self.imag_part.copy_(torch.as_tensor(other_imag, dtype=self.imag_part.dtype))

    def copy_to_host(self, target_real, target_imag):
        if target_real.shape != (self.n,):
            raise DimensionMismatchError(self.n, target_real.shape, "copy_to_host")
        if target_imag.shape != (self.n,):
            raise DimensionMismatchError(self.n, target_imag.shape, "copy_to_host")
        np.copyto(target_real, self.real_part.detach().cpu().numpy())
        np.copyto(target_imag, self.imag_part.detach().cpu().numpy())

    def swap(self, other):
        """Exchange buffers with ``other`` without copying any element."""
        self._check(other, "swap")
        self.real_part, other.real_part = other.real_part, self.real_part
        self.imag_part, other.imag_part = other.imag_part, self.imag_part

    def inner_product_1(self, other, target, offset):
        """
        First stage of <self|other>: block partial sums.

        Computes conj(self)_i * other_i elementwise, sums it in blocks of
        ``model.block_size`` entries and writes the ``grid_size`` partial sums
        to ``target[offset*grid_size:(offset+1)*grid_size]``.
        """
        self._check(other, "inner_product_1")
        grid_size = self.grid_size
        start = offset * grid_size
        if offset < 0 or target.n < start + grid_size:
            raise DimensionMismatchError(start + grid_size, target.n, "inner_product_1")

        a_r, a_i = self.real_part, self.imag_part
        b_r, b_i = other.real_part, other.imag_part
        prod_real = a_r * b_r + a_i * b_i
        prod_imag = a_r * b_i - a_i * b_r

        padding = grid_size * self.model.block_size - self.n
        if padding:
            prod_real = F.pad(prod_real, (0, padding))
            prod_imag = F.pad(prod_imag, (0, padding))
        target.real_part[start:start + grid_size] = prod_real.view(grid_size, -1).sum(dim=1)
        target.imag_part[start:start + grid_size] = prod_imag.view(grid_size, -1).sum(dim=1)

    def inner_product_2(self, target):
        """
        Second stage: reduce the partial sums held by ``self``.

        ``self`` holds ``target.n`` contiguous segments of partial sums; each
        segment is reduced to one complex scalar and added to ``target``.
        """
        if self.n % target.n != 0:
            raise DimensionMismatchError(f"a multiple of {target.n}", self.n, "inner_product_2")
        target.real_part += self.real_part.reshape(target.n, -1).sum(dim=1)
        target.imag_part += self.imag_part.reshape(target.n, -1).sum(dim=1)

    def inner_product(self, other):
        """<self|other> as a Python complex, composed from the two stages."""
        partial = ComplexVector(self.model, n=self.grid_size)
        self.inner_product_1(other, partial, 0)
        result = ComplexVector(self.model, n=1)
        partial.inner_product_2(result)
        return complex(result.real_part.item(), result.imag_part.item())

    def norm_squared(self):
        return self.inner_product(self).real

    def to_numpy(self):
        """Complex numpy copy of the vector."""
        return self.real_part.detach().cpu().numpy() + 1j * self.imag_part.detach().cpu().numpy()


def random_phase_state(model, generator=None, n=None):
    """
    Random-phase probe state with entries exp(i*theta)/sqrt(N).

    theta is uniform on [0, 2*pi). The state has unit norm, so stochastic
    traces come out normalised per basis state.
    """
    vector = ComplexVector(model, n=n)
    theta = torch.rand(vector.n, generator=generator, dtype=model.dtype, device=model.device) * (2 * math.pi)
    scale = 1.0 / math.sqrt(vector.n)
    vector.real_part.copy_(torch.cos(theta) * scale)
    vector.imag_part.copy_(torch.sin(theta) * scale)
    return vector
