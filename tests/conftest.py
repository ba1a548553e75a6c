import numpy as np
import pytest
import scipy.sparse as sp
import torch

from KPMQT.model import Model


def _chain(n, hopping=-1.0, onsite=None):
    """Open 1D chain with nearest-neighbour hopping and unit lattice spacing."""
    off = np.full(n - 1, hopping)
    diagonal = np.zeros(n) if onsite is None else np.asarray(onsite, dtype=float)
    H = sp.diags([off, diagonal, off], [-1, 0, 1], format='csr')
    positions = np.arange(n, dtype=float)
    return H, positions


@pytest.fixture
def make_model():
    def factory(dimension, **kwargs):
        kwargs.setdefault('dtype', torch.float64)
        kwargs.setdefault('device', 'cpu')
        return Model(dimension, **kwargs)
    return factory


@pytest.fixture
def make_chain():
    return _chain


@pytest.fixture
def probe():
    """Deterministic normalised complex probe as a numpy array."""
    def factory(n, seed=0):
        rng = np.random.default_rng(seed)
        psi = rng.normal(size=n) + 1j * rng.normal(size=n)
        return psi / np.linalg.norm(psi)
    return factory
