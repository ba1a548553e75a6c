import numpy as np
import pytest
import scipy.sparse as sp
import torch

from KPMQT.errors import DimensionMismatchError
from KPMQT.hamiltonian import Hamiltonian, estimate_energy_max
from KPMQT.vector import ComplexVector


def vector_from(model, values):
    values = np.asarray(values, dtype=complex)
    return ComplexVector.from_host(values.real.copy(), values.imag.copy(), model)


def complex_hermitian(n, seed=0):
    rng = np.random.default_rng(seed)
    A = rng.normal(size=(n, n)) + 1j * rng.normal(size=(n, n))
    return 0.5 * (A + A.conj().T)


@pytest.mark.parametrize("coeff", [1.0, -2.0, 0.5j, 1 - 1j])
def test_apply_matches_dense_product(make_model, probe, coeff):
    n = 6
    model = make_model(n)
    dense = complex_hermitian(n)
    H = Hamiltonian(dense, model, energy_max=4.0)
    x = probe(n)
    source = vector_from(model, x)
    destination = ComplexVector(model)

    H.apply(source, destination, coeff)

    assert np.allclose(destination.to_numpy(), coeff * (dense / 4.0) @ x)
    assert np.array_equal(source.to_numpy(), x)


def test_apply_in_place(make_model, probe):
    n = 5
    model = make_model(n)
    dense = complex_hermitian(n, 1)
    H = Hamiltonian(dense, model, energy_max=3.0)
    x = probe(n)
    state = vector_from(model, x)
    H.apply(state, state)
    assert np.allclose(state.to_numpy(), dense / 3.0 @ x)


def test_chebyshev_step_with_aliased_destination(make_model, make_chain, probe):
    n = 8
    model = make_model(n)
    matrix, _ = make_chain(n)
    H = Hamiltonian(matrix, model, energy_max=2.5)
    h = matrix.toarray() / 2.5
    x0, x1 = probe(n, 1), probe(n, 2)
    previous, current = vector_from(model, x0), vector_from(model, x1)

    H.chebyshev_step(previous, current, previous)

    assert np.allclose(previous.to_numpy(), 2 * h @ x1 - x0)
    assert np.array_equal(current.to_numpy(), x1)


def test_energy_max_sources(make_model, make_chain):
    matrix, _ = make_chain(4)
    assert Hamiltonian(matrix, make_model(4, energy_max=5.0)).energy_max == 5.0
    assert Hamiltonian(matrix, make_model(4, energy_max=5.0), energy_max=3.0).energy_max == 3.0
    estimated = Hamiltonian(matrix, make_model(4)).energy_max
    radius = np.max(np.abs(np.linalg.eigvalsh(matrix.toarray())))
    assert estimated == pytest.approx(1.01 * radius)


def test_estimate_energy_max():
    assert estimate_energy_max(np.diag([2.0, -3.0]), margin=0.0) == pytest.approx(3.0)
    assert estimate_energy_max(sp.csr_matrix((5, 5))) == 1.0
    n = 200
    off = -np.ones(n - 1)
    chain = sp.diags([off, off], [-1, 1], format='csr')
    assert estimate_energy_max(chain, margin=0.0) == pytest.approx(2 * np.cos(np.pi / (n + 1)), rel=1e-6)


def test_accepts_torch_and_scipy_inputs(make_model, probe):
    n = 4
    model = make_model(n)
    dense = np.diag([1.0, -1.0, 0.5, 0.0])
    x = probe(n)
    for matrix in (dense, sp.csr_matrix(dense), torch.tensor(dense)):
        H = Hamiltonian(matrix, model, energy_max=1.0)
        out = ComplexVector(model)
        H.apply(vector_from(model, x), out)
        assert np.allclose(out.to_numpy(), dense @ x)


def test_shape_checks(make_model, make_chain):
    matrix, positions = make_chain(5)
    with pytest.raises(DimensionMismatchError):
        Hamiltonian(matrix, make_model(6))
    with pytest.raises(DimensionMismatchError):
        Hamiltonian(matrix, make_model(5), positions=positions[:4])

    model = make_model(5)
    H = Hamiltonian(matrix, model)
    with pytest.raises(DimensionMismatchError):
        H.apply(ComplexVector(model, n=4), ComplexVector(model))


def test_commutator_and_current(make_model, make_chain, probe):
    n = 7
    model = make_model(n)
    matrix, positions = make_chain(n, hopping=-1.3, onsite=np.linspace(-0.5, 0.5, n))
    H = Hamiltonian(matrix, model, positions=positions, energy_max=4.0)
    h = matrix.toarray()
    X = np.diag(positions)
    x = probe(n)

    commutator = ComplexVector(model)
    H.apply_commutator(vector_from(model, x), commutator)
    assert np.allclose(commutator.to_numpy(), (X @ h - h @ X) / 4.0 @ x)

    velocity = ComplexVector(model)
    H.apply_current(vector_from(model, x), velocity)
    assert np.allclose(velocity.to_numpy(), 1j * (h @ X - X @ h) @ x)


def test_velocity_requires_positions(make_model, make_chain):
    matrix, _ = make_chain(3)
    model = make_model(3)
    H = Hamiltonian(matrix, model)
    with pytest.raises(ValueError):
        H.apply_current(ComplexVector(model), ComplexVector(model))


def test_energy_mapping(make_model, make_chain):
    matrix, _ = make_chain(3)
    H = Hamiltonian(matrix, make_model(3), energy_max=2.0)
    energies = np.array([-1.0, 0.5])
    assert np.allclose(H.rescale_energies(energies), [-0.5, 0.25])
    assert np.allclose(H.restore_energies(H.rescale_energies(energies)), energies)
