import numpy as np
import pytest
from scipy import linalg
from scipy.integrate import trapezoid

from KPMQT.chebyshev import (
    chebyshev_summation,
    check_finite,
    evolve,
    evolvex,
    find_moments_chebyshev,
    get_bessel_series,
)
from KPMQT.errors import NumericAnomaly
from KPMQT.hamiltonian import Hamiltonian
from KPMQT.util import jackson_kernel, lorentz_kernel
from KPMQT.vector import ComplexVector


def vector_from(model, values):
    values = np.asarray(values, dtype=complex)
    return ComplexVector.from_host(values.real.copy(), values.imag.copy(), model)


def dense_moments(h, left, right, n_moments):
    T0, T1 = right, h @ right
    moments = [np.vdot(left, T0), np.vdot(left, T1)]
    for _ in range(2, n_moments):
        T0, T1 = T1, 2 * h @ T1 - T0
        moments.append(np.vdot(left, T1))
    return np.array(moments[:n_moments])


@pytest.fixture
def chain_setup(make_model, make_chain):
    n = 12
    model = make_model(n, number_of_moments=20, block_size=5)
    matrix, positions = make_chain(n, onsite=0.3 * np.cos(np.arange(n)))
    H = Hamiltonian(matrix, model, positions=positions)
    return model, H, matrix.toarray(), positions


def test_moments_match_dense_recursion(chain_setup, probe):
    model, H, h, _ = chain_setup
    x, y = probe(model.dimension, 1), probe(model.dimension, 2)
    left, right = vector_from(model, x), vector_from(model, y)

    moments = find_moments_chebyshev(model, H, left, right)

    expected = dense_moments(h / H.energy_max, x, y, model.number_of_moments)
    assert moments.shape == (model.number_of_moments,)
    assert np.allclose(moments, expected, atol=1e-12)
    assert np.array_equal(right.to_numpy(), y)


@pytest.mark.parametrize("n_moments", [1, 2, 3])
def test_few_moments(make_model, n_moments):
    model = make_model(1, number_of_moments=n_moments)
    H = Hamiltonian(np.array([[0.25]]), model, energy_max=1.0)
    state = vector_from(model, [1.0])
    moments = find_moments_chebyshev(model, H, state, state)
    assert np.allclose(moments, np.cos(np.arange(n_moments) * np.arccos(0.25)))


def test_bessel_series():
    series = get_bessel_series(1.0, 2.0)
    assert series[0] == pytest.approx(0.22389077914123567)
    assert np.all(np.abs(series[-2:]) > 0)
    assert len(get_bessel_series(0.0, 2.0)) == 1
    with pytest.raises(ValueError):
        get_bessel_series(100.0, 2.0, bessel_max=10)


@pytest.mark.parametrize("time_step", [0.3, 2.0])
def test_evolve_matches_matrix_exponential(chain_setup, probe, time_step):
    model, H, h, _ = chain_setup
    x = probe(model.dimension)
    state = vector_from(model, x)

    evolve(model, H, state, time_step)

    expected = linalg.expm(-1j * h * time_step) @ x
    assert np.allclose(state.to_numpy(), expected, atol=1e-10)
    assert state.norm_squared() == pytest.approx(1.0, abs=1e-10)


def test_backward_evolution_undoes_forward(chain_setup, probe):
    model, H, _, _ = chain_setup
    x = probe(model.dimension)
    state = vector_from(model, x)
    evolve(model, H, state, 1.5, direction=1)
    evolve(model, H, state, 1.5, direction=-1)
    assert np.allclose(state.to_numpy(), x, atol=1e-10)


def test_evolve_zero_time_is_identity(chain_setup, probe):
    model, H, _, _ = chain_setup
    x = probe(model.dimension)
    state = vector_from(model, x)
    evolve(model, H, state, 0.0)
    assert np.array_equal(state.to_numpy(), x)


def test_evolvex_matches_dense_commutator(chain_setup, probe):
    model, H, h, positions = chain_setup
    x = probe(model.dimension)
    state = vector_from(model, x)
    destination = ComplexVector(model)
    time_step = 0.8

    evolvex(model, H, state, time_step, destination)

    U = linalg.expm(-1j * h * time_step)
    X = np.diag(positions)
    assert np.allclose(destination.to_numpy(), (X @ U - U @ X) @ x, atol=1e-10)
    assert np.array_equal(state.to_numpy(), x)


def test_kernels():
    g = jackson_kernel(4)
    a = np.pi / 5
    expected = [((5 - n) * np.cos(a * n) + np.sin(a * n) / np.tan(a)) / 5 for n in range(4)]
    assert np.allclose(g, expected)
    assert g[0] == pytest.approx(1.0)
    assert np.all(np.diff(g) < 0)
    assert lorentz_kernel(10)[0] == pytest.approx(1.0)


def test_summation_of_delta_moments_peaks_at_eigenvalue():
    n_moments = 256
    eigenvalue = 0.3
    moments = np.cos(np.arange(n_moments) * np.arccos(eigenvalue)) * jackson_kernel(n_moments)
    energies = np.linspace(-0.99, 0.99, 2001)

    values = chebyshev_summation(moments, energies)

    assert energies[np.argmax(values)] == pytest.approx(eigenvalue, abs=0.01)
    assert trapezoid(values, energies) == pytest.approx(1.0, abs=0.01)
    assert np.all(chebyshev_summation(moments, np.array([-1.0, 1.5])) == 0)


def test_check_finite():
    check_finite("find_dos", np.array([1.0, 2.0 + 1j]))
    with pytest.raises(NumericAnomaly) as info:
        check_finite("find_dos", np.array([1.0, np.nan, np.inf]))
    assert info.value.indices == [(1,), (2,)]
