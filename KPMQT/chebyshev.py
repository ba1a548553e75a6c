"""
Copyright (c) 2024 Marcel S. Claro

GNU Lesser General Public License v3.0
"""

"""
Chebyshev recursions on ComplexVector states: moments, time evolution and
the evolution of the position commutator. Some algorithms were adapted from
https://github.com/deepmodeling/tbplas
BSD licenses
"""

import logging

import numpy as np
from scipy.special import jv  # Bessel function of the first kind

from .errors import NumericAnomaly
from .vector import ComplexVector

logger = logging.getLogger(__name__)


def get_bessel_series(time_step, scale, bessel_max = 250, bessel_precision = 1.0e-14):
    """
    Coefficients J_n(time_step * scale) of the Chebyshev expansion of exp(-iHt).

    The series stops before the first pair of consecutive orders that are both
    below bessel_precision.

    :param time_step: time step in hbar/eV
    :param scale: Hamiltonian rescaling factor in eV
    :return: (n_terms,) numpy array
    :raises ValueError: if bessel_max orders are not enough to converge
    """
    x = time_step * scale
    values = jv(np.arange(bessel_max + 1), x)
    small = np.abs(values) <= bessel_precision
    for order in range(bessel_max):
        if small[order] and small[order + 1]:
            return values[:order]
    raise ValueError(f"Bessel_max too low for time step {time_step} (scaled {x})")


def find_moments_chebyshev(model, H, state_left, state_right):
    """
    Chebyshev moments mu_n = <state_left| T_n(H) |state_right>, n < K.

    The partial sums of every moment are collected in one buffer by
    inner_product_1 and reduced once at the end by inner_product_2.

    :return: (number_of_moments,) complex numpy array
    """
    n_moments = model.number_of_moments
    grid_size = state_left.grid_size
    partials = ComplexVector(model, n=grid_size * n_moments)

    phi_0 = ComplexVector.from_vector(state_right)
    phi_1 = ComplexVector(model, n=state_right.n)
    phi_2 = ComplexVector(model, n=state_right.n)

    # T_0(H) |phi> = |phi>
    state_left.inner_product_1(phi_0, partials, 0)

    if n_moments > 1:
        # T_1(H) |phi> = H |phi>
        H.apply(phi_0, phi_1)
        state_left.inner_product_1(phi_1, partials, 1)

    # T_{n+1} = 2 H T_n - T_{n-1}
    for m in range(2, n_moments):
        H.chebyshev_step(phi_0, phi_1, phi_2)
        state_left.inner_product_1(phi_2, partials, m)
        phi_0.swap(phi_1)
        phi_1.swap(phi_2)

    moments = ComplexVector(model, n=n_moments)
    partials.inner_product_2(moments)
    return moments.to_numpy()


def evolve(model, H, state, time_step, direction=1):
    """
    Evolve ``state`` in place with the Chebyshev expansion of exp(-i*direction*H*t).

    direction=1 is the forward propagator U(t), direction=-1 is U^dagger(t).
    exp(-iHt) = J_0(t') + 2 sum_n (-i)^n J_n(t') T_n(H~), t' = t * energy_max.
    """
    bessel = get_bessel_series(time_step, H.energy_max, model.bessel_max, model.bessel_precision)
    if len(bessel) < 2:
        return
    coeff = -1j * direction

    # Chebyshev polynomial terms, phases included
    T0 = ComplexVector.from_vector(state)  # T_0(H) |psi_0> = |psi_0>
    T1 = ComplexVector(model, n=state.n)
    T2 = ComplexVector(model, n=state.n)
    H.apply(T0, T1, coeff)  # T_1(H) |psi_0> = -i H |psi_0>

    state.zero()
    state.add(T0, float(bessel[0]))
    state.add(T1, 2 * float(bessel[1]))

    for n in range(2, len(bessel)):
        H.chebyshev_step(T0, T1, T2, coeff=2 * coeff, previous_coeff=1.0)  # T_{n+1} = -2i H T_n + T_{n-1}
        state.add(T2, 2 * float(bessel[n]))
        T0.swap(T1)
        T1.swap(T2)


def evolvex(model, H, state, time_step, destination):
    """
    destination = [X, U(t)] |state> with U(t) = exp(-iHt).

    Uses [X, T_{n+1}] = -2i ([X, H] T_n + H [X, T_n]) + [X, T_{n-1}] alongside
    the recursion of evolve.
    """
    bessel = get_bessel_series(time_step, H.energy_max, model.bessel_max, model.bessel_precision)
    destination.zero()
    if len(bessel) < 2:
        return
    coeff = -1j

    T0 = ComplexVector.from_vector(state)
    T1 = ComplexVector(model, n=state.n)
    T2 = ComplexVector(model, n=state.n)
    C0 = ComplexVector(model, n=state.n)  # [X, T_0] = 0
    C1 = ComplexVector(model, n=state.n)
    C2 = ComplexVector(model, n=state.n)
    H.apply(T0, T1, coeff)
    H.apply_commutator(T0, C1, coeff)

    destination.add(C1, 2 * float(bessel[1]))

    for n in range(2, len(bessel)):
        H.commutator_step(C0, C1, T1, C2, 2 * coeff)
        H.chebyshev_step(T0, T1, T2, coeff=2 * coeff, previous_coeff=1.0)
        destination.add(C2, 2 * float(bessel[n]))
        C0.swap(C1)
        C1.swap(C2)
        T0.swap(T1)
        T1.swap(T2)


def chebyshev_summation(moments, scaled_energies):
    """
    Reconstruct a spectral function from (damped) Chebyshev moments.

    f(e) = [mu_0 + 2 sum_n mu_n T_n(e)] / (pi sqrt(1 - e^2))

    :param moments: (..., K) real array
    :param scaled_energies: (E,) energies inside (-1, 1)
    :return: (..., E) array, zero outside the rescaled band
    """
    moments = np.asarray(moments)
    scaled_energies = np.asarray(scaled_energies, dtype=np.float64)
    inside = np.abs(scaled_energies) < 1.0
    eps = np.where(inside, scaled_energies, 0.0)

    n = np.arange(moments.shape[-1])
    cheb = np.cos(np.outer(n, np.arccos(eps)))  # (K, E), T_n(e) = cos(n arccos e)
    weights = np.full(moments.shape[-1], 2.0)
    weights[0] = 1.0

    values = (moments * weights) @ cheb / (np.pi * np.sqrt(1.0 - eps**2))
    return np.where(inside, values, 0.0)


def check_finite(driver, moments, realization=None):
    """Raise NumericAnomaly if moments hold NaN or Inf; values are never clamped."""
    bad = ~np.isfinite(moments)
    if np.any(bad):
        indices = [tuple(int(i) for i in idx) for idx in np.argwhere(bad)]
        where = driver if realization is None else f"{driver} (realization {realization + 1})"
        logger.error(f"Non-finite moments in {where}")
        raise NumericAnomaly(where, indices, moments)
