"""
Copyright (c) 2024 Marcel S. Claro

GNU Lesser General Public License v3.0
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

import numpy as np
import torch

from .chebyshev import (
    chebyshev_summation,
    check_finite,
    evolve,
    evolvex,
    find_moments_chebyshev,
)
from .errors import DimensionMismatchError
from .util import time_to_fs
from .vector import ComplexVector, random_phase_state

logger = logging.getLogger(__name__)


@dataclass
class DosResult:
    """
    Density of states from the kernel polynomial method.

    Attributes:
        energies: Energy grid in eV
        dos: DOS per basis state in 1/eV on the energy grid
        moments: Averaged moments after kernel damping
        raw_moments: Averaged moments before damping
        energy_max: Rescaling factor of the Hamiltonian
        number_of_random_vectors: Realizations that were averaged
    """
    energies: np.ndarray
    dos: np.ndarray
    moments: np.ndarray
    raw_moments: np.ndarray
    energy_max: float
    number_of_random_vectors: int


@dataclass
class VacResult:
    """
    Velocity autocorrelation.

    Attributes:
        times: (M,) correlation times in hbar/eV, starting at 0
        energies: (E,) energy grid in eV
        vac: (M, E) energy-resolved VAC, DOS weighted
        total: (M,) VAC summed over energies, <V(0)V(t)> per state
        sigma: (M, E) running conductivity, integral of vac up to each time
        moments: (M, K) damped moments
        raw_moments: (M, K) moments before damping
    """
    times: np.ndarray
    energies: np.ndarray
    vac: np.ndarray
    total: np.ndarray
    sigma: np.ndarray
    moments: np.ndarray
    raw_moments: np.ndarray


@dataclass
class MsdResult:
    """
    Mean-squared displacement.

    Attributes:
        times: (M,) times in hbar/eV, first entry is the first time step
        energies: (E,) energy grid in eV
        msd: (M, E) energy-resolved MSD, DOS weighted
        total: (M,) MSD summed over energies, per state
        sigma: (M, E) conductivity d(MSD)/dt / 2
        moments: (M, K) damped moments
        raw_moments: (M, K) moments before damping
    """
    times: np.ndarray
    energies: np.ndarray
    msd: np.ndarray
    total: np.ndarray
    sigma: np.ndarray
    moments: np.ndarray
    raw_moments: np.ndarray


def sigma_from_vac(times, vac):
    """Running integral of the VAC over time (trapezoid rule), zero at t = 0."""
    vac = np.asarray(vac)
    sigma = np.zeros_like(vac)
    for m in range(1, len(times)):
        sigma[m] = sigma[m - 1] + 0.5 * (vac[m - 1] + vac[m]) * (times[m] - times[m - 1])
    return sigma


def sigma_from_msd(times, msd):
    """Conductivity as half the time derivative of the MSD; MSD(0) = 0."""
    msd = np.asarray(msd)
    previous_msd = np.concatenate([np.zeros_like(msd[:1]), msd[:-1]])
    previous_time = np.concatenate([[0.0], np.asarray(times)[:-1]])
    dt = (np.asarray(times) - previous_time).reshape((-1,) + (1,) * (msd.ndim - 1))
    return (msd - previous_msd) / (2.0 * dt)


def _generator(model, realization):
    generator = torch.Generator(device=model.device)
    generator.manual_seed(model.seed + realization)
    return generator


def _check_inputs(model, H, random_state):
    if H.n != model.dimension:
        raise DimensionMismatchError(model.dimension, H.n, "Hamiltonian")
    if random_state is not None and random_state.n != model.dimension:
        raise DimensionMismatchError(model.dimension, random_state.n, "random_state")


def _run_realizations(model, driver, realization, random_state=None):
    """
    Average ``realization(state)`` over the random-phase probes.

    Every realization owns its vectors and returns its own accumulator. The
    accumulators are merged in realization order once all of them finished,
    also when they run concurrently on model.num_workers threads. The first
    failing realization aborts the loop.
    """
    if random_state is not None:
        logger.info(f"Using the supplied probe state for a single {driver} realization")
        moments = realization(random_state)
        check_finite(driver, moments, 0)
        return moments, 1

    num_samples = model.number_of_random_vectors

    def sample(i_sample):
        logger.info(f"Sample {i_sample + 1} of {num_samples}")
        state = random_phase_state(model, _generator(model, i_sample))
        moments = realization(state)
        check_finite(driver, moments, i_sample)
        return moments

    if model.num_workers > 1 and num_samples > 1:
        results = [None] * num_samples
        with ThreadPoolExecutor(max_workers=model.num_workers) as executor:
            future_to_sample = {executor.submit(sample, i): i for i in range(num_samples)}
            try:
                for future in as_completed(future_to_sample):
                    results[future_to_sample[future]] = future.result()
            except Exception:
                # Abort the run: queued realizations never start
                for pending in future_to_sample:
                    pending.cancel()
                raise
    else:
        results = [sample(i) for i in range(num_samples)]

    total = results[0].copy()
    for moments in results[1:]:
        total += moments
    return total / num_samples, num_samples


def _check_norm(state, norm_ref, step, model):
    if step % model.wfn_check_step == 0:
        norm_diff = abs(state.norm_squared() - norm_ref)
        if norm_diff > model.wfn_check_thr:
            logger.warning(f"Wavefunction norm exceeded threshold at timestep {step}: Difference = {norm_diff}")


def find_dos(model, H, random_state=None):
    """
    Density of states with random-phase trace estimation.

    Args:
        model (Model): run parameters
        H (Hamiltonian): rescaled Hamiltonian
        random_state (ComplexVector, optional): fixed probe; when given a
            single deterministic realization is computed with it

    Returns:
        DosResult
    """
    _check_inputs(model, H, random_state)
    logger.info("Calculating DOS moments.")

    def realization(state):
        return find_moments_chebyshev(model, H, state, state)

    raw_moments, count = _run_realizations(model, "find_dos", realization, random_state)
    moments = raw_moments * model.damping

    energies = model.energy_grid(H.energy_max)
    dos = chebyshev_summation(moments.real, H.rescale_energies(energies)) / H.energy_max
    return DosResult(
        energies=energies,
        dos=dos,
        moments=moments,
        raw_moments=raw_moments,
        energy_max=H.energy_max,
        number_of_random_vectors=count
    )


def find_vac(model, H, random_state=None):
    """
    Energy-resolved velocity autocorrelation Re<phi| V U(t) delta(E-H) V U^dagger(t) |phi>.

    At every correlation time the moments <U^dagger V phi| T_n(H) |V U^dagger phi>
    are accumulated, then both states are propagated by U^dagger(dt).

    Returns:
        VacResult
    """
    _check_inputs(model, H, random_state)
    n_steps = model.number_of_steps_correlation
    times = np.concatenate([[0.0], np.cumsum(model.time_step[:-1])])
    logger.info(f"Time step for propagation: {time_to_fs(model.time_step[0]):7.3f} fs")
    logger.info("Calculating VAC moments.")

    def realization(state):
        moments = np.zeros((n_steps, model.number_of_moments), dtype=np.complex128)
        state_left = ComplexVector.from_vector(state)
        state_left_copy = ComplexVector(model)
        state_right = ComplexVector(model)
        H.apply_current(state, state_right)
        norm_ref = state_left.norm_squared()

        for m in range(n_steps):
            H.apply_current(state_left, state_left_copy)
            moments[m] = find_moments_chebyshev(model, H, state_right, state_left_copy)
            logger.debug(f"VAC step {m + 1} of {n_steps}")
            if m < n_steps - 1:
                evolve(model, H, state_left, model.time_step[m], direction=-1)
                evolve(model, H, state_right, model.time_step[m], direction=-1)
                _check_norm(state_left, norm_ref, m + 1, model)
        return moments

    raw_moments, _ = _run_realizations(model, "find_vac", realization, random_state)
    moments = raw_moments * model.damping

    energies = model.energy_grid(H.energy_max)
    vac = chebyshev_summation(moments.real, H.rescale_energies(energies)) / H.energy_max
    return VacResult(
        times=times,
        energies=energies,
        vac=vac,
        total=moments[:, 0].real,
        sigma=sigma_from_vac(times, vac),
        moments=moments,
        raw_moments=raw_moments
    )


def find_msd(model, H, random_state=None):
    """
    Energy-resolved mean-squared displacement <phi| [X,U(t)]^dagger delta(E-H) [X,U(t)] |phi>.

    The commutator state |x(t)> = [X, U(t)]|phi> is advanced with
    |x(t+dt)> = U(dt)|x(t)> + [X, U(dt)] U(t)|phi>.

    Returns:
        MsdResult
    """
    _check_inputs(model, H, random_state)
    n_steps = model.number_of_steps_correlation
    times = np.cumsum(model.time_step)
    logger.info(f"Time step for propagation: {time_to_fs(model.time_step[0]):7.3f} fs")
    logger.info("Calculating MSD moments.")

    def realization(state):
        moments = np.zeros((n_steps, model.number_of_moments), dtype=np.complex128)
        state_t = ComplexVector.from_vector(state)
        state_x = ComplexVector(model)
        state_copy = ComplexVector(model)
        norm_ref = state_t.norm_squared()

        for m in range(n_steps):
            time_step = model.time_step[m]
            evolvex(model, H, state_t, time_step, state_copy)
            evolve(model, H, state_x, time_step)
            state_x.add(state_copy)
            evolve(model, H, state_t, time_step)
            _check_norm(state_t, norm_ref, m + 1, model)
            moments[m] = find_moments_chebyshev(model, H, state_x, state_x)
            logger.debug(f"MSD step {m + 1} of {n_steps}")
        return moments

    raw_moments, _ = _run_realizations(model, "find_msd", realization, random_state)
    moments = raw_moments * model.damping

    energies = model.energy_grid(H.energy_max)
    msd = chebyshev_summation(moments.real, H.rescale_energies(energies)) / H.energy_max
    return MsdResult(
        times=times,
        energies=energies,
        msd=msd,
        total=moments[:, 0].real,
        sigma=sigma_from_msd(times, msd),
        moments=moments,
        raw_moments=raw_moments
    )
