"""Tests for the standard backward pass."""

import jax.numpy as jnp
import numpy as np
import pytest

from cddp.base import backwardpass
from cddp.costs import GenericCost
from cddp.types import RegularizationType
from models import double_integrator_matrices

from conftest import N, DT


def lqr_gains(A, B, Q, R, Qf, steps):
    """Finite horizon discrete Riccati recursion, gains in forward time order."""
    P = Qf
    gains = []
    for _ in range(steps):
        K = -np.linalg.solve(R + B.T @ P @ B, B.T @ P @ A)
        P = Q + A.T @ P @ A + A.T @ P @ B @ K
        P = 0.5 * (P + P.T)
        gains.append(K)
    return gains[::-1]


def test_lqr_gain_double_integrator(make_solver, di_trajectory):
    """Last gain matches the closed form LQR gain; all gains match the Riccati recursion."""
    solver = make_solver()
    results = solver.init_results(*di_trajectory)
    dV = backwardpass(results, solver)

    A, B = (np.asarray(M) for M in double_integrator_matrices(DT))
    Q = DT * np.eye(2)
    R = DT * 0.1 * np.eye(1)
    Qf = 10.0 * np.eye(2)

    K_last = -np.linalg.solve(R + B.T @ Qf @ B, B.T @ Qf @ A)
    np.testing.assert_allclose(np.asarray(results.K[N - 2]), K_last, atol=1e-8)

    expected = lqr_gains(A, B, Q, R, Qf, N - 1)
    for k in range(N - 1):
        np.testing.assert_allclose(np.asarray(results.K[k]), expected[k], atol=1e-8)

    assert dV[0] < 0.0
    assert dV[1] >= 0.0


def test_cost_to_go_symmetric(make_solver, di_trajectory):
    solver = make_solver()
    results = solver.init_results(*di_trajectory)
    backwardpass(results, solver)

    S = np.asarray(results.S)
    assert S.shape == (N, 2, 2)
    for k in range(N):
        np.testing.assert_allclose(S[k], S[k].T, atol=1e-12)


def test_expected_decrease_signs_and_formula(make_solver, di_trajectory):
    solver = make_solver()
    results = solver.init_results(*di_trajectory)
    dV = backwardpass(results, solver)

    bp = results.bp
    d = np.asarray(results.d)
    Qu = np.asarray(bp.Qu)
    Quu = np.asarray(bp.Quu)
    lin = sum(d[k] @ Qu[k] for k in range(N - 1))
    quad = sum(0.5 * d[k] @ Quu[k] @ d[k] for k in range(N - 1))

    np.testing.assert_allclose(np.asarray(dV), [lin, quad], rtol=1e-10)
    assert dV[0] <= 0.0
    assert dV[1] >= 0.0


def test_repeat_is_identical_without_regularization(make_solver, di_trajectory):
    solver = make_solver()
    results = solver.init_results(*di_trajectory)

    dV1 = backwardpass(results, solver)
    K1, d1, S1, s1 = results.K, results.d, results.S, results.s
    assert results.rho == 0.0

    dV2 = backwardpass(results, solver)
    np.testing.assert_array_equal(np.asarray(dV1), np.asarray(dV2))
    np.testing.assert_array_equal(np.asarray(K1), np.asarray(results.K))
    np.testing.assert_array_equal(np.asarray(d1), np.asarray(results.d))
    np.testing.assert_array_equal(np.asarray(S1), np.asarray(results.S))
    np.testing.assert_array_equal(np.asarray(s1), np.asarray(results.s))


def test_cost_to_go_uses_unregularized_hessian(make_solver, di_trajectory):
    rho = 0.5
    solver = make_solver(bp_reg_initial=rho)
    results = solver.init_results(*di_trajectory)
    backwardpass(results, solver)

    bp = results.bp
    for k in range(N - 1):
        Quu = np.asarray(bp.Quu[k])
        Qux = np.asarray(bp.Qux[k])
        np.testing.assert_allclose(np.asarray(bp.Quu_reg[k]), Quu + rho * np.eye(1), atol=1e-12)

        K = np.asarray(results.K[k])
        d = np.asarray(results.d[k])
        np.testing.assert_allclose(K, -np.linalg.solve(Quu + rho * np.eye(1), Qux), atol=1e-10)

        S = (np.asarray(bp.Qxx[k]) + K.T @ Quu @ K + K.T @ Qux + Qux.T @ K)
        np.testing.assert_allclose(np.asarray(results.S[k]), 0.5 * (S + S.T), atol=1e-10)
        s = np.asarray(bp.Qx[k]) + K.T @ Quu @ d + K.T @ np.asarray(bp.Qu[k]) + Qux.T @ d
        np.testing.assert_allclose(np.asarray(results.s[k]), s, atol=1e-10)


def test_state_regularization(make_solver, di_trajectory):
    rho = 0.3
    solver = make_solver(bp_reg_type=RegularizationType.STATE, bp_reg_initial=rho)
    results = solver.init_results(*di_trajectory)
    backwardpass(results, solver)

    fdx = np.asarray(results.fdx)
    fdu = np.asarray(results.fdu)
    bp = results.bp
    for k in range(N - 1):
        Quu_reg = np.asarray(bp.Quu[k]) + rho * fdu[k].T @ fdu[k]
        Qux_reg = np.asarray(bp.Qux[k]) + rho * fdu[k].T @ fdx[k]
        np.testing.assert_allclose(np.asarray(bp.Quu_reg[k]), Quu_reg, atol=1e-12)
        np.testing.assert_allclose(np.asarray(bp.Qux_reg[k]), Qux_reg, atol=1e-12)
        np.testing.assert_allclose(
            np.asarray(results.K[k]), -np.linalg.solve(Quu_reg, Qux_reg), atol=1e-10)
        np.testing.assert_allclose(
            np.asarray(results.d[k]), -np.linalg.solve(Quu_reg, np.asarray(bp.Qu[k])), atol=1e-10)


def _nonconvex_cost(a=10.0, r=1.0):
    """Control Hessian r - a * x0^2 goes negative away from the origin."""
    def runningcost(x, u):
        return 0.5 * x @ x + 0.5 * (r - a * x[0] ** 2) * u[0] ** 2

    def terminalcost(x):
        return 5.0 * x @ x

    return GenericCost(runningcost, terminalcost)


def _nonconvex_trajectory(di_trajectory, k_fail=4):
    """
    Quu = dt * (1 - 40) at k_fail only. The control has no effect on the dynamics
    there, so Qux = 0 and the negative curvature does not leak into S[k_fail].
    """
    _, Us, fdx, fdu = di_trajectory
    Xs = jnp.zeros((N, 2))
    Xs = Xs.at[k_fail].set(jnp.array([2.0, 0.0]))
    Xs = Xs.at[-1].set(jnp.array([1.0, 0.0]))
    fdu = fdu.at[k_fail].set(0.0)
    return Xs, jnp.zeros_like(Us), fdx, fdu


def test_restart_recomputes_every_gain(make_solver, di_trajectory):
    cost = _nonconvex_cost()
    trajectory = _nonconvex_trajectory(di_trajectory)

    solver = make_solver(cost=cost, bp_reg_initial=1.0,
                         bp_reg_increase_factor=4.0, bp_reg_decrease_factor=20.0)
    results = solver.init_results(*trajectory)
    dV = backwardpass(results, solver)

    assert results.bp_restarts == 1
    # one increase by the factor, then one decrease after the completed sweep
    assert results.rho == pytest.approx(4.0 / 20.0)

    # a sweep that starts at the increased value never fails
    fresh_solver = make_solver(cost=cost, bp_reg_initial=4.0)
    fresh = fresh_solver.init_results(*trajectory)
    dV_fresh = backwardpass(fresh, fresh_solver)
    assert fresh.bp_restarts == 0

    np.testing.assert_allclose(np.asarray(dV), np.asarray(dV_fresh), rtol=1e-12)
    np.testing.assert_allclose(np.asarray(results.K), np.asarray(fresh.K), rtol=1e-12)
    np.testing.assert_allclose(np.asarray(results.d), np.asarray(fresh.d), rtol=1e-12)
    np.testing.assert_allclose(np.asarray(results.S), np.asarray(fresh.S), rtol=1e-12)

    # every step before the failing one got a real gain
    assert np.all(np.abs(np.asarray(results.K[:4])) > 0.0)


def test_accepted_regularized_hessians_are_positive_definite(make_solver, di_trajectory):
    solver = make_solver(cost=_nonconvex_cost(), bp_reg_initial=1.0)
    results = solver.init_results(*_nonconvex_trajectory(di_trajectory))
    backwardpass(results, solver)

    for Quu_reg in np.asarray(results.bp.Quu_reg):
        assert np.all(np.linalg.eigvalsh(0.5 * (Quu_reg + Quu_reg.T)) > 0.0)

    # the unregularized block at the failing step is indefinite
    assert np.linalg.eigvalsh(np.asarray(results.bp.Quu[4]))[0] < 0.0


def test_minimum_time_backward_pass(lqr_cost, modelparams):
    from cddp.base import Solver
    from cddp.utils import trajectory_jacobians
    from models import augment, double_integrator
    from conftest import rollout

    h = 0.3
    dynamics = augment(double_integrator, 2, 1, minimum_time=True)
    Us = jnp.tile(jnp.array([0.2, h]), (N - 1, 1))
    Xs = rollout(dynamics, [1.0, 0.0, h], Us)
    fdx, fdu = trajectory_jacobians(dynamics, Xs, Us)

    solver = Solver(lqr_cost, modelparams, minimum_time=True, R_minimum_time=1.0)
    results = solver.init_results(Xs, Us, fdx, fdu)
    dV = backwardpass(results, solver)

    assert results.K.shape == (N - 1, 2, 3)
    assert results.S.shape == (N, 3, 3)
    assert np.all(np.isfinite(np.asarray(results.K)))
    assert dV[0] <= 0.0
    for k in range(N):
        S = np.asarray(results.S[k])
        np.testing.assert_allclose(S, S.T, atol=1e-12)
    for Quu_reg in np.asarray(results.bp.Quu_reg):
        assert np.all(np.linalg.eigvalsh(Quu_reg) > 0.0)
