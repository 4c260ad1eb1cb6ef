"""
Sparse Solver Module
희소 대칭 양정치 시스템용 conjugate gradient

The solver never raises on numerical trouble: iteration cap, deadline and
near-zero curvature all end the loop and return the best iterate seen so far
with `converged=False` and the stop reason.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import logging
import time

import numpy as np
from scipy import sparse

_LOGGER = logging.getLogger(__name__)

STOP_CONVERGED = "converged"
STOP_MAX_ITERATIONS = "max_iterations"
STOP_BREAKDOWN = "breakdown"
STOP_DEADLINE = "deadline"
STOP_ZERO_RHS = "zero_rhs"


@dataclass(frozen=True)
class CGResult:
    """
    Attributes:
        x: 해 벡터 (수렴 실패 시 잔차가 가장 작았던 iterate)
        iterations: 수행한 반복 횟수
        residual_norm: 상대 잔차 ||b - Ax|| / ||b|| (x 기준)
        converged: 허용 오차 도달 여부
        reason: 종료 사유
    """
    x: np.ndarray
    iterations: int
    residual_norm: float
    converged: bool
    reason: str


def conjugate_gradient(
    A: sparse.spmatrix,
    b: np.ndarray,
    *,
    x0: Optional[np.ndarray] = None,
    tol: float = 1e-6,
    max_iterations: int = 200,
    preconditioner: str = "jacobi",
    deadline: Optional[float] = None,
    curvature_eps: float = 1e-14,
) -> CGResult:
    """
    (Preconditioned) conjugate gradient for A x = b, A symmetric positive definite.

    Args:
        A: (n, n) sparse matrix (CSR recommended)
        b: (n,) right-hand side
        x0: initial guess (zeros if None)
        tol: relative residual tolerance ||r|| / ||b|| (with 'jacobi' both
            norms are taken after scaling by the inverse diagonal)
        max_iterations: iteration cap
        preconditioner: 'jacobi' (diagonal scaling) or 'none'
        deadline: absolute `time.monotonic()` value after which the loop stops
        curvature_eps: abort when p.Ap <= curvature_eps * scale * p.p

    Returns:
        CGResult
    """
    A = sparse.csr_matrix(A)
    b = np.asarray(b, dtype=np.float64).reshape(-1)
    n = int(b.shape[0])
    if A.shape != (n, n):
        raise ValueError(f"Matrix shape {A.shape} does not match rhs length {n}")

    x = np.zeros(n, dtype=np.float64) if x0 is None else np.array(x0, dtype=np.float64).reshape(-1)
    if x.shape[0] != n:
        raise ValueError(f"Initial guess length {x.shape[0]} does not match rhs length {n}")

    diag = np.asarray(A.diagonal(), dtype=np.float64)
    scale = float(np.mean(np.abs(diag))) if n else 1.0
    if not np.isfinite(scale) or scale <= 0.0:
        scale = 1.0

    if str(preconditioner or "none").lower() == "jacobi":
        inv_diag = np.ones(n, dtype=np.float64)
        ok = np.abs(diag) > 1e-300
        inv_diag[ok] = 1.0 / diag[ok]
        # residuals are measured in the diagonally scaled norm so penalty rows
        # with huge diagonals do not swallow the free rows
        weight = np.abs(inv_diag)
    else:
        inv_diag = None
        weight = None

    def _norm(vec: np.ndarray) -> float:
        if weight is None:
            return float(np.linalg.norm(vec))
        return float(np.linalg.norm(vec * weight))

    b_norm = _norm(b)
    if b_norm == 0.0:
        return CGResult(x=np.zeros(n, dtype=np.float64), iterations=0, residual_norm=0.0,
                        converged=True, reason=STOP_ZERO_RHS)

    r = b - A @ x
    z = r * inv_diag if inv_diag is not None else r.copy()
    p = z.copy()
    rz_old = float(r @ z)

    best_x = x.copy()
    best_res = _norm(r) / b_norm
    if best_res < tol:
        return CGResult(x=best_x, iterations=0, residual_norm=best_res, converged=True, reason=STOP_CONVERGED)

    reason = STOP_MAX_ITERATIONS
    iterations = 0
    for it in range(int(max(0, max_iterations))):
        if deadline is not None and time.monotonic() >= float(deadline):
            reason = STOP_DEADLINE
            break

        Ap = A @ p
        pAp = float(p @ Ap)
        pp = float(p @ p)
        if not np.isfinite(pAp) or pAp <= curvature_eps * scale * max(pp, 1e-300):
            # near-zero curvature: stop instead of dividing by it
            reason = STOP_BREAKDOWN
            break

        alpha = rz_old / pAp
        x += alpha * p
        r -= alpha * Ap
        iterations = it + 1

        res = _norm(r) / b_norm
        if not np.isfinite(res):
            reason = STOP_BREAKDOWN
            break
        if res < best_res:
            best_res = res
            best_x = x.copy()
        if res < tol:
            reason = STOP_CONVERGED
            break

        z = r * inv_diag if inv_diag is not None else r
        rz_new = float(r @ z)
        beta = rz_new / rz_old if rz_old != 0.0 else 0.0
        p = z + beta * p
        rz_old = rz_new

    converged = reason == STOP_CONVERGED
    if not converged:
        _LOGGER.debug(
            "CG stopped (%s) after %d iterations, relative residual %.3e",
            reason, iterations, best_res,
        )
    return CGResult(
        x=best_x,
        iterations=iterations,
        residual_norm=best_res,
        converged=converged,
        reason=reason,
    )
