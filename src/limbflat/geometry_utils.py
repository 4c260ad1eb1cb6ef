"""
Geometry helpers shared by the seam planner, the unwrappers and the
measurement engine: axis selection, cylindrical coordinates, per-triangle
areas/angles and 2D similarity alignment.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


_AXIS_FRAMES = {
    # axis -> (axis vector, e1, e2); (e1, e2, axis) is right-handed
    "x": (np.array([1.0, 0.0, 0.0]), np.array([0.0, 1.0, 0.0]), np.array([0.0, 0.0, 1.0])),
    "y": (np.array([0.0, 1.0, 0.0]), np.array([0.0, 0.0, 1.0]), np.array([1.0, 0.0, 0.0])),
    "z": (np.array([0.0, 0.0, 1.0]), np.array([1.0, 0.0, 0.0]), np.array([0.0, 1.0, 0.0])),
}


def normalize_axis_choice(choice: str | None) -> str:
    c = str(choice or "").strip().lower()
    if c in {"x", "x axis", "x-axis"}:
        return "x"
    if c in {"y", "y axis", "y-axis"}:
        return "y"
    if c in {"z", "z axis", "z-axis"}:
        return "z"
    return "auto"


def axis_frame(axis: str) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """(axis, e1, e2) unit vectors for an explicit 'x' | 'y' | 'z' axis."""
    a = normalize_axis_choice(axis)
    if a == "auto":
        a = "z"
    ax, e1, e2 = _AXIS_FRAMES[a]
    return ax.copy(), e1.copy(), e2.copy()


def choose_best_axis_xyz(vertices: np.ndarray) -> str:
    """
    Pick the coordinate axis a tube-like point set wraps around.

    The axis with the most uniform radial distance (std / median of the
    radius about the cross-section centroid) wins.
    """
    v = np.asarray(vertices, dtype=np.float64)
    if v.ndim != 2 or v.shape[0] < 4 or v.shape[1] < 3:
        return "z"

    best_axis = "z"
    best_score = float("inf")
    for ax in ("x", "y", "z"):
        axis, _, _ = axis_frame(ax)
        t = v @ axis
        perp = v - t[:, None] * axis[None, :]
        center = perp.mean(axis=0)
        r = np.linalg.norm(perp - center[None, :], axis=1)
        r = r[np.isfinite(r)]
        if r.size < 4:
            continue
        med = float(np.median(r))
        if not np.isfinite(med) or med < 1e-9:
            continue
        score = float(np.std(r) / med)
        if score < best_score:
            best_score = score
            best_axis = ax

    return best_axis


def resolve_axis(vertices: np.ndarray, axis: str | None = "auto") -> str:
    a = normalize_axis_choice(axis)
    if a == "auto":
        return choose_best_axis_xyz(vertices)
    return a


def wrap_angle(angle):
    """Wrap angles to [-pi, pi)."""
    return np.mod(np.asarray(angle, dtype=np.float64) + np.pi, 2.0 * np.pi) - np.pi


@dataclass(frozen=True)
class CylindricalCoordinates:
    axis: str
    theta: np.ndarray   # (N,) in [-pi, pi]
    height: np.ndarray  # (N,) coordinate along the axis
    radius: np.ndarray  # (N,) distance from the axis line through `center`
    center: np.ndarray  # (2,) cross-section centroid in (e1, e2)


def cylindrical_coordinates(vertices: np.ndarray, axis: str = "auto") -> CylindricalCoordinates:
    """정점들을 축 기준 원통 좌표 (theta, height, radius)로 변환합니다."""
    v = np.asarray(vertices, dtype=np.float64)
    resolved = resolve_axis(v, axis)
    a, e1, e2 = axis_frame(resolved)

    height = v @ a
    x = v @ e1
    y = v @ e2
    if v.shape[0]:
        center = np.array([float(x.mean()), float(y.mean())], dtype=np.float64)
    else:
        center = np.zeros(2, dtype=np.float64)
    dx = x - center[0]
    dy = y - center[1]

    return CylindricalCoordinates(
        axis=resolved,
        theta=np.arctan2(dy, dx),
        height=height,
        radius=np.hypot(dx, dy),
        center=center,
    )


def triangle_areas_3d(vertices: np.ndarray, faces: np.ndarray) -> np.ndarray:
    tri = np.asarray(vertices, dtype=np.float64)[np.asarray(faces)[:, :3]]
    cross = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
    return np.linalg.norm(cross, axis=1) * 0.5


def signed_areas_2d(uv: np.ndarray, faces: np.ndarray) -> np.ndarray:
    tri = np.asarray(uv, dtype=np.float64)[np.asarray(faces)[:, :3], :2]
    e1 = tri[:, 1] - tri[:, 0]
    e2 = tri[:, 2] - tri[:, 0]
    return 0.5 * (e1[:, 0] * e2[:, 1] - e1[:, 1] * e2[:, 0])


def triangle_corner_angles(points: np.ndarray, faces: np.ndarray) -> np.ndarray:
    """
    (M, 3) corner angles in degrees, works for 2D and 3D points.

    Zero-length edges give a 0 angle at the affected corners.
    """
    tri = np.asarray(points, dtype=np.float64)[np.asarray(faces)[:, :3]]
    angles = np.zeros(tri.shape[:2], dtype=np.float64)
    for k in range(3):
        p = tri[:, k]
        e1 = tri[:, (k + 1) % 3] - p
        e2 = tri[:, (k + 2) % 3] - p
        n1 = np.linalg.norm(e1, axis=1)
        n2 = np.linalg.norm(e2, axis=1)
        denom = n1 * n2
        ok = denom > 1e-300
        cos = np.zeros_like(denom)
        cos[ok] = np.einsum("ij,ij->i", e1[ok], e2[ok]) / denom[ok]
        angles[ok, k] = np.degrees(np.arccos(np.clip(cos[ok], -1.0, 1.0)))
    return angles


def reference_basis(vertices: np.ndarray) -> np.ndarray:
    """
    PCA 기반 2x3 투영 축 (가장 넓게 퍼진 두 주성분).

    축 부호는 결정적으로 고정합니다 (PCA 부호 뒤집힘 방지).
    """
    v = np.asarray(vertices, dtype=np.float64)
    if v.ndim != 2 or v.shape[0] < 3:
        return np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]], dtype=np.float64)

    centered = v - v.mean(axis=0)
    cov = centered.T @ centered / float(v.shape[0])
    try:
        eigenvalues, eigenvectors = np.linalg.eigh(cov)
    except np.linalg.LinAlgError:
        return np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]], dtype=np.float64)
    order = np.argsort(eigenvalues)[::-1]
    axes = eigenvectors[:, order]

    u = axes[:, 0].copy()
    w = axes[:, 1].copy()
    for axis in (u, w):
        idx = int(np.argmax(np.abs(axis)))
        if axis[idx] < 0:
            axis *= -1
    return np.vstack([u, w])


def align_uv_to_anchors(uv: np.ndarray, a: int, b: int, target_dist: float) -> np.ndarray:
    """UV를 (a)->(0,0), (b)->(target_dist,0)로 오도록 similarity 정렬합니다."""
    uv = np.asarray(uv, dtype=np.float64)
    out = uv[:, :2].copy()
    if out.shape[0] == 0:
        return out

    p0 = out[a].copy()
    v = out[b] - p0
    norm = float(np.linalg.norm(v))
    if not np.isfinite(norm) or norm < 1e-12:
        out[a] = (0.0, 0.0)
        out[b] = (float(target_dist), 0.0)
        return out

    angle = float(np.arctan2(v[1], v[0]))
    c = float(np.cos(-angle))
    s = float(np.sin(-angle))
    rot = np.array([[c, -s], [s, c]], dtype=np.float64)

    scale = float(target_dist) / norm if np.isfinite(target_dist) and float(target_dist) > 0 else 1.0
    out = (out - p0) @ rot.T
    out *= scale
    out[a] = (0.0, 0.0)
    out[b] = (float(target_dist), 0.0)
    return out
