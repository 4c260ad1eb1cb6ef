"""
Distortion / Quality Validator Module
삼각형별 왜곡 계산, 등급, 이슈 목록, 품질 점수, 권장 사항

Area distortion is |ln(A_2D / A_3D)| (0 = perfect, symmetric for stretch and
compression). Angle distortion is the mean absolute corner-angle change in
degrees. Nothing here raises on a bad pattern: problems become QualityIssue
records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional
import logging

import numpy as np

from .geometry_utils import signed_areas_2d, triangle_areas_3d, triangle_corner_angles
from .layout import FlattenedPattern
from .mesh_data import MeshData
from .topology import find_connected_components
from .unit_utils import length_to_cm

_LOGGER = logging.getLogger(__name__)

SEVERITY_CRITICAL = "critical"
SEVERITY_WARNING = "warning"
SEVERITY_INFO = "info"


@dataclass(frozen=True)
class QualityThresholds:
    # grade buckets on average area distortion
    grade_excellent: float = 0.05
    grade_good: float = 0.15
    grade_fair: float = 0.35

    max_area_distortion: float = 2.0
    max_angle_distortion: float = 45.0
    avg_area_distortion: float = 0.3
    avg_angle_distortion: float = 15.0
    seam_to_surface_ratio: float = 0.5
    max_uv_islands: int = 5
    min_packing_efficiency: float = 0.6

    # value assigned to triangles that collapse in 2D
    degenerate_penalty: float = 5.0
    degenerate_area_ratio: float = 1e-12


DEFAULT_THRESHOLDS = QualityThresholds()


@dataclass
class DistortionReport:
    """
    Attributes:
        area: (M,) |ln(A2/A3)|
        angle: (M,) 평균 |각도 변화| (deg)
        grade: 'excellent' | 'good' | 'fair' | 'poor'
        degenerate_count: 2D에서 붕괴된 삼각형 수
    """
    area: np.ndarray
    angle: np.ndarray
    avg_area: float
    max_area: float
    avg_angle: float
    max_angle: float
    grade: str
    degenerate_count: int = 0

    def to_dict(self) -> dict:
        return {
            "average_area_distortion": float(self.avg_area),
            "max_area_distortion": float(self.max_area),
            "average_angle_distortion": float(self.avg_angle),
            "max_angle_distortion": float(self.max_angle),
            "grade": self.grade,
            "degenerate_triangles": int(self.degenerate_count),
            "area_distortion": self.area.tolist(),
            "angle_distortion": self.angle.tolist(),
        }


@dataclass(frozen=True)
class QualityIssue:
    severity: str
    code: str
    description: str
    suggested_fix: str = ""

    def to_dict(self) -> dict:
        return {
            "severity": self.severity,
            "code": self.code,
            "description": self.description,
            "suggested_fix": self.suggested_fix,
        }


@dataclass
class ValidationResult:
    is_valid: bool
    quality_score: float
    quality: str
    issues: List[QualityIssue] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    uv_islands: int = 0
    seam_to_surface_ratio: float = 0.0

    def issues_by_severity(self, severity: str) -> List[QualityIssue]:
        return [i for i in self.issues if i.severity == severity]

    @property
    def critical_count(self) -> int:
        return len(self.issues_by_severity(SEVERITY_CRITICAL))

    @property
    def warning_count(self) -> int:
        return len(self.issues_by_severity(SEVERITY_WARNING))

    def to_dict(self) -> dict:
        return {
            "is_valid": bool(self.is_valid),
            "quality_score": float(self.quality_score),
            "quality": self.quality,
            "issues": [i.to_dict() for i in self.issues],
            "recommendations": list(self.recommendations),
            "uv_islands": int(self.uv_islands),
            "seam_to_surface_ratio": float(self.seam_to_surface_ratio),
        }


def grade_distortion(avg_area: float, thresholds: QualityThresholds = DEFAULT_THRESHOLDS) -> str:
    if avg_area < thresholds.grade_excellent:
        return "excellent"
    if avg_area < thresholds.grade_good:
        return "good"
    if avg_area < thresholds.grade_fair:
        return "fair"
    return "poor"


def summarize_distortion(
    area: np.ndarray,
    angle: np.ndarray,
    thresholds: QualityThresholds = DEFAULT_THRESHOLDS,
    *,
    degenerate_count: int = 0,
) -> DistortionReport:
    """삼각형별 면적/각도 왜곡 배열을 평균, 최댓값, 등급으로 요약합니다."""
    area = np.asarray(area, dtype=np.float64).reshape(-1)
    angle = np.asarray(angle, dtype=np.float64).reshape(-1)
    if area.size == 0:
        return DistortionReport(
            area=area, angle=angle, avg_area=0.0, max_area=0.0,
            avg_angle=0.0, max_angle=0.0, grade=grade_distortion(0.0, thresholds),
        )
    avg_area = float(np.mean(area))
    return DistortionReport(
        area=area,
        angle=angle,
        avg_area=avg_area,
        max_area=float(np.max(area)),
        avg_angle=float(np.mean(angle)) if angle.size else 0.0,
        max_angle=float(np.max(angle)) if angle.size else 0.0,
        grade=grade_distortion(avg_area, thresholds),
        degenerate_count=int(degenerate_count),
    )


def compute_distortion(
    points3d: np.ndarray,
    uv: np.ndarray,
    faces: np.ndarray,
    thresholds: QualityThresholds = DEFAULT_THRESHOLDS,
) -> DistortionReport:
    """
    삼각형별 면적/각도 왜곡

    Args:
        points3d: (K, 3) uv 정점별 3D 위치 (uv와 같은 길이 단위)
        uv: (K, 2) 2D 좌표
        faces: (M, 3)
    """
    faces = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
    m = int(faces.shape[0])
    if m == 0:
        return summarize_distortion(np.zeros(0), np.zeros(0), thresholds)

    a3 = triangle_areas_3d(points3d, faces)
    a2 = np.abs(signed_areas_2d(uv, faces))

    area = np.full(m, float(thresholds.degenerate_penalty), dtype=np.float64)
    ok = (a3 > 0.0) & (a2 > float(thresholds.degenerate_area_ratio) * a3)
    area[ok] = np.abs(np.log(a2[ok] / a3[ok]))

    ang3 = triangle_corner_angles(points3d, faces)
    ang2 = triangle_corner_angles(uv, faces)
    angle = np.mean(np.abs(ang3 - ang2), axis=1)

    return summarize_distortion(
        area, angle, thresholds, degenerate_count=int(m - int(np.count_nonzero(ok))),
    )


def pattern_distortion(
    mesh: MeshData,
    pattern: FlattenedPattern,
    thresholds: QualityThresholds = DEFAULT_THRESHOLDS,
) -> DistortionReport:
    """패턴(cm)과 원본 메쉬(mesh 단위 -> cm)를 비교합니다."""
    points3d = np.asarray(mesh.vertices, dtype=np.float64)[pattern.source_vertices] * length_to_cm(mesh.unit)
    return compute_distortion(points3d, pattern.vertices, pattern.faces, thresholds)


def count_uv_islands(pattern: FlattenedPattern) -> int:
    if pattern.is_empty:
        return 0
    return len(find_connected_components(pattern.n_vertices, pattern.faces))


def seam_to_surface_ratio(pattern: FlattenedPattern) -> float:
    """절개 엣지에 걸린 2D 정점 비율"""
    if pattern.n_vertices == 0 or pattern.seam_edges.shape[0] == 0:
        return 0.0
    on_seam = np.unique(pattern.seam_edges.reshape(-1))
    return float(on_seam.size) / float(pattern.n_vertices)


def calculate_quality_score(
    issues: List[QualityIssue],
    distortion: Optional[DistortionReport],
    packing_efficiency: Optional[float],
) -> float:
    score = 1.0
    score -= 0.3 * sum(1 for i in issues if i.severity == SEVERITY_CRITICAL)
    score -= 0.1 * sum(1 for i in issues if i.severity == SEVERITY_WARNING)
    if distortion is not None:
        score -= min(0.3, float(distortion.avg_area))
    if packing_efficiency is not None:
        score *= float(packing_efficiency)
    return float(max(0.0, min(1.0, score)))


def score_label(score: float) -> str:
    if score > 0.8:
        return "excellent"
    if score > 0.6:
        return "good"
    if score > 0.4:
        return "acceptable"
    return "poor"


def generate_recommendations(
    pattern: FlattenedPattern,
    issues: List[QualityIssue],
    distortion: Optional[DistortionReport],
    score: float,
) -> List[str]:
    recommendations: List[str] = []

    if any(i.severity == SEVERITY_CRITICAL for i in issues):
        recommendations.append("Critical issues detected. Consider re-unwrapping with different settings.")

    avg_area = float(distortion.avg_area) if distortion is not None else 0.0
    if pattern.method == "cylindrical" and avg_area > 0.2:
        recommendations.append(
            "Cylindrical unwrapping may not be optimal for this geometry. Try the conformal (LSCM) method."
        )
    if avg_area > 0.5:
        recommendations.append("High average distortion detected. Consider adjusting seam placement.")
    if distortion is not None and distortion.max_area > 2.0:
        recommendations.append("Extreme distortion in some areas. Manual UV editing may be needed.")

    if score < 0.6:
        recommendations.append(
            "Overall quality is below acceptable threshold. Review distortion map and consider manual adjustments."
        )

    if pattern.seam_edges.shape[0] == 0:
        recommendations.append(
            "No seams detected. For complex geometries, strategic seam placement can improve quality."
        )

    return recommendations


def validate_pattern(
    pattern: FlattenedPattern,
    distortion: Optional[DistortionReport] = None,
    *,
    thresholds: QualityThresholds = DEFAULT_THRESHOLDS,
) -> ValidationResult:
    """
    패턴 품질 검증

    Args:
        pattern: 정규화된 패턴
        distortion: compute_distortion / pattern_distortion 결과 (None이면 왜곡 검사 생략)
        thresholds: 판정 기준

    Returns:
        ValidationResult (is_valid = critical 이슈 없음)
    """
    t = thresholds
    issues: List[QualityIssue] = []

    if pattern.n_vertices == 0:
        issues.append(QualityIssue(
            SEVERITY_CRITICAL, "EMPTY_PATTERN",
            "No 2D vertices found in unwrapped pattern",
            "Re-run the unwrapping process with a different algorithm",
        ))
    if pattern.n_faces == 0:
        issues.append(QualityIssue(
            SEVERITY_CRITICAL, "MISSING_INDICES",
            "No face indices found in unwrapped pattern",
            "Ensure the input model has valid face data",
        ))

    if distortion is not None and distortion.area.size:
        if distortion.avg_area > t.avg_area_distortion:
            issues.append(QualityIssue(
                SEVERITY_WARNING, "HIGH_AVG_AREA_DISTORTION",
                f"High average area distortion: {distortion.avg_area * 100:.1f}%",
                "Consider a different unwrapping method (e.g. conformal LSCM)",
            ))
        if distortion.avg_angle > t.avg_angle_distortion:
            issues.append(QualityIssue(
                SEVERITY_WARNING, "HIGH_AVG_ANGLE_DISTORTION",
                f"High average angle distortion: {distortion.avg_angle:.1f}°",
                "Try conformal unwrapping for better angle preservation",
            ))
        if distortion.max_area > t.max_area_distortion:
            issues.append(QualityIssue(
                SEVERITY_CRITICAL, "EXTREME_AREA_DISTORTION",
                f"Extreme area distortion detected: {distortion.max_area * 100:.1f}%",
                "The pattern may be unusable. Try hybrid unwrapping or manual seam placement",
            ))
        if distortion.max_angle > t.max_angle_distortion:
            issues.append(QualityIssue(
                SEVERITY_WARNING, "EXTREME_ANGLE_DISTORTION",
                f"Extreme angle distortion detected: {distortion.max_angle:.1f}°",
                "Consider adding more seams to reduce distortion",
            ))

    ratio = seam_to_surface_ratio(pattern)
    if ratio > t.seam_to_surface_ratio:
        issues.append(QualityIssue(
            SEVERITY_WARNING, "HIGH_SEAM_RATIO",
            f"High seam-to-surface ratio: {ratio * 100:.1f}%",
            "Too many seams may complicate manufacturing. Try reducing seam count",
        ))

    if pattern.degraded:
        issues.append(QualityIssue(
            SEVERITY_WARNING, "DEGRADED_SOLVE",
            "Solver did not converge; the pattern is a best-effort result",
            "Raise the iteration limit or simplify the mesh",
        ))

    islands = count_uv_islands(pattern)
    if islands > t.max_uv_islands:
        issues.append(QualityIssue(
            SEVERITY_INFO, "MANY_UV_ISLANDS",
            f"Pattern has {islands} separate pieces. This may complicate assembly.",
            "Review pattern complexity",
        ))

    if not pattern.is_empty and pattern.packing_efficiency < t.min_packing_efficiency:
        issues.append(QualityIssue(
            SEVERITY_INFO, "LOW_PACKING_EFFICIENCY",
            f"Low packing efficiency: {pattern.packing_efficiency * 100:.1f}%",
            "Material waste is high. Consider optimizing pattern layout or nested packing",
        ))

    if not pattern.overlap_checked:
        issues.append(QualityIssue(
            SEVERITY_INFO, "OVERLAP_NOT_CHECKED",
            "Self-overlap of the flat pattern was not checked",
            "Inspect the pattern visually before cutting",
        ))

    packing = None if pattern.is_empty else pattern.packing_efficiency
    score = calculate_quality_score(issues, distortion, packing)
    result = ValidationResult(
        is_valid=not any(i.severity == SEVERITY_CRITICAL for i in issues),
        quality_score=score,
        quality=score_label(score),
        issues=issues,
        recommendations=generate_recommendations(pattern, issues, distortion, score),
        uv_islands=islands,
        seam_to_surface_ratio=ratio,
    )
    _LOGGER.debug(
        "Validation: score=%.3f (%s), %d critical, %d warning",
        result.quality_score, result.quality, result.critical_count, result.warning_count,
    )
    return result
