import unittest

import numpy as np
import pytest

from limbflat.layout import normalize_layout
from limbflat.mesh_data import MeshData
from limbflat.validation import (
    SEVERITY_CRITICAL,
    SEVERITY_INFO,
    SEVERITY_WARNING,
    DistortionReport,
    QualityIssue,
    QualityThresholds,
    calculate_quality_score,
    compute_distortion,
    count_uv_islands,
    grade_distortion,
    pattern_distortion,
    score_label,
    seam_to_surface_ratio,
    summarize_distortion,
    validate_pattern,
)


def _grid(nx: int = 6, ny: int = 4, cell: float = 10.0):
    xs, ys = np.meshgrid(np.arange(nx + 1) * cell, np.arange(ny + 1) * cell)
    points3d = np.stack([xs.ravel(), ys.ravel(), np.zeros(xs.size)], axis=1)
    faces = []
    for i in range(ny):
        for j in range(nx):
            a = i * (nx + 1) + j
            b = a + 1
            c = a + (nx + 1)
            d = c + 1
            faces.append([a, b, d])
            faces.append([a, d, c])
    return points3d, np.asarray(faces, dtype=np.int64)


def _report(avg_area=0.0, max_area=0.0, avg_angle=0.0, max_angle=0.0, m=4) -> DistortionReport:
    return DistortionReport(
        area=np.full(m, avg_area),
        angle=np.full(m, avg_angle),
        avg_area=avg_area,
        max_area=max_area,
        avg_angle=avg_angle,
        max_angle=max_angle,
        grade=grade_distortion(avg_area),
    )


def _codes(result):
    return [issue.code for issue in result.issues]


class TestComputeDistortion(unittest.TestCase):
    def setUp(self):
        self.points3d, self.faces = _grid()

    def test_isometry_has_no_distortion(self):
        report = compute_distortion(self.points3d, self.points3d[:, :2], self.faces)

        self.assertEqual(report.area.shape, (self.faces.shape[0],))
        self.assertAlmostEqual(report.max_area, 0.0)
        self.assertAlmostEqual(report.max_angle, 0.0)
        self.assertEqual(report.grade, "excellent")
        self.assertEqual(report.degenerate_count, 0)

    def test_uniform_scale_is_pure_area_distortion(self):
        report = compute_distortion(self.points3d, 2.0 * self.points3d[:, :2], self.faces)

        np.testing.assert_allclose(report.area, np.log(4.0))
        self.assertAlmostEqual(report.max_angle, 0.0, places=9)
        self.assertEqual(report.grade, "poor")

    def test_stretch_and_shrink_are_symmetric(self):
        grow = compute_distortion(self.points3d, self.points3d[:, :2] * [1.5, 1.0], self.faces)
        shrink = compute_distortion(self.points3d, self.points3d[:, :2] / [1.5, 1.0], self.faces)
        self.assertAlmostEqual(grow.avg_area, shrink.avg_area)
        self.assertGreater(grow.avg_angle, 0.0)

    def test_collapsed_triangle_gets_penalty(self):
        points3d = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]])
        faces = np.array([[0, 1, 2], [0, 2, 3]])
        uv = points3d[:, :2].copy()
        uv[3] = (0.5, 0.5)  # onto the diagonal

        report = compute_distortion(points3d, uv, faces)

        self.assertEqual(report.degenerate_count, 1)
        self.assertAlmostEqual(report.area[0], 0.0)
        self.assertEqual(report.area[1], QualityThresholds().degenerate_penalty)
        self.assertEqual(report.max_area, 5.0)

    def test_empty_faces(self):
        report = compute_distortion(np.zeros((0, 3)), np.zeros((0, 2)), np.zeros((0, 3)))
        self.assertEqual(report.area.size, 0)
        self.assertEqual(report.avg_area, 0.0)


class TestValidatePattern(unittest.TestCase):
    def setUp(self):
        self.points3d, self.faces = _grid()
        self.mesh = MeshData(vertices=self.points3d, faces=self.faces, unit="mm")
        self.pattern = normalize_layout(self.points3d[:, :2], self.faces, self.points3d, unit="mm")

    def test_perfect_pattern_scores_one(self):
        distortion = pattern_distortion(self.mesh, self.pattern)
        result = validate_pattern(self.pattern, distortion)

        self.assertTrue(result.is_valid)
        self.assertEqual(_codes(result), ["OVERLAP_NOT_CHECKED"])
        self.assertEqual(result.issues[0].severity, SEVERITY_INFO)
        self.assertAlmostEqual(result.quality_score, 1.0)
        self.assertEqual(result.quality, "excellent")
        self.assertEqual(result.uv_islands, 1)
        self.assertEqual(result.seam_to_surface_ratio, 0.0)
        self.assertTrue(any("No seams" in r for r in result.recommendations))

    def test_pattern_distortion_compares_in_centimeters(self):
        distortion = pattern_distortion(self.mesh, self.pattern)
        self.assertAlmostEqual(distortion.max_area, 0.0, places=9)

        as_cm = MeshData(vertices=self.points3d, faces=self.faces, unit="cm")
        shifted = pattern_distortion(as_cm, self.pattern)
        np.testing.assert_allclose(shifted.area, np.log(100.0))

    def test_empty_pattern_is_critical(self):
        empty = normalize_layout(np.zeros((0, 2)), np.zeros((0, 3), dtype=np.int64), np.zeros((0, 3)))
        result = validate_pattern(empty)

        self.assertFalse(result.is_valid)
        self.assertIn("EMPTY_PATTERN", _codes(result))
        self.assertIn("MISSING_INDICES", _codes(result))
        self.assertNotIn("LOW_PACKING_EFFICIENCY", _codes(result))
        self.assertEqual(result.critical_count, 2)
        self.assertAlmostEqual(result.quality_score, 0.4)
        self.assertEqual(result.quality, "poor")

    def test_distortion_thresholds(self):
        report = _report(avg_area=0.4, max_area=2.5, avg_angle=20.0, max_angle=50.0, m=self.faces.shape[0])
        result = validate_pattern(self.pattern, report)
        codes = _codes(result)

        for code in (
            "HIGH_AVG_AREA_DISTORTION",
            "HIGH_AVG_ANGLE_DISTORTION",
            "EXTREME_AREA_DISTORTION",
            "EXTREME_ANGLE_DISTORTION",
        ):
            self.assertIn(code, codes)
        self.assertFalse(result.is_valid)
        self.assertEqual(result.critical_count, 1)
        self.assertEqual(result.warning_count, 3)
        # 1 - 0.3 - 3 * 0.1 - 0.3
        self.assertAlmostEqual(result.quality_score, 0.1)
        self.assertTrue(any("Extreme distortion" in r for r in result.recommendations))

    def test_degraded_solve_is_a_warning(self):
        degraded = normalize_layout(
            self.points3d[:, :2], self.faces, self.points3d, unit="mm", degraded=True,
        )
        result = validate_pattern(degraded, _report(m=self.faces.shape[0]))

        self.assertTrue(result.is_valid)
        self.assertIn("DEGRADED_SOLVE", _codes(result))
        self.assertAlmostEqual(result.quality_score, 0.9)
        self.assertEqual(result.quality, "excellent")

    def test_seam_ratio_warning(self):
        chain = np.stack([np.arange(20), np.arange(1, 21)], axis=1)
        seamy = normalize_layout(
            self.points3d[:, :2], self.faces, self.points3d, unit="mm", seam_edges=chain,
        )
        self.assertAlmostEqual(seam_to_surface_ratio(seamy), 21.0 / 35.0)

        result = validate_pattern(seamy, _report(m=self.faces.shape[0]))
        self.assertIn("HIGH_SEAM_RATIO", _codes(result))

    def test_low_packing_and_islands_are_info(self):
        thresholds = QualityThresholds(min_packing_efficiency=1.5, max_uv_islands=0)
        result = validate_pattern(self.pattern, _report(m=self.faces.shape[0]), thresholds=thresholds)

        severities = {i.code: i.severity for i in result.issues}
        self.assertEqual(severities["LOW_PACKING_EFFICIENCY"], SEVERITY_INFO)
        self.assertEqual(severities["MANY_UV_ISLANDS"], SEVERITY_INFO)
        self.assertTrue(result.is_valid)
        self.assertAlmostEqual(result.quality_score, 1.0)

    def test_to_dict(self):
        result = validate_pattern(self.pattern, _report(m=self.faces.shape[0]))
        data = result.to_dict()
        self.assertEqual(data["quality"], "excellent")
        self.assertEqual(data["issues"][0]["code"], "OVERLAP_NOT_CHECKED")


def test_count_uv_islands():
    points3d = np.array(
        [[0, 0, 0], [1, 0, 0], [0, 1, 0], [5, 0, 0], [6, 0, 0], [5, 1, 0]], dtype=np.float64
    )
    faces = np.array([[0, 1, 2], [3, 4, 5]])
    pattern = normalize_layout(points3d[:, :2], faces, points3d)
    assert count_uv_islands(pattern) == 2


@pytest.mark.parametrize(
    "avg_area,expected",
    [(0.0, "excellent"), (0.1, "good"), (0.2, "fair"), (0.35, "poor"), (1.0, "poor")],
)
def test_grade_distortion(avg_area, expected):
    assert grade_distortion(avg_area) == expected


@pytest.mark.parametrize(
    "score,label",
    [(0.95, "excellent"), (0.8, "good"), (0.7, "good"), (0.5, "acceptable"), (0.4, "poor"), (0.0, "poor")],
)
def test_score_label(score, label):
    assert score_label(score) == label


def test_quality_score_is_clamped_and_monotone():
    warning = QualityIssue(SEVERITY_WARNING, "W", "w")
    critical = QualityIssue(SEVERITY_CRITICAL, "C", "c")
    info = QualityIssue(SEVERITY_INFO, "I", "i")

    assert calculate_quality_score([], None, None) == 1.0
    assert calculate_quality_score([info], None, None) == 1.0
    assert calculate_quality_score([warning], None, None) == pytest.approx(0.9)
    assert calculate_quality_score([critical] * 5, None, None) == 0.0

    scores = [
        calculate_quality_score([warning] * k, _report(avg_area=0.1), 0.8) for k in range(4)
    ]
    assert scores == sorted(scores, reverse=True)
    assert scores[0] == pytest.approx(0.9 * 0.8)
    # distortion penalty is capped at 0.3
    assert calculate_quality_score([], _report(avg_area=3.0), None) == pytest.approx(0.7)


class TestScoreMonotonicity(unittest.TestCase):
    def setUp(self):
        self.points3d, self.faces = _grid()
        self.pattern = normalize_layout(self.points3d[:, :2], self.faces, self.points3d, unit="mm")
        self.m = self.faces.shape[0]

    def _assert_never_rises(self, scores):
        self.assertTrue(all(b <= a + 1e-12 for a, b in zip(scores, scores[1:])), scores)
        self.assertLess(scores[-1], scores[0])

    def test_raising_one_triangle_area_distortion(self):
        for face in (0, 17, self.m - 1):
            scores = []
            for value in np.linspace(0.0, 6.0, 31):
                area = np.zeros(self.m)
                area[face] = value
                report = summarize_distortion(area, np.zeros(self.m))
                scores.append(validate_pattern(self.pattern, report).quality_score)

            self.assertAlmostEqual(scores[0], 1.0)
            # 1 - 0.3 (extreme area) - 6 / 48 (average)
            self.assertAlmostEqual(scores[-1], 0.575)
            self._assert_never_rises(scores)

    def test_stretching_one_triangle_of_the_layout(self):
        # vertex 6 is the bottom-right corner, used only by triangle 10
        corner = 6
        scores = []
        for s in np.linspace(0.0, 20.0, 21):
            uv = self.points3d[:, :2].copy()
            uv[corner, 0] += 10.0 * s
            report = compute_distortion(self.points3d, uv, self.faces)
            self.assertTrue(set(np.flatnonzero(report.area > 1e-12).tolist()) <= {10})
            scores.append(validate_pattern(self.pattern, report).quality_score)

        self._assert_never_rises(scores)


def test_summarize_distortion_matches_compute_distortion():
    points3d, faces = _grid(3, 2)
    uv = points3d[:, :2] * [1.5, 1.0]
    report = compute_distortion(points3d, uv, faces)
    again = summarize_distortion(report.area, report.angle)

    assert again.avg_area == pytest.approx(report.avg_area)
    assert again.max_angle == pytest.approx(report.max_angle)
    assert again.grade == report.grade
    assert summarize_distortion(np.zeros(0), np.zeros(0)).avg_area == 0.0
