"""Tests for the convexity analyzer."""

import numpy as np
import pytest

from cnc_waterline import convexity
from cnc_waterline.contracts import AnalysisConfig, ModelRotation
from cnc_waterline.convexity import (
    analyze_convexity,
    confidence_from_ratio,
    edge_statistics,
    hull_volume,
    multi_axis_concavity,
    signed_volume,
)
from cnc_waterline.mesh import TriangleMesh
from cnc_waterline.mesh_repair import prepare_mesh

FAST = AnalysisConfig(grid=48)


def _prepared(mesh, triangle_mesh):
    prepared, _ = prepare_mesh(triangle_mesh(mesh))
    return prepared


class TestVolumes:
    def test_signed_volume_of_cube(self, box_mesh):
        assert signed_volume(box_mesh.vertices, box_mesh.faces) == pytest.approx(1000.0)

    def test_hull_volume_of_cube(self, box_mesh):
        assert hull_volume(np.asarray(box_mesh.vertices) / 100.0) == pytest.approx(1e-3)

    def test_hull_of_too_few_points_is_none(self):
        assert hull_volume(np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0]], dtype=float)) is None

    def test_hull_of_coplanar_points_is_none(self):
        square = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0], [1, 1, 0]], dtype=float)
        assert hull_volume(square) is None

    def test_hull_of_thin_plate_in_unit_frame(self, plate_mesh, triangle_mesh):
        plate = _prepared(plate_mesh, triangle_mesh)
        unit = plate.scaled_about(plate.bbox_center, plate.diagonal)
        expected = 800.0 / plate.diagonal ** 3
        assert hull_volume(unit.vertices) == pytest.approx(expected, rel=1e-6)


class TestEdgeStatistics:
    def test_cube_is_watertight_with_no_concave_edges(self, box_mesh, triangle_mesh):
        stats = edge_statistics(_prepared(box_mesh, triangle_mesh))
        assert stats.edge_count == 18
        assert stats.watertight
        assert stats.concave == 0
        assert stats.concave_ratio == 0.0

    def test_unwelded_mesh_is_all_boundary(self, box_mesh, triangle_mesh):
        stats = edge_statistics(triangle_mesh(box_mesh))
        assert stats.interior == 0
        assert not stats.watertight
        assert stats.concave_ratio == 1.0

    def test_open_mesh_reports_boundary(self, box_mesh):
        open_box = TriangleMesh(vertices=box_mesh.vertices, faces=box_mesh.faces[2:])
        stats = edge_statistics(open_box)
        assert stats.boundary > 0
        assert 0.0 < stats.boundary_ratio < 1.0


class TestMultiAxis:
    def test_cube_has_no_reentrant_rays(self, box_mesh, indexed_mesh):
        ratios = multi_axis_concavity(indexed_mesh(box_mesh), grid=32)
        assert set(ratios) == {"X", "Y", "Z"}
        assert max(ratios.values()) == 0.0

    def test_stacked_plates_reenter_along_z(self, stacked_mesh, indexed_mesh):
        ratios = multi_axis_concavity(indexed_mesh(stacked_mesh), grid=32)
        assert ratios["Z"] > 0.9
        assert ratios["X"] == 0.0


class TestConfidence:
    @pytest.mark.parametrize(
        "ratio, expected",
        [(1.0, 100.0), (1.2, 100.0), (0.975, 50.0), (0.9, 0.0), (float("nan"), 0.0)],
    )
    def test_linear_in_volume_gap(self, ratio, expected):
        assert confidence_from_ratio(ratio, 0.05) == pytest.approx(expected)

    def test_zero_bad_gap_is_all_or_nothing(self):
        assert confidence_from_ratio(1.0, 0.0) == 100.0
        assert confidence_from_ratio(0.999, 0.0) == 0.0


class TestAnalyzeConvexity:
    def test_cube_is_convex(self, box_mesh, triangle_mesh):
        result = analyze_convexity(_prepared(box_mesh, triangle_mesh), FAST)
        assert result.is_convex
        assert result.convexity_ratio == pytest.approx(1.0)
        assert result.mesh_volume == pytest.approx(1000.0)
        assert result.hull_volume == pytest.approx(1000.0)
        assert result.confidence > 90.0
        assert result.watertight
        assert result.machinability.is_three_axis_machable

    def test_convexity_survives_rotation(self, box_mesh, triangle_mesh):
        rotation = ModelRotation(x=0.3, y=0.5, z=0.7)
        rotated = _prepared(box_mesh, triangle_mesh).rotated(rotation)
        result = analyze_convexity(rotated, FAST)
        assert result.is_convex
        assert result.convexity_ratio > 0.99

    def test_stacked_plates_are_not_convex(self, stacked_mesh, triangle_mesh):
        result = analyze_convexity(_prepared(stacked_mesh, triangle_mesh), FAST)
        assert not result.is_convex
        assert result.convexity_ratio < 0.95
        assert result.confidence <= 20.0
        assert "ratio=" in result.diagnostic

    def test_open_mesh_confidence_is_capped(self, box_mesh):
        open_box = TriangleMesh(vertices=box_mesh.vertices, faces=box_mesh.faces[2:])
        result = analyze_convexity(open_box, FAST)
        assert not result.watertight
        assert result.confidence <= 60.0

    def test_flat_sheet_is_degenerate_not_an_error(self, square_sheet_mesh, triangle_mesh):
        result = analyze_convexity(_prepared(square_sheet_mesh, triangle_mesh), FAST)
        assert not result.is_convex
        assert result.confidence == 0.0
        assert result.convexity_ratio == 0.0
        assert result.diagnostic.startswith("Flat geometry")
        assert result.machinability is not None

    def test_to_dict_lists_failure_codes(self, stacked_mesh, triangle_mesh):
        payload = analyze_convexity(_prepared(stacked_mesh, triangle_mesh), FAST).to_dict()
        assert "undercut_ratio" in payload["machinability"]["failure_reason"]
        assert set(payload["multi_axis_ratios"]) == {"X", "Y", "Z"}

    @pytest.mark.parametrize("degrees", [(0.0, 0.0, 0.0), (30.0, 40.0, 50.0), (90.0, 0.0, 0.0)])
    def test_thin_plate_is_convex_at_any_rotation(self, plate_mesh, triangle_mesh, degrees):
        rotation = ModelRotation.from_degrees(*degrees)
        plate = _prepared(plate_mesh, triangle_mesh).rotated(rotation)
        result = analyze_convexity(plate, FAST)
        assert result.is_convex
        assert result.convexity_ratio == pytest.approx(1.0, abs=1e-6)
        assert result.hull_volume == pytest.approx(800.0)


class TestDegenerateVolumes:
    def test_crossed_sheets_have_zero_volume(self):
        # two unit sheets through the origin, in the x=0 and y=0 planes
        vertices = np.array(
            [
                [0, -1, -1], [0, 1, -1], [0, 0, 1],
                [-1, 0, -1], [1, 0, -1], [1, 0, 1],
            ],
            dtype=float,
        )
        crossed = TriangleMesh(vertices=vertices, faces=np.array([[0, 1, 2], [3, 4, 5]]))
        result = analyze_convexity(crossed, FAST)
        assert result.diagnostic == "Mesh volume is zero or not finite"
        assert not result.is_convex
        assert result.confidence == 0.0
        assert result.mesh_volume == 0.0
        assert result.machinability is not None

    def test_failed_hull_keeps_mesh_volume(self, box_mesh, triangle_mesh, monkeypatch):
        monkeypatch.setattr(convexity, "hull_volume", lambda *args, **kwargs: None)
        result = analyze_convexity(_prepared(box_mesh, triangle_mesh), FAST)
        assert result.diagnostic == "Convex hull could not be constructed"
        assert not result.is_convex
        assert result.convexity_ratio == 0.0
        assert result.mesh_volume == pytest.approx(1000.0)
        assert result.machinability.is_three_axis_machable

    def test_zero_hull_volume(self, box_mesh, triangle_mesh, monkeypatch):
        monkeypatch.setattr(convexity, "hull_volume", lambda *args, **kwargs: 0.0)
        result = analyze_convexity(_prepared(box_mesh, triangle_mesh), FAST)
        assert result.diagnostic == "Convex hull volume is zero or not finite"
        assert result.hull_volume == 0.0
        assert result.confidence == 0.0
        assert result.mesh_volume == pytest.approx(1000.0)
