"""Tests for sanitize / weld / orientation repair."""

import numpy as np
import pytest

from cnc_waterline.convexity import signed_volume
from cnc_waterline.errors import EmptyGeometryError
from cnc_waterline.mesh import TriangleMesh
from cnc_waterline.mesh_repair import (
    orient_faces_outward,
    prepare_mesh,
    sanitize_mesh,
    weld_eps_for,
    weld_vertices,
)


def _with_extra_triangle(mesh: TriangleMesh, triangle) -> TriangleMesh:
    start = mesh.n_vertices
    vertices = np.vstack([mesh.vertices, np.asarray(triangle, dtype=float)])
    faces = np.vstack([mesh.faces, [[start, start + 1, start + 2]]])
    return TriangleMesh(vertices=vertices, faces=faces)


class TestSanitize:
    def test_drops_zero_area_triangle(self, box_mesh, triangle_mesh):
        raw = _with_extra_triangle(triangle_mesh(box_mesh), [[0, 0, 0], [1, 1, 1], [2, 2, 2]])
        assert raw.n_faces == 13
        cleaned = sanitize_mesh(raw)
        assert cleaned.n_faces == 12
        assert cleaned.n_vertices == 36

    def test_drops_non_finite_triangle(self, box_mesh, triangle_mesh):
        raw = _with_extra_triangle(
            triangle_mesh(box_mesh), [[0, 0, 0], [np.nan, 1, 0], [0, 1, 0]]
        )
        assert sanitize_mesh(raw).n_faces == 12

    def test_all_degenerate_raises(self):
        mesh = TriangleMesh(
            vertices=np.array([[0, 0, 0], [1, 0, 0], [2, 0, 0]], dtype=float),
            faces=np.array([[0, 1, 2]]),
        )
        with pytest.raises(EmptyGeometryError):
            sanitize_mesh(mesh)


class TestWeld:
    def test_box_collapses_to_eight_corners(self, box_mesh, triangle_mesh):
        welded = weld_vertices(triangle_mesh(box_mesh))
        assert welded.n_vertices == 8
        assert welded.n_faces == 12

    def test_weld_is_idempotent(self, plate_mesh, triangle_mesh):
        raw = triangle_mesh(plate_mesh)
        eps = weld_eps_for(raw, 1e-6)
        once = weld_vertices(raw, eps=eps)
        twice = weld_vertices(once, eps=eps)
        assert (twice.n_vertices, twice.n_faces) == (once.n_vertices, once.n_faces)

    def test_collapsed_triangles_are_removed(self):
        # Second triangle's corners sit within 1e-3 of each other.
        mesh = TriangleMesh(
            vertices=np.array(
                [
                    [0, 0, 0], [10, 0, 0], [0, 10, 0],
                    [5, 5, 5], [5.0004, 5, 5], [5, 5.0004, 5],
                ],
                dtype=float,
            ),
            faces=np.array([[0, 1, 2], [3, 4, 5]]),
        )
        welded = weld_vertices(mesh, eps=1e-2)
        assert welded.n_faces == 1
        assert welded.n_vertices == 3

    def test_eps_has_absolute_floor(self):
        tiny = TriangleMesh(
            vertices=np.array([[0, 0, 0], [1e-6, 0, 0], [0, 1e-6, 0]]),
            faces=np.array([[0, 1, 2]]),
        )
        assert weld_eps_for(tiny, 1e-6) == pytest.approx(1e-9)


class TestOrientation:
    def test_inverted_box_is_flipped_outward(self, box_mesh):
        inward = TriangleMesh(vertices=box_mesh.vertices, faces=box_mesh.faces[:, ::-1])
        assert signed_volume(inward.vertices, inward.faces) < 0

        oriented, flipped = orient_faces_outward(inward)
        assert flipped == 12
        assert signed_volume(oriented.vertices, oriented.faces) == pytest.approx(1000.0)

    def test_outward_box_is_untouched(self, box_mesh, indexed_mesh):
        mesh = indexed_mesh(box_mesh)
        oriented, flipped = orient_faces_outward(mesh)
        assert flipped == 0
        assert oriented is mesh


def test_prepare_mesh_reports_stage_counts(box_mesh, triangle_mesh):
    mesh, stats = prepare_mesh(triangle_mesh(box_mesh))
    assert stats.faces_in == 12
    assert stats.vertices_in == 36
    assert stats.vertices_welded == 8
    assert mesh.n_faces == 12
    assert stats.weld_eps > 0
