"""Tests for per-invocation run folders."""

import hashlib
import json

import pytest

from cnc_waterline.run_protocol import Artifact, open_run


@pytest.fixture
def mesh_file(tmp_path):
    path = tmp_path / "part.stl"
    path.write_bytes(b"solid part\nendsolid part\n")
    return path


class TestOpenRun:
    def test_input_is_copied_and_hashed(self, mesh_file, tmp_path):
        run = open_run(tmp_path / "runs", "analyze", mesh_file)
        assert run.input_mesh == run.root / "input" / "part.stl"
        assert run.input_mesh.read_bytes() == mesh_file.read_bytes()
        assert run.mesh_sha256 == hashlib.sha256(mesh_file.read_bytes()).hexdigest()
        assert run.artifacts_dir.is_dir()

    def test_run_id_ends_with_slug(self, mesh_file, tmp_path):
        run = open_run(tmp_path, "  STL to G-code!  ", mesh_file)
        assert run.run_id.endswith("_stl-to-g-code")
        assert run.root.name == run.run_id

    def test_blank_name_falls_back(self, mesh_file, tmp_path):
        assert open_run(tmp_path, "***", mesh_file).run_id.endswith("_run")

    def test_runs_get_distinct_folders(self, mesh_file, tmp_path):
        first = open_run(tmp_path, "analyze", mesh_file)
        second = open_run(tmp_path, "analyze", mesh_file)
        assert first.root != second.root

    def test_missing_mesh_raises_before_creating_a_folder(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            open_run(tmp_path / "runs", "analyze", tmp_path / "absent.stl")
        assert not (tmp_path / "runs").exists()


class TestArtifacts:
    def test_content_types(self, mesh_file, tmp_path):
        run = open_run(tmp_path, "analyze", mesh_file)
        analysis = run.write(Artifact.ANALYSIS, {"is_convex": True})
        mesh = run.write(Artifact.PREPARED_MESH, b"\x00\x01")
        report = run.write(Artifact.REPORT, "# Report\n")

        assert analysis == run.artifacts_dir / "analysis.json"
        assert json.loads(analysis.read_text(encoding="utf-8")) == {"is_convex": True}
        assert mesh.read_bytes() == b"\x00\x01"
        assert report.read_text(encoding="utf-8") == "# Report\n"
        assert set(run.written) == {Artifact.ANALYSIS, Artifact.PREPARED_MESH, Artifact.REPORT}

    def test_unwritten_artifact_path(self, mesh_file, tmp_path):
        run = open_run(tmp_path, "gcode", mesh_file)
        assert run.path(Artifact.PROGRAM).name == "program.nc"
        assert not run.path(Artifact.PROGRAM).exists()


class TestFinish:
    def test_record_lists_written_artifacts(self, mesh_file, tmp_path):
        run = open_run(tmp_path, "gcode", mesh_file)
        run.write(Artifact.PROGRAM, "M30\n")
        path = run.finish("stl_to_gcode", config={"layer_height": 1.0}, results={"lines": 1})

        record = json.loads(path.read_text(encoding="utf-8"))
        assert path == run.root / "run.json"
        assert record["run_id"] == run.run_id
        assert record["tool"] == "stl_to_gcode"
        assert record["mesh_sha256"] == run.mesh_sha256
        assert record["config"] == {"layer_height": 1.0}
        assert record["results"] == {"lines": 1}
        assert record["artifacts"] == {"program": str(run.path(Artifact.PROGRAM))}

    def test_latest_follows_newest_run(self, mesh_file, tmp_path):
        first = open_run(tmp_path, "analyze", mesh_file)
        first.finish("analyze_stl", config={}, results={})
        second = open_run(tmp_path, "analyze", mesh_file)
        second.finish("analyze_stl", config={}, results={})

        latest = tmp_path / "latest"
        if latest.is_symlink():
            assert latest.resolve() == second.root.resolve()
        else:
            assert latest.read_text(encoding="utf-8").strip() == second.run_id
