"""Tests for the command-line interface."""

import json

import pytest

from cartograph.cli import build_parser, main


def run(capsys, project, *args):
    main(["--project", str(project), *args])
    return json.loads(capsys.readouterr().out)


class TestCommands:
    """Test each subcommand end to end."""

    def test_index(self, capsys, project):
        assert run(capsys, project, "index")["updated"] == 2
        assert run(capsys, project, "index")["skipped"] == 2

    def test_search(self, capsys, project):
        result = run(capsys, project, "search", "create orb", "--level", "0")
        assert result["results"] == ["Orb.nova", "Orb.initOrbit", "Galaxy.populate"]

    def test_search_with_role(self, capsys, project):
        result = run(capsys, project, "search", "create orb", "--role", "entry")
        assert [item["key"] for item in result["results"]] == ["Orb.initOrbit", "Galaxy.populate"]

    def test_extract_and_reinject(self, capsys, project):
        extracted = run(capsys, project, "extract", "Orb.nova")
        assert extracted["methods"] == ["Orb.nova"]

        result = run(capsys, project, "reinject", "--dry-run")
        assert result["success"] is True
        assert result["unchanged"] == ["Orb.nova"]

    def test_stats(self, capsys, project):
        run(capsys, project, "index")
        assert run(capsys, project, "stats")["index"]["classes"] == 2

    def test_annotate(self, capsys, project):
        assert run(capsys, project, "annotate", "create orb")["applied"] == 1


class TestErrors:
    """Test exit codes."""

    def test_extract_without_keys(self, capsys, project):
        with pytest.raises(SystemExit) as exc_info:
            main(["--project", str(project), "extract"])
        assert exc_info.value.code == 1
        assert "Error:" in capsys.readouterr().err

    def test_reinject_without_snapshot(self, capsys, project):
        with pytest.raises(SystemExit) as exc_info:
            main(["--project", str(project), "reinject"])
        assert exc_info.value.code == 1

    def test_failed_reinjection_exits_nonzero(self, capsys, project):
        run(capsys, project, "extract", "Orb.nova")
        (project / "src" / "Orb.js").write_text("// changed\n", encoding="utf-8")
        with pytest.raises(SystemExit) as exc_info:
            main(["--project", str(project), "reinject"])
        assert exc_info.value.code == 1
        assert json.loads(capsys.readouterr().out)["success"] is False

    def test_level_choices(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["search", "x", "--level", "7"])
