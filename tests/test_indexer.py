"""Tests for the incremental method indexer."""

import os

import pytest

from cartograph.config import CartographConfig
from cartograph.indexer import MethodIndexer, RoleRules, detect_changes, scan_directory_stats
from cartograph.indexer.incremental import FileStat
from cartograph.models import FileRecord, Role, RoleSource

from conftest import GALAXY_JS, ORB_JS, create_project, write_file


class TestIndexAll:
    """Test full and incremental indexing passes."""

    def test_first_pass_indexes_everything(self, config):
        stats = MethodIndexer(config).index_all()
        assert stats.updated == 2
        assert stats.skipped == 0
        assert stats.errors == 0

    def test_method_keys(self, indexer):
        assert set(indexer.index.methods) == {
            "Orb.nova", "Orb.spin", "Orb.tick", "Orb.initOrbit",
            "Galaxy.populate", "Galaxy.getOrbs",
            "formatDate", "_privateHelper",
        }
        assert set(indexer.index.classes) == {"Orb", "Galaxy"}

    def test_second_pass_skips_unchanged(self, indexer):
        stats = indexer.index_all()
        assert stats.updated == 0
        assert stats.skipped == 2

    def test_modified_file_is_reparsed(self, indexer, project):
        write_file(project, "src/Orb.js", ORB_JS.replace("spin(speed)", "spinFast(speed)"))
        stats = indexer.index_all()
        assert stats.updated == 1
        assert indexer.get_method("Orb.spin") is None
        assert indexer.get_method("Orb.spinFast") is not None

    def test_deleted_file_is_purged(self, indexer, project):
        (project / "src" / "Galaxy.js").unlink()
        stats = indexer.index_all()
        assert stats.deleted == 1
        assert indexer.get_method("Galaxy.populate") is None
        assert indexer.get_method("formatDate") is None
        assert indexer.get_class("Galaxy") is None
        assert "src/Galaxy.js" not in indexer.index.files

    def test_force_reparses(self, indexer):
        stats = indexer.index_all(force=True)
        assert stats.updated == 2
        assert stats.skipped == 0

    def test_parse_error_is_counted_and_pass_continues(self, project, config):
        write_file(project, "src/Broken.js", "class Broken {\n  method( {\n}\n")
        indexer = MethodIndexer(config)
        stats = indexer.index_all()
        assert stats.errors == 1
        assert stats.error_files[0]["path"] == "src/Broken.js"
        assert stats.updated == 2
        assert "src/Broken.js" not in indexer.index.files

    def test_parse_error_keeps_previous_rows(self, indexer, project):
        write_file(project, "src/Orb.js", "export class Orb {\n  nova( {\n}\n")
        stats = indexer.index_all()
        assert stats.errors == 1
        assert indexer.get_method("Orb.nova") is not None

    def test_ignored_directories_and_backups(self, project, config):
        write_file(project, "src/node_modules/dep/index.js", "export function dep() {}\n")
        write_file(project, "src/.hidden/secret.js", "export function secret() {}\n")
        write_file(project, "src/Orb.js.backup", ORB_JS)
        write_file(project, "src/notes.md", "# notes\n")
        indexer = MethodIndexer(config)
        indexer.index_all()
        assert set(indexer.index.files) == {"src/Galaxy.js", "src/Orb.js"}

    def test_oversized_file_skipped(self, project):
        config = CartographConfig(project_root=project, max_file_size=len(ORB_JS) - 1)
        indexer = MethodIndexer(config)
        indexer.index_all()
        assert "src/Orb.js" not in indexer.index.files

    def test_index_file(self, indexer, project):
        write_file(project, "src/Star.js", "export class Star {\n  shine() {}\n}\n")
        assert indexer.index_file(project / "src" / "Star.js") is True
        assert indexer.get_method("Star.shine") is not None

    def test_remove_file(self, indexer):
        assert indexer.remove_file("src/Orb.js") is True
        assert indexer.get_method("Orb.nova") is None
        assert indexer.remove_file("src/Orb.js") is False


class TestKeyCollisions:
    """Test keys declared by more than one file."""

    DUP_A = "export class Dup {\n  run() {\n    return 'a';\n  }\n}\n"
    DUP_B = "export class Dup {\n  run() {\n    return 'b';\n  }\n}\n"

    @pytest.fixture
    def dup_project(self, tmp_path):
        return create_project(tmp_path / "dup", {"src/a.js": self.DUP_A, "src/b.js": self.DUP_B})

    @pytest.fixture
    def dup_indexer(self, dup_project):
        indexer = MethodIndexer(CartographConfig(project_root=dup_project))
        indexer.index_all()
        return indexer

    def test_last_file_wins(self, dup_indexer):
        assert dup_indexer.get_method("Dup.run").file == "src/b.js"
        assert dup_indexer.index.files["src/a.js"].method_keys == ["Dup.run"]

    def test_deleting_winner_restores_other_file(self, dup_indexer, dup_project):
        (dup_project / "src" / "b.js").unlink()
        stats = dup_indexer.index_all()
        assert stats.deleted == 1
        assert stats.updated == 1
        assert stats.skipped == 0
        assert dup_indexer.get_method("Dup.run").file == "src/a.js"
        assert dup_indexer.get_class("Dup").file == "src/a.js"

    def test_winner_dropping_key_restores_other_file(self, dup_indexer, dup_project):
        write_file(dup_project, "src/b.js", "export function other() {}\n")
        dup_indexer.index_all()
        assert dup_indexer.get_method("Dup.run").file == "src/a.js"
        assert dup_indexer.get_method("other").file == "src/b.js"

    def test_remove_file_restores_other_file(self, dup_indexer):
        assert dup_indexer.remove_file("src/b.js") is True
        assert dup_indexer.get_method("Dup.run").file == "src/a.js"


class TestEntries:
    """Test the stored method entries."""

    def test_documented_method(self, indexer):
        nova = indexer.get_method("Orb.nova")
        assert nova.file == "src/Orb.js"
        assert nova.class_name == "Orb"
        assert nova.is_static is True
        assert nova.is_exported is True
        assert nova.role == Role.HELPER
        assert nova.role_source == RoleSource.TAG
        assert nova.description == "Create a new orb instance from a seed."
        assert nova.consumers == ["Galaxy", "Nebula"]
        assert nova.effects == {"creates": ["Orb"]}
        assert nova.context.requires == ["seed"]

    def test_roles_from_naming_rules(self, indexer):
        assert indexer.get_method("Orb.initOrbit").role == Role.ENTRY
        assert indexer.get_method("Galaxy.getOrbs").role == Role.SERVICE
        assert indexer.get_method("_privateHelper").role == Role.INTERNAL
        assert indexer.get_method("Orb.tick").role == Role.INTERNAL
        assert indexer.get_method("Orb.tick").role_source == RoleSource.HEURISTIC

    def test_exported_function_defaults_to_helper(self, indexer):
        format_date = indexer.get_method("formatDate")
        assert format_date.role == Role.HELPER
        assert format_date.role_source == RoleSource.HEURISTIC

    def test_unmatched_method_defaults_to_internal(self, indexer):
        spin = indexer.get_method("Orb.spin")
        assert spin.role == Role.INTERNAL
        assert spin.role_source == RoleSource.DEFAULT

    def test_class_entry(self, indexer):
        orb = indexer.get_class("Orb")
        assert orb.extends == "Entity"
        assert orb.role == Role.CORE
        assert orb.method_count == 4

    def test_methods_of_class(self, indexer):
        keys = {m.key for m in indexer.methods_of_class("Galaxy")}
        assert keys == {"Galaxy.populate", "Galaxy.getOrbs"}

    def test_duplicate_key_last_file_wins(self, project, config):
        write_file(project, "src/zz/Orb.js", "export class Orb {\n  nova() {}\n}\n")
        indexer = MethodIndexer(config)
        indexer.index_all()
        assert indexer.get_method("Orb.nova").file == "src/zz/Orb.js"


class TestExtraction:
    """Test code extraction from the owning file."""

    def test_extract_includes_doc_comment(self, indexer):
        code = indexer.extract_method_code("Orb.nova")
        assert code.startswith("/**\n   * Create a new orb instance from a seed.")
        assert "const orb = new Orb(seed);" in code
        assert code.endswith("}")

    def test_extract_function(self, indexer):
        assert indexer.extract_method_code("formatDate") == (
            "export function formatDate(date) {\n  return date.toISOString();\n}"
        )

    def test_missing_key(self, indexer):
        assert indexer.extract_method_code("Orb.missing") is None

    def test_deleted_file(self, indexer, project):
        (project / "src" / "Orb.js").unlink()
        assert indexer.extract_method_code("Orb.nova") is None

    def test_method_removed_from_file(self, indexer, project):
        write_file(project, "src/Orb.js", "export class Orb {}\n")
        assert indexer.extract_method_code("Orb.nova") is None


class TestQueries:
    """Test filtering and statistics."""

    def test_search_by_role(self, indexer):
        assert [m.key for m in indexer.search_methods(role="service")] == ["Galaxy.getOrbs"]

    def test_search_public_methods_of_class(self, indexer):
        keys = [m.key for m in indexer.search_methods(class_name="Orb", is_public=True)]
        assert keys == ["Orb.initOrbit", "Orb.nova", "Orb.spin"]

    def test_search_by_effect(self, indexer):
        keys = [m.key for m in indexer.search_methods(has_effect="creates")]
        assert keys == ["Galaxy.populate", "Orb.nova"]

    def test_search_by_name_and_file(self, indexer):
        assert [m.key for m in indexer.search_methods(name="ORB", file="Galaxy")] == ["Galaxy.getOrbs"]

    def test_get_stats(self, indexer):
        stats = indexer.get_stats()
        assert stats["files"] == 2
        assert stats["classes"] == 2
        assert stats["methods"] == 8
        assert stats["documented"] == 2
        assert stats["documentedPercent"] == 25.0
        assert stats["byRole"]["internal"] == 3


class TestPersistence:
    """Test the persisted index document."""

    def test_reload_from_disk(self, indexer, config):
        assert config.index_path.exists()
        reloaded = MethodIndexer(config)
        nova = reloaded.get_method("Orb.nova")
        assert nova.role == Role.HELPER
        assert nova.body_hash == indexer.get_method("Orb.nova").body_hash
        assert reloaded.index.files["src/Orb.js"].method_count == 4

    def test_reload_skips_unchanged(self, indexer, config):
        assert MethodIndexer(config).index_all().skipped == 2

    def test_corrupt_index_starts_empty(self, config):
        config.index_path.parent.mkdir(parents=True, exist_ok=True)
        config.index_path.write_text("{not json", encoding="utf-8")
        indexer = MethodIndexer(config)
        assert indexer.index.methods == {}
        indexer.index_all()
        assert indexer.get_method("Orb.nova") is not None

    def test_no_temp_files_left(self, indexer, config):
        leftovers = [p.name for p in config.state_dir.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []


class TestIncremental:
    """Test change detection helpers."""

    def test_scan_directory_stats(self, project):
        stats = scan_directory_stats(project / "src", project, [".js"])
        assert sorted(stats) == ["src/Galaxy.js", "src/Orb.js"]
        assert stats["src/Orb.js"].size == len(ORB_JS.encode("utf-8"))

    def test_missing_source_directory(self, tmp_path):
        assert scan_directory_stats(tmp_path / "nope", tmp_path, [".js"]) == {}

    def test_detect_changes(self, tmp_path):
        records = {
            "a.js": FileRecord("a.js", 1.0, 10),
            "b.js": FileRecord("b.js", 1.0, 10),
            "gone.js": FileRecord("gone.js", 1.0, 10),
        }
        current = {
            "a.js": FileStat(tmp_path / "a.js", 1.0, 10),
            "b.js": FileStat(tmp_path / "b.js", 2.0, 10),
            "new.js": FileStat(tmp_path / "new.js", 1.0, 5),
        }
        changes = detect_changes(records, current)
        assert changes.unchanged == ["a.js"]
        assert changes.modified == ["b.js"]
        assert changes.added == ["new.js"]
        assert changes.deleted == ["gone.js"]

    def test_detect_changes_force(self, tmp_path):
        records = {"a.js": FileRecord("a.js", 1.0, 10)}
        current = {"a.js": FileStat(tmp_path / "a.js", 1.0, 10)}
        changes = detect_changes(records, current, force=True)
        assert changes.modified == ["a.js"]
        assert changes.unchanged == []


class TestRoleRules:
    """Test role precedence."""

    def test_tag_wins(self):
        assert RoleRules().resolve("flow", "getThing") == (Role.FLOW, RoleSource.TAG)

    def test_factory_token(self):
        assert RoleRules().infer("nova") == Role.HELPER
        assert RoleRules(factory_token="spawn").infer("spawn") == Role.HELPER

    def test_first_rule_wins(self):
        rules = RoleRules([(r"^get", "service"), (r"^getRaw", "adapter")])
        assert rules.infer("getRaw") == Role.SERVICE

    def test_invalid_tag_falls_back(self):
        assert RoleRules().resolve("wizard", "createOrb") == (Role.CORE, RoleSource.HEURISTIC)

    def test_unknown_role_in_rules(self):
        with pytest.raises(ValueError):
            RoleRules([(r"^x", "wizard")])


class TestOtherLayouts:
    """Test projects outside the default fixture."""

    def test_typescript_and_vue_files(self, tmp_path):
        root = create_project(tmp_path / "ts", {
            "src/repo.ts": "export class Repo {\n  find(id: string): number {\n    return 1;\n  }\n}\n",
            "src/Hello.vue": "<template><p/></template>\n<script>\nexport function hello() {}\n</script>\n",
        })
        indexer = MethodIndexer(CartographConfig(project_root=root))
        indexer.index_all()
        assert indexer.get_method("Repo.find").signature == "find(id: string)"
        assert indexer.get_method("hello").line == 3

    def test_crlf_file(self, tmp_path):
        root = tmp_path / "crlf"
        (root / "src").mkdir(parents=True)
        (root / "src" / "Galaxy.js").write_bytes(GALAXY_JS.replace("\n", "\r\n").encode("utf-8"))
        indexer = MethodIndexer(CartographConfig(project_root=root))
        indexer.index_all()
        code = indexer.extract_method_code("formatDate")
        assert code == "export function formatDate(date) {\r\n  return date.toISOString();\r\n}"

    def test_mtime_only_change_is_reparsed(self, indexer, project):
        path = project / "src" / "Orb.js"
        stat = path.stat()
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))
        assert indexer.index_all().updated == 1
