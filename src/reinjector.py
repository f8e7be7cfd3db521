"""
Reinjection of edited methods into their source files.

Flow:
1. Integrity check: every file must still hash to its snapshot value
2. Parse the edited artifact into {key: code}
3. Classify keys: unchanged / modified / ignored (not in the snapshot)
4. Per file, in memory: exact match -> normalized line window -> failure,
   picking the match nearest the recorded line when there are several
5. Backup, then one atomic whole-file write per changed file

A method whose original code cannot be located is reported as failed with
a similarity score. It is never replaced on a fuzzy match.
"""

import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import Levenshtein

from .indexer.store import write_text_atomic
from .models import Snapshot
from .scanner import BaseScanner, JavaScriptScanner, ParseError
from .snapshot import MethodSnapshot, normalize_code

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".backup"
MAX_DIAGNOSTIC_CHARS = 4000

_IDENTIFIER_CHAR = re.compile(r"[A-Za-z0-9_$#]")

_MARKED_BLOCK = re.compile(
    r"^// Method: ([^\n]+)\n"
    r"// File: ([^\n]+)\n"
    r"(?:// Score: [^\n]*\n)?"
    r"(.*?)"
    r"(?=^// (?:Method:|={3,})|\Z)",
    re.MULTILINE | re.DOTALL,
)


@dataclass
class MethodChange:
    key: str
    file: str
    old_code: str
    new_code: str
    line: int = 0


@dataclass
class ChangeReport:
    modified: list[MethodChange] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    ignored: list[str] = field(default_factory=list)


@dataclass
class ReplaceOutcome:
    success: bool
    content: str
    method: str                      # exact | normalized | ambiguous | failed
    score: Optional[float] = None    # similarity of the best window on failure
    start_line: Optional[int] = None


@dataclass
class ReinjectionResult:
    success: bool
    success_count: int = 0
    failed_count: int = 0
    failed: list[dict] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    ignored: list[str] = field(default_factory=list)
    backups: list[str] = field(default_factory=list)
    integrity: dict = field(default_factory=dict)
    dry_run: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "successCount": self.success_count,
            "failedCount": self.failed_count,
            "failed": self.failed,
            "modified": self.modified,
            "unchanged": self.unchanged,
            "ignored": self.ignored,
            "backups": self.backups,
            "integrity": self.integrity,
            "dryRun": self.dry_run,
            "error": self.error,
        }


def similarity(a: str, b: str) -> float:
    """1 - edit distance / longer length, on at most MAX_DIAGNOSTIC_CHARS of each"""
    a, b = a[:MAX_DIAGNOSTIC_CHARS], b[:MAX_DIAGNOSTIC_CHARS]
    longer = max(len(a), len(b))
    if longer == 0:
        return 1.0
    return (longer - Levenshtein.distance(a, b)) / longer


def _match_line_endings(code: str, content: str) -> str:
    if "\r\n" in content and "\r\n" not in code:
        return code.replace("\n", "\r\n")
    return code


def _line_distance(start_line: int, end_line: int, line: Optional[int]) -> int:
    if not line:
        return 0
    if start_line <= line <= end_line:
        return 0
    return min(abs(start_line - line), abs(end_line - line))


def _pick_nearest(candidates: list[tuple[int, int]]) -> Optional[int]:
    """
    Choose one candidate from (position, distance) pairs.

    Returns None when there is no single nearest candidate.
    """
    if len(candidates) == 1:
        return candidates[0][0]
    ranked = sorted(candidates, key=lambda c: c[1])
    if ranked[0][1] < ranked[1][1]:
        return ranked[0][0]
    return None


def _exact_candidates(content: str, old_code: str, line: Optional[int]) -> list[tuple[int, int]]:
    candidates = []
    span = old_code.count("\n")
    index = content.find(old_code)
    while index != -1:
        # skip hits inside a longer identifier: get() inside forget()
        if index == 0 or not _IDENTIFIER_CHAR.match(content[index - 1]):
            start_line = content.count("\n", 0, index) + 1
            candidates.append((index, _line_distance(start_line, start_line + span, line)))
        index = content.find(old_code, index + 1)
    return candidates


def replace_in_content(
    content: str,
    old_code: str,
    new_code: str,
    line: Optional[int] = None,
) -> ReplaceOutcome:
    """
    Replace one occurrence of old_code in content.

    Tries an exact substring first, then a sliding window of whole lines whose
    normalized text equals the normalized old code. The first line keeps the
    window's indentation. When several places match, the one nearest to line
    wins; with no line, or a tie, the outcome is "ambiguous" and content is
    left untouched.
    """
    new_code = _match_line_endings(new_code, content)
    exact = _exact_candidates(content, old_code, line) if old_code else []
    if exact:
        index = _pick_nearest(exact)
        if index is None:
            return ReplaceOutcome(
                False, content, "ambiguous", score=1.0,
                start_line=content.count("\n", 0, exact[0][0]) + 1,
            )
        return ReplaceOutcome(
            True,
            content[:index] + new_code + content[index + len(old_code):],
            "exact",
            start_line=content.count("\n", 0, index) + 1,
        )

    target = normalize_code(old_code)
    lines = content.split("\n")
    size = max(1, len(old_code.replace("\r\n", "\n").split("\n")))

    windows = []
    matches = []
    for start in range(0, max(1, len(lines) - size + 1)):
        normalized = normalize_code("\n".join(lines[start:start + size]))
        if normalized == target:
            matches.append((start, _line_distance(start + 1, start + size, line)))
        windows.append((start, normalized))

    if matches:
        start = _pick_nearest(matches)
        if start is None:
            return ReplaceOutcome(
                False, content, "ambiguous", score=1.0, start_line=matches[0][0] + 1
            )
        first = lines[start]
        indent = first[:len(first) - len(first.lstrip())]
        replacement = indent + new_code.lstrip()
        if lines[start + size - 1].endswith("\r") and not replacement.endswith("\r"):
            replacement += "\r"
        updated = lines[:start] + [replacement] + lines[start + size:]
        return ReplaceOutcome(True, "\n".join(updated), "normalized", start_line=start + 1)

    best_start, best_score = None, 0.0
    if windows:
        best_start, best_chunk = max(
            windows, key=lambda w: Levenshtein.ratio(w[1][:MAX_DIAGNOSTIC_CHARS], target[:MAX_DIAGNOSTIC_CHARS])
        )
        best_score = round(similarity(best_chunk, target), 3)
    return ReplaceOutcome(
        False, content, "failed",
        score=best_score,
        start_line=best_start + 1 if best_start is not None else None,
    )


class MethodReinjector:
    """
    Apply an edited artifact back onto the source tree

    Usage:
        reinjector = MethodReinjector()
        result = reinjector.reinject("work/snapshot.json", "work/methods.js")
    """

    def __init__(
        self,
        backup: bool = True,
        dry_run: bool = False,
        scanner: Optional[BaseScanner] = None,
    ):
        self.backup = backup
        self.dry_run = dry_run
        self.scanner = scanner or JavaScriptScanner()

    # ------------------------------------------------------------------
    # Artifact parsing
    # ------------------------------------------------------------------

    def parse_artifact(self, text: str, suffix: str = ".js") -> dict[str, str]:
        """Split an edited artifact into {key: code} by its marker comments."""
        text = text.replace("\r\n", "\n")
        methods = {}
        for match in _MARKED_BLOCK.finditer(text):
            key = match.group(1).strip()
            methods[key] = match.group(3).strip()
        if methods:
            return methods
        logger.warning("No method markers found in artifact, parsing it as source")
        return self.parse_as_source(text, suffix)

    def parse_as_source(self, text: str, suffix: str = ".js") -> dict[str, str]:
        """Fallback: parse the artifact as plain source and map Class.method pairs."""
        try:
            parsed = self.scanner.scan_source(text, suffix, path="<artifact>")
        except ParseError as e:
            logger.error("Could not parse artifact as source: %s", e)
            return {}
        return {method.key: parsed.code_of(method) for method in parsed.all_methods()}

    # ------------------------------------------------------------------
    # Reinjection
    # ------------------------------------------------------------------

    @staticmethod
    def detect_changes(snapshot: Snapshot, edited: dict[str, str]) -> ChangeReport:
        report = ChangeReport()
        for key, code in edited.items():
            original = snapshot.methods.get(key)
            if original is None:
                report.ignored.append(key)
            elif normalize_code(code) == original.normalized_code:
                report.unchanged.append(key)
            else:
                report.modified.append(MethodChange(
                    key=key,
                    file=original.file,
                    old_code=original.code,
                    new_code=code,
                    line=original.line,
                ))
        return report

    def reinject(
        self,
        snapshot_path: Union[str, Path],
        artifact_path: Union[str, Path],
        force: bool = False,
    ) -> ReinjectionResult:
        """
        Reinject edited methods.

        Returns a failed result, touching no file, when a file is missing or
        changed since the snapshot (the latter unless force). Per-method
        failures are reported alongside the successes.
        """
        snapshot = MethodSnapshot.load(snapshot_path)
        integrity = MethodSnapshot.check_file_integrity(snapshot)
        result = ReinjectionResult(success=False, integrity=integrity, dry_run=self.dry_run)

        if integrity["missing"]:
            result.error = f"Files missing since snapshot: {', '.join(integrity['missing'])}"
            logger.error(result.error)
            return result
        if integrity["modified"]:
            if not force:
                result.error = (
                    f"Files modified since snapshot: {', '.join(integrity['modified'])}. "
                    "Use force to reinject anyway."
                )
                logger.error(result.error)
                return result
            logger.warning("Files modified since snapshot, forcing: %s", ", ".join(integrity["modified"]))

        artifact_path = Path(artifact_path)
        artifact = artifact_path.read_bytes().decode("utf-8")
        edited = self.parse_artifact(artifact, artifact_path.suffix or ".js")
        report = self.detect_changes(snapshot, edited)
        result.unchanged = report.unchanged
        result.ignored = report.ignored
        if report.ignored:
            logger.warning("Ignoring methods not in the snapshot: %s", ", ".join(report.ignored))
        logger.info(
            "Changes: %d modified, %d unchanged, %d ignored",
            len(report.modified), len(report.unchanged), len(report.ignored),
        )

        by_file: dict[str, list[MethodChange]] = {}
        for change in report.modified:
            by_file.setdefault(change.file, []).append(change)

        for rel_path, changes in by_file.items():
            self._apply_file(Path(snapshot.files[rel_path].absolute_path), rel_path, changes, result)

        result.success = result.failed_count == 0
        return result

    def _apply_file(self, path: Path, rel_path: str, changes: list[MethodChange], result: ReinjectionResult):
        with open(path, encoding="utf-8", newline="") as f:
            original = f.read()

        content = original
        # bottom-up, so recorded lines above each edit stay valid
        for change in sorted(changes, key=lambda c: c.line, reverse=True):
            outcome = replace_in_content(content, change.old_code, change.new_code, line=change.line)
            if outcome.success:
                content = outcome.content
                result.success_count += 1
                result.modified.append(change.key)
                logger.info("Replaced %s in %s (%s)", change.key, rel_path, outcome.method)
            else:
                result.failed_count += 1
                result.failed.append({
                    "key": change.key,
                    "file": rel_path,
                    "reason": outcome.method,
                    "score": outcome.score,
                    "startLine": outcome.start_line,
                })
                if outcome.method == "ambiguous":
                    logger.warning(
                        "%s matches several places in %s, none nearest line %s",
                        change.key, rel_path, change.line,
                    )
                else:
                    logger.warning(
                        "Could not locate %s in %s (best similarity %.3f at line %s)",
                        change.key, rel_path, outcome.score or 0.0, outcome.start_line,
                    )

        if content == original or self.dry_run:
            return

        if self.backup:
            backup_path = path.with_name(path.name + BACKUP_SUFFIX)
            shutil.copy2(path, backup_path)
            result.backups.append(str(backup_path))
        write_text_atomic(path, content)
        logger.info("Wrote %s", rel_path)
