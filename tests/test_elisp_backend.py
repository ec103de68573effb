"""
Tests for the Emacs Lisp / Cask backend.

Cask, Emacs and the epkgs download are mocked: ``get_cmd_output`` /
``run_cmd`` are patched where the backend imported them, and the
snapshot "download" builds a small SQLite database in place.

No subprocess, no network.
"""

import json
import re
import sqlite3
from contextlib import closing
from pathlib import Path
from unittest.mock import patch

import pytest

from upm.backends.base import Quirks, supports_lock
from upm.backends.languages.elisp import (
    CASK_BOILERPLATE,
    INSTALLED_CODE,
    LIST_SPECFILE_CODE,
    ElispBackend,
)
from upm.core.errors import (
    ExternalToolError,
    LockfileMissingError,
    ParseError,
    ResponseFormatError,
    SpecfileMissingError,
)

_MOD = "upm.backends.languages.elisp"

_DEPENDS_ON = re.compile(r'^\s*\(depends-on\s+"([^"]+)"\s*(.*?)\)\s*$', re.MULTILINE)


def _fake_cask_eval(cmd, cwd=None, timeout=None):
    """Stand-in for ``cask eval`` of the list-specfile script."""
    assert cmd[1:3] == ["eval", LIST_SPECFILE_CODE]
    text = (Path(cwd) / "Cask").read_text()
    return "".join(f"{name}={spec}\n" for name, spec in _DEPENDS_ON.findall(text))


def _make_epkgs(path: Path) -> None:
    """Minimal epkgs schema; package names are printed Lisp strings."""
    with closing(sqlite3.connect(path)) as conn:
        conn.executescript("""
            CREATE TABLE provided (package, feature);
            CREATE TABLE builtin_libraries (feature);
            CREATE TABLE packages (name, class);
        """)
        conn.executemany("INSERT INTO provided VALUES (?, ?)", [
            ('"foo"', "foo"),
            ('"bar"', "bar"),
            ('"emacs"', "cl-lib"),
            ('"org"', "org"),
            ('"dash"', "dash-functional"),
        ])
        conn.execute("INSERT INTO builtin_libraries VALUES ('cl-lib')")
        conn.execute("INSERT INTO packages VALUES ('\"org\"', 'builtin')")
        conn.commit()


@pytest.fixture
def backend(project_dir: Path, config) -> ElispBackend:
    return ElispBackend(config, project_dir)


# ═══════════════════════════════════════════════════════════════════
#  Descriptor
# ═══════════════════════════════════════════════════════════════════


class TestDescriptor:
    def test_fields(self, backend: ElispBackend):
        assert backend.name == "elisp-cask"
        assert backend.specfile == "Cask"
        assert backend.lockfile == "packages.txt"
        assert backend.filename_patterns == ["*.el"]
        assert backend.quirks == Quirks.NOT_REPRODUCIBLE

    def test_not_lockable(self, backend: ElispBackend):
        assert not supports_lock(backend)
        assert not hasattr(backend, "lock")

    def test_guess_regexps(self, backend: ElispBackend):
        (regex,) = backend.guess_regexps()
        assert regex.search("(require 'magit)").group(1) == "magit"
        assert regex.search("( require ' s nil t)").group(1) == "s"


# ═══════════════════════════════════════════════════════════════════
#  add / remove (real file edits)
# ═══════════════════════════════════════════════════════════════════


class TestAdd:
    def test_creates_cask_with_sources(self, backend: ElispBackend, project_dir: Path):
        backend.add({"dash": ""})
        assert (project_dir / "Cask").read_text() == CASK_BOILERPLATE + '(depends-on "dash")\n'

    def test_appends_spec(self, backend: ElispBackend, project_dir: Path):
        backend.add({"magit": '"3.3.0"'})
        assert '(depends-on "magit" "3.3.0")\n' in (project_dir / "Cask").read_text()

    def test_adds_missing_trailing_newline(self, backend: ElispBackend, project_dir: Path):
        (project_dir / "Cask").write_text("(source melpa)")
        backend.add({"s": ""})
        assert (project_dir / "Cask").read_text() == '(source melpa)\n(depends-on "s")\n'

    def test_idempotent(self, backend: ElispBackend, project_dir: Path):
        backend.add({"dash": '"2.19"', "s": ""})
        once = (project_dir / "Cask").read_text()
        backend.add({"dash": '"2.19"', "s": ""})
        assert (project_dir / "Cask").read_text() == once

    def test_updates_existing_spec(self, backend: ElispBackend, project_dir: Path):
        backend.add({"dash": '"2.18"'})
        backend.add({"dash": '"2.19"'})
        text = (project_dir / "Cask").read_text()
        assert text.count('depends-on "dash"') == 1
        assert '"2.19"' in text

    def test_replaces_commented_declaration(self, backend: ElispBackend, project_dir: Path):
        (project_dir / "Cask").write_text('(source melpa)\n(depends-on "dash") ; list helpers\n')
        backend.add({"dash": '"2.19"'})
        assert (project_dir / "Cask").read_text() == '(source melpa)\n(depends-on "dash" "2.19")\n'

    def test_keeps_crlf_line_endings(self, backend: ElispBackend, project_dir: Path):
        (project_dir / "Cask").write_bytes(b'(source melpa)\r\n(depends-on "dash")\r\n')
        backend.add({"dash": "", "s": ""})
        assert (project_dir / "Cask").read_bytes() == \
            b'(source melpa)\r\n(depends-on "dash")\r\n(depends-on "s")\r\n'

    def test_keeps_other_declarations(self, backend: ElispBackend, project_dir: Path):
        (project_dir / "Cask").write_text(
            '(source melpa)\n\n(package-file "foo.el")\n(depends-on "dash-functional")\n'
        )
        backend.add({"dash": ""})
        text = (project_dir / "Cask").read_text()
        assert '(depends-on "dash-functional")' in text
        assert '(package-file "foo.el")' in text

    def test_add_then_list(self, backend: ElispBackend):
        backend.add({"dash": '"2.19"', "s": ""})
        with patch(f"{_MOD}.get_cmd_output", side_effect=_fake_cask_eval):
            pkgs = backend.list_specfile()
        assert pkgs == {"dash": '"2.19"', "s": ""}


class TestRemove:
    def test_missing_cask(self, backend: ElispBackend):
        with pytest.raises(SpecfileMissingError):
            backend.remove({"dash"})

    def test_removes_exact_name_only(self, backend: ElispBackend, project_dir: Path):
        (project_dir / "Cask").write_text(
            '(source melpa)\n'
            '(depends-on "dash")\n'
            '(depends-on "dash-functional")\n'
            '  (depends-on  "dash" "2.19")\n'
        )
        backend.remove({"dash"})
        assert (project_dir / "Cask").read_text() == '(source melpa)\n(depends-on "dash-functional")\n'

    def test_nonexistent_is_noop(self, backend: ElispBackend, project_dir: Path):
        content = '(source melpa)\n(depends-on "s")\n'
        (project_dir / "Cask").write_text(content)
        backend.remove({"nope"})
        assert (project_dir / "Cask").read_text() == content

    def test_regex_characters_in_name(self, backend: ElispBackend, project_dir: Path):
        (project_dir / "Cask").write_text('(depends-on "a.b")\n(depends-on "axb")\n')
        backend.remove({"a.b"})
        assert (project_dir / "Cask").read_text() == '(depends-on "axb")\n'

    def test_trailing_comment(self, backend: ElispBackend, project_dir: Path):
        (project_dir / "Cask").write_text('(source melpa)\n(depends-on "dash") ; pinned (for now)\n(depends-on "s")\n')
        backend.remove({"dash"})
        assert (project_dir / "Cask").read_text() == '(source melpa)\n(depends-on "s")\n'

    def test_crlf_line_endings(self, backend: ElispBackend, project_dir: Path):
        (project_dir / "Cask").write_bytes(b'(source melpa)\r\n(depends-on "dash")\r\n(depends-on "s")\r\n')
        backend.remove({"dash"})
        assert (project_dir / "Cask").read_bytes() == b'(source melpa)\r\n(depends-on "s")\r\n'

    def test_add_then_remove_leaves_no_trace(self, backend: ElispBackend):
        backend.add({"s": ""})
        backend.add({"dash": '"2.19"'})
        backend.remove({"dash"})
        with patch(f"{_MOD}.get_cmd_output", side_effect=_fake_cask_eval):
            pkgs = backend.list_specfile()
        assert pkgs == {"s": ""}


# ═══════════════════════════════════════════════════════════════════
#  list_specfile / list_lockfile
# ═══════════════════════════════════════════════════════════════════


class TestListSpecfile:
    def test_missing_cask(self, backend: ElispBackend):
        with pytest.raises(SpecfileMissingError):
            backend.list_specfile()

    @patch(f"{_MOD}.get_cmd_output")
    def test_parses_name_spec_lines(self, mock_output, backend: ElispBackend, project_dir: Path):
        (project_dir / "Cask").write_text(CASK_BOILERPLATE)
        mock_output.return_value = 'dash=\nfoo=:git "https://example.org/foo.git":ref "v1"\n\n'
        assert backend.list_specfile() == {
            "dash": "",
            "foo": ':git "https://example.org/foo.git":ref "v1"',
        }
        cmd = mock_output.call_args[0][0]
        assert cmd == ["cask-test", "eval", LIST_SPECFILE_CODE]

    @patch(f"{_MOD}.get_cmd_output", return_value="garbage line\n")
    def test_malformed_line(self, _mock, backend: ElispBackend, project_dir: Path):
        (project_dir / "Cask").write_text(CASK_BOILERPLATE)
        with pytest.raises(ParseError, match="garbage line"):
            backend.list_specfile()

    @patch(f"{_MOD}.get_cmd_output", return_value="a=1\na=2\n")
    def test_duplicate_last_wins(self, _mock, backend: ElispBackend, project_dir: Path):
        (project_dir / "Cask").write_text(CASK_BOILERPLATE)
        assert backend.list_specfile() == {"a": "2"}


class TestListLockfile:
    def test_missing(self, backend: ElispBackend):
        with pytest.raises(LockfileMissingError):
            backend.list_lockfile()

    def test_parses(self, backend: ElispBackend, project_dir: Path):
        (project_dir / "packages.txt").write_text("dash=2.19.1\ns=1.13.1\n\nnot a pair\n")
        assert backend.list_lockfile() == {"dash": "2.19.1", "s": "1.13.1"}

    def test_pure_read(self, backend: ElispBackend, project_dir: Path):
        (project_dir / "packages.txt").write_text("dash=2.19.1\n")
        assert backend.list_lockfile() == backend.list_lockfile()


# ═══════════════════════════════════════════════════════════════════
#  install
# ═══════════════════════════════════════════════════════════════════


class TestInstall:
    @patch(f"{_MOD}.get_cmd_output", return_value="dash=2.19.1\nmagit=3.3.0\n")
    @patch(f"{_MOD}.run_cmd")
    def test_installs_then_writes_lockfile(self, mock_run, mock_output, backend, project_dir: Path):
        backend.install()

        assert mock_run.call_args[0][0] == ["cask-test", "install"]
        assert mock_output.call_args[0][0] == ["cask-test", "eval", INSTALLED_CODE]
        assert (project_dir / "packages.txt").read_text() == "dash=2.19.1\nmagit=3.3.0\n"
        assert backend.list_lockfile() == {"dash": "2.19.1", "magit": "3.3.0"}

    @patch(f"{_MOD}.get_cmd_output")
    @patch(f"{_MOD}.run_cmd", side_effect=ExternalToolError("cask install: exit code 1"))
    def test_install_failure_writes_nothing(self, _mock_run, mock_output, backend, project_dir: Path):
        with pytest.raises(ExternalToolError):
            backend.install()
        mock_output.assert_not_called()
        assert not (project_dir / "packages.txt").exists()


# ═══════════════════════════════════════════════════════════════════
#  search / info
# ═══════════════════════════════════════════════════════════════════


class TestSearch:
    @patch(f"{_MOD}.get_cmd_output")
    def test_results(self, mock_output, backend: ElispBackend):
        mock_output.return_value = json.dumps([
            {"name": "s", "description": "String library", "version": "1.13.1",
             "homepageURL": None, "author": None, "dependencies": None},
            {"name": "dash", "description": "List library", "version": "2.19.1",
             "homepageURL": "https://github.com/magnars/dash.el",
             "author": "Magnar Sveen <magnars@gmail.com>", "dependencies": ["emacs-compat"]},
        ])
        results = backend.search("s")

        assert [r.name for r in results] == ["s", "dash"]
        assert results[1].homepage_url == "https://github.com/magnars/dash.el"
        assert results[1].dependencies == ["emacs-compat"]
        assert results[0].author == ""

        cmd = mock_output.call_args[0][0]
        assert cmd[:4] == ["emacs-test", "-Q", "--batch", "--eval"]
        assert cmd[4].startswith("(progn")
        assert cmd[-2:] == ["search", "s"]

    @patch(f"{_MOD}.get_cmd_output", return_value="null\n")
    def test_no_matches_is_empty(self, _mock, backend: ElispBackend):
        assert backend.search("nonexistent-xyz-query") == []

    @patch(f"{_MOD}.get_cmd_output", return_value="[]\n")
    def test_empty_array(self, _mock, backend: ElispBackend):
        assert backend.search("nonexistent-xyz-query") == []

    @patch(f"{_MOD}.get_cmd_output", return_value="Loading archives...\n")
    def test_undecodable(self, _mock, backend: ElispBackend):
        with pytest.raises(ResponseFormatError):
            backend.search("dash")

    @patch(f"{_MOD}.get_cmd_output", return_value='{"name": "dash"}')
    def test_not_an_array(self, _mock, backend: ElispBackend):
        with pytest.raises(ResponseFormatError):
            backend.search("dash")

    @patch(f"{_MOD}.get_cmd_output", side_effect=ExternalToolError("emacs: exit code 255"))
    def test_tool_failure_propagates(self, _mock, backend: ElispBackend):
        with pytest.raises(ExternalToolError):
            backend.search("dash")


class TestInfo:
    @patch(f"{_MOD}.get_cmd_output")
    def test_known_package(self, mock_output, backend: ElispBackend):
        mock_output.return_value = json.dumps({
            "name": "magit", "description": "A Git porcelain inside Emacs.",
            "version": "3.3.0", "homepageURL": "https://magit.vc",
            "author": "Jonas Bernoulli <jonas@bernoul.li>",
            "dependencies": ["dash", "transient", "with-editor"],
        })
        info = backend.info("magit")
        assert info.name == "magit"
        assert info.homepage_url == "https://magit.vc"
        assert info.dependencies == ["dash", "transient", "with-editor"]
        assert mock_output.call_args[0][0][-2:] == ["info", "magit"]

    @patch(f"{_MOD}.get_cmd_output", return_value="null\n")
    def test_unknown_package_is_empty(self, _mock, backend: ElispBackend):
        info = backend.info("nonexistent-xyz")
        assert info.is_empty

    @patch(f"{_MOD}.get_cmd_output", return_value='{"name": ["not", "a", "string"]}')
    def test_bad_record(self, _mock, backend: ElispBackend):
        with pytest.raises(ResponseFormatError):
            backend.info("magit")


# ═══════════════════════════════════════════════════════════════════
#  guess
# ═══════════════════════════════════════════════════════════════════


class TestGuess:
    def _sources(self, root: Path) -> None:
        (root / "main.el").write_text(
            "(require 'foo)\n"
            "(require 'bar)\n"
            "(require 'cl-lib)\n"
            "(require 'org)\n"
            "(provide 'main)\n"
        )
        (root / "bar.el").write_text("(provide 'bar)\n")

    def test_resolves_required_not_provided(self, backend: ElispBackend, project_dir: Path):
        self._sources(project_dir)
        with patch(f"{_MOD}.download_file", side_effect=lambda url, dest, timeout: _make_epkgs(dest)) as dl:
            names = backend.guess()

        assert names == {"foo"}
        assert dl.call_args[0][0] == "https://example.invalid/epkg.sqlite"

    def test_no_sources_skips_download(self, backend: ElispBackend):
        with patch(f"{_MOD}.download_file") as dl:
            assert backend.guess() == set()
        dl.assert_not_called()

    def test_all_self_provided_skips_download(self, backend: ElispBackend, project_dir: Path):
        (project_dir / "a.el").write_text("(require 'b)\n(provide 'a)\n")
        (project_dir / "b.el").write_text("(require 'a)\n(provide 'b)\n")
        with patch(f"{_MOD}.download_file") as dl:
            assert backend.guess() == set()
        dl.assert_not_called()

    def test_quote_in_feature_does_not_break_query(self, backend: ElispBackend, project_dir: Path):
        (project_dir / "main.el").write_text("(require 'foo)\n(require 'it\\'s)\n")
        with patch(f"{_MOD}.download_file", side_effect=lambda url, dest, timeout: _make_epkgs(dest)):
            assert backend.guess() == {"foo"}

    def test_ignored_dirs_not_scanned(self, backend: ElispBackend, project_dir: Path):
        (project_dir / ".cask").mkdir()
        (project_dir / ".cask" / "vendored.el").write_text("(require 'foo)\n")
        with patch(f"{_MOD}.download_file") as dl:
            assert backend.guess() == set()
        dl.assert_not_called()

    def test_download_failure_aborts(self, backend: ElispBackend, project_dir: Path):
        self._sources(project_dir)
        with patch(f"{_MOD}.download_file", side_effect=ExternalToolError("HTTP 503")):
            with pytest.raises(ExternalToolError):
                backend.guess()

    def test_corrupt_database(self, backend: ElispBackend, project_dir: Path):
        self._sources(project_dir)
        with patch(f"{_MOD}.download_file",
                   side_effect=lambda url, dest, timeout: dest.write_bytes(b"not a database")):
            with pytest.raises(ExternalToolError, match="epkgs query failed"):
                backend.guess()
