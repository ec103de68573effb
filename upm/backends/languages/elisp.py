"""
Emacs Lisp backend — Cask for dependencies, package.el for the index.

Search and info run an embedded Emacs Lisp script in batch mode that
downloads the MELPA, GNU and Org archive listings into a throwaway
``package-user-dir`` and prints JSON. Cask has no lockfile of its own,
so ``install`` synthesizes ``packages.txt`` from the load path Cask
sets up.

Guessing scans ``(require 'feature)`` forms, drops features the
project ``provide``s itself, and resolves the rest to package names
through the epkgs snapshot database.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import tempfile
from contextlib import closing
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from upm.backends.base import LanguageBackend, Quirks
from upm.core.download import download_file
from upm.core.errors import (
    ExternalToolError,
    LockfileMissingError,
    ParseError,
    ResponseFormatError,
    SpecfileMissingError,
)
from upm.core.invoker import get_cmd_output, run_cmd
from upm.core.models.package import (
    PackageInfo,
    PackageName,
    PackageSpec,
    PackageVersion,
)
from upm.core.persistence.atomic import write_atomic
from upm.core.scanning import search_recursive

logger = logging.getLogger(__name__)


# ── Embedded Emacs Lisp ─────────────────────────────────────────
#
# Payloads are passed verbatim to emacs/cask; their output format is
# the contract, not their internals.

# Args after --eval: DIR ACTION ARG. DIR becomes package-user-dir.
# "search" prints a JSON array of package records (shortest names
# first; every whitespace-separated term must match); "info" prints
# one record, or null for an unknown package.
SEARCH_INFO_CODE = r"""
(require 'cl-lib)
(require 'json)
(require 'map)
(require 'package)
(require 'subr-x)

(setq package-archives '((melpa . "https://melpa.org/packages/")
                         (gnu . "https://elpa.gnu.org/packages/")
                         (org . "https://orgmode.org/elpa/")))

(defun upm-desc-to-alist (desc)
  (let ((extras (package-desc-extras desc)))
    `((name . ,(symbol-name (package-desc-name desc)))
      (description . ,(package-desc-summary desc))
      (version . ,(package-version-join (package-desc-version desc)))
      (homepageURL . ,(alist-get :url extras))
      (author . ,(when-let ((mnt (alist-get :maintainer extras)))
                   (let ((parts nil))
                     (when-let ((email (cdr mnt)))
                       (push (format "<%s>" email) parts))
                     (when-let ((name (car mnt)))
                       (push name parts))
                     (when parts
                       (string-join parts " ")))))
      (dependencies . ,(cl-remove-if
                        (lambda (dep) (string= dep "emacs"))
                        (mapcar (lambda (req) (symbol-name (car req)))
                                (package-desc-reqs desc)))))))

(defun upm-package-info (package)
  (when-let ((descs (alist-get (intern package) package-archive-contents)))
    ;; package.el keeps the highest-priority archive's entry last
    (upm-desc-to-alist (car (last descs)))))

(defvar upm-archives-fetched 0)

(defun upm-on-archive (status archive-id action arg)
  (cl-loop for (event data) on status by #'cddr
           do (when (eq event :error)
                (signal (car data) (cdr data))))
  (let ((archive-dir (expand-file-name
                      (symbol-name archive-id)
                      (expand-file-name "archives" package-user-dir))))
    (make-directory archive-dir 'parents)
    (delete-region (point-min) url-http-end-of-headers)
    (write-file (expand-file-name "archive-contents" archive-dir))
    (when (>= (cl-incf upm-archives-fetched) (length package-archives))
      (package-read-all-archive-contents)
      (pcase action
        ("search"
         (let ((terms (mapcar #'regexp-quote
                              (split-string arg nil 'omit-nulls))))
           (thread-last package-archive-contents
             (map-keys)
             (mapcar #'symbol-name)
             (cl-remove-if-not
              (lambda (package)
                (cl-every (lambda (term) (string-match-p term package))
                          terms)))
             (funcall (lambda (packages)
                        (cl-sort packages #'< :key #'length)))
             (mapcar #'upm-package-info)
             (json-encode)
             (princ))
           (terpri)))
        ("info"
         (princ (json-encode (upm-package-info arg)))
         (terpri))
        (_ (error "No such action: %S" action))))))

(cl-destructuring-bind (dir action arg) command-line-args-left
  (setq command-line-args-left nil)
  (setq package-user-dir dir)
  (dolist (archive package-archives)
    (url-retrieve (concat (cdr archive) "archive-contents")
                  #'upm-on-archive
                  (list (car archive) action arg)
                  'silent)))

(while (< upm-archives-fetched (length package-archives))
  (accept-process-output nil 0.05))
"""

# Evaluated by `cask eval`: prints name=version per installed package.
INSTALLED_CODE = r"""
(dolist (dir load-path)
  (when (string-match "elpa/\\(.+\\)-\\([^-]+\\)" dir)
    (princ (format "%s=%s\n"
                   (match-string 1 dir)
                   (match-string 2 dir)))))
"""

# Evaluated by `cask eval`: prints name=spec per declared dependency.
LIST_SPECFILE_CODE = r"""
(let* ((bundle (cask-cli--bundle))
       (deps (append (cask-runtime-dependencies bundle)
                     (cask-development-dependencies bundle))))
  (dolist (d deps)
    (let ((fetcher (cask-dependency-fetcher d))
          (url (cask-dependency-url d))
          (files (cask-dependency-files d))
          (ref (cask-dependency-ref d))
          (branch (cask-dependency-branch d)))
      (princ (format "%S=%s%s%s%s\n"
                     (cask-dependency-name d)
                     (if fetcher (format "%S %S" fetcher url) "")
                     (if files (format ":files %S" files) "")
                     (if ref (format ":ref %S" ref) "")
                     (if branch (format ":branch %S" branch) ""))))))
"""

CASK_BOILERPLATE = """\
(source melpa)
(source gnu)
(source org)
"""

REQUIRE_REGEX = re.compile(r"\(\s*require\s*'\s*([^)\s]+)[^)]*\)")
PROVIDE_REGEX = re.compile(r"\(\s*provide\s*'\s*([^)\s]+)[^)]*\)")

_LOCK_LINE = re.compile(r"(.+)=(.+)")

# epkgs is an emacsql database: string columns hold printed Lisp
# strings, quotes included.
_EMACSQL_STRING = re.compile(r'"(.+?)"')

_EPKGS_QUERY = """
SELECT PR.package FROM provided PR
WHERE PR.feature IN ({placeholders})
AND NOT EXISTS (SELECT 1 FROM builtin_libraries B WHERE PR.feature = B.feature)
AND NOT EXISTS (SELECT 1 FROM packages PK WHERE PR.package = PK.name AND PK.class = 'builtin')
"""

# Stay under SQLite's bound-parameter limit on old builds
_QUERY_CHUNK = 500


def _depends_on_regex(name: str) -> re.Pattern[str]:
    """Matches a whole ``(depends-on "name" ...)`` line, newline included.

    A trailing ``; comment`` and CRLF line endings are part of the line.
    """
    return re.compile(
        rf'^[ \t]*\(depends-on[ \t]+"{re.escape(name)}".*\)[ \t]*(?:;.*)?\r?$\n?',
        re.MULTILINE,
    )


class ElispBackend(LanguageBackend):
    """Emacs Lisp via Cask.

    Quirks: search and info read live archive listings, so results
    are not reproducible. No Lock capability; ``install`` writes the
    lockfile.
    """

    name = "elisp-cask"
    specfile = "Cask"
    lockfile = "packages.txt"
    filename_patterns = ["*.el"]
    quirks = Quirks.NOT_REPRODUCIBLE

    # ── Index queries ───────────────────────────────────────────

    def search(self, query: str) -> list[PackageInfo]:
        raw = self._run_index_script("search", query)
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise ResponseFormatError(f"emacs search: expected a JSON array, got {type(raw).__name__}")
        return [self._to_info(record) for record in raw]

    def info(self, name: PackageName) -> PackageInfo:
        raw = self._run_index_script("info", name)
        if raw is None:
            return PackageInfo()
        return self._to_info(raw)

    def _run_index_script(self, action: str, arg: str) -> Any:
        code = f"(progn {SEARCH_INFO_CODE})"
        with tempfile.TemporaryDirectory(prefix="elpa") as tmpdir:
            output = get_cmd_output(
                [self.config.emacs, "-Q", "--batch", "--eval", code, tmpdir, action, arg],
                cwd=self.root,
                timeout=self.config.command_timeout,
            )
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise ResponseFormatError(f"emacs {action}: {e}") from e

    @staticmethod
    def _to_info(record: Any) -> PackageInfo:
        if record is None:
            return PackageInfo()
        try:
            return PackageInfo.model_validate(record)
        except ValidationError as e:
            raise ResponseFormatError(f"emacs: unexpected package record: {e}") from e

    # ── Specfile edits ──────────────────────────────────────────

    def add(self, pkgs: dict[PackageName, PackageSpec]) -> None:
        path = self.specfile_path
        if path.is_file():
            contents = _read_cask(path)
        else:
            contents = CASK_BOILERPLATE

        eol = "\r\n" if "\r\n" in contents else "\n"
        if contents and not contents.endswith("\n"):
            contents += eol

        for name, spec in pkgs.items():
            contents = _depends_on_regex(name).sub("", contents)
            line = f'(depends-on "{name}"'
            if spec:
                line += f" {spec}"
            contents += line + ")" + eol

        write_atomic(path, contents)

    def remove(self, pkgs: set[PackageName]) -> None:
        path = self.specfile_path
        if not path.is_file():
            raise SpecfileMissingError(f"{self.specfile}: no such file")

        original = _read_cask(path)
        contents = original
        for name in pkgs:
            contents = _depends_on_regex(name).sub("", contents)

        if contents == original:
            logger.debug("%s: nothing to remove", self.specfile)
            return
        write_atomic(path, contents)

    # ── Environment ─────────────────────────────────────────────

    def install(self) -> None:
        timeout = self.config.command_timeout
        run_cmd([self.config.cask, "install"], cwd=self.root, timeout=timeout)
        output = get_cmd_output(
            [self.config.cask, "eval", INSTALLED_CODE],
            cwd=self.root,
            timeout=timeout,
        )
        write_atomic(self.lockfile_path, output)

    # ── Reads ───────────────────────────────────────────────────

    def list_specfile(self) -> dict[PackageName, PackageSpec]:
        if not self.has_specfile():
            raise SpecfileMissingError(f"{self.specfile}: no such file")

        output = get_cmd_output(
            [self.config.cask, "eval", LIST_SPECFILE_CODE],
            cwd=self.root,
            timeout=self.config.command_timeout,
        )
        pkgs: dict[PackageName, PackageSpec] = {}
        for line in output.splitlines():
            if not line:
                continue
            name, sep, spec = line.partition("=")
            if not sep:
                raise ParseError(f"{self.specfile}: unexpected cask output: {line}")
            pkgs[name] = spec
        return pkgs

    def list_lockfile(self) -> dict[PackageName, PackageVersion]:
        path = self.lockfile_path
        if not path.is_file():
            raise LockfileMissingError(f"{self.lockfile}: no such file")

        contents = path.read_text(encoding="utf-8")
        return {m.group(1): m.group(2) for m in _LOCK_LINE.finditer(contents)}

    # ── Guessing ────────────────────────────────────────────────

    def guess_regexps(self) -> list[re.Pattern[str]]:
        return [REQUIRE_REGEX]

    def guess(self) -> set[PackageName]:
        ignored = self.config.ignored_paths
        required = {
            m.group(1)
            for m in search_recursive(REQUIRE_REGEX, self.root, self.filename_patterns, ignored)
        }
        provided = {
            m.group(1)
            for m in search_recursive(PROVIDE_REGEX, self.root, self.filename_patterns, ignored)
        }

        features = sorted(required - provided)
        logger.debug("Features to resolve: %s", features)
        if not features:
            return set()

        with tempfile.TemporaryDirectory(prefix="epkgs") as tmpdir:
            db_path = Path(tmpdir) / "epkgs.sqlite"
            download_file(self.config.epkgs_url, db_path, timeout=self.config.download_timeout)
            values = _query_providers(db_path, features)

        names: set[PackageName] = set()
        for value in values:
            names.update(_EMACSQL_STRING.findall(value))
        return names


def _read_cask(path: Path) -> str:
    # newline="" keeps CRLF endings intact through a rewrite
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


def _query_providers(db_path: Path, features: list[str]) -> list[str]:
    """Package column values for non-builtin providers of ``features``."""
    values: list[str] = []
    try:
        with closing(sqlite3.connect(db_path)) as conn:
            for start in range(0, len(features), _QUERY_CHUNK):
                chunk = features[start:start + _QUERY_CHUNK]
                query = _EPKGS_QUERY.format(placeholders=", ".join("?" * len(chunk)))
                for (package,) in conn.execute(query, chunk):
                    if isinstance(package, str):
                        values.append(package)
    except sqlite3.Error as e:
        raise ExternalToolError(f"epkgs query failed: {e}") from e
    return values
