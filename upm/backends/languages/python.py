"""
Python backend — Poetry for dependencies, PyPI XMLRPC for the index.

One class serves both Python 2 and Python 3; the flavor only picks
the interpreter (``config.python2`` / ``config.python3``) that runs
Poetry and the embedded index/guess scripts. Index scripts are run
through that interpreter rather than in-process so they see the same
environment Poetry will install into.
"""

from __future__ import annotations

import json
import logging
import re
import tomllib
from pathlib import Path
from typing import Any

from upm.backends.base import LanguageBackend, Lockable, Quirks
from upm.core.errors import (
    LockfileMissingError,
    ParseError,
    ResponseFormatError,
    SpecfileMissingError,
    UpmError,
)
from upm.core.invoker import get_cmd_output, run_cmd
from upm.core.models.config import UpmConfig
from upm.core.models.package import (
    PackageInfo,
    PackageName,
    PackageSpec,
    PackageVersion,
)

logger = logging.getLogger(__name__)


# ── Embedded Python ─────────────────────────────────────────────
#
# These run under the target interpreter, which may be Python 2, so
# they stick to syntax both accept.

# argv[1]: query. Prints a JSON array of {name, summary, version}.
SEARCH_CODE = """
from __future__ import print_function
import json
import sys
try:
    from xmlrpc import client as xmlrpc
except ImportError:
    import xmlrpclib as xmlrpc

pypi = xmlrpc.ServerProxy("https://pypi.org/pypi")
json.dump(pypi.search({"name": sys.argv[1]}), sys.stdout, indent=2)
print()
"""

# argv[1]: package name. Prints PyPI release_data for the newest
# release as JSON, or {} if PyPI has no releases under that name.
INFO_CODE = """
from __future__ import print_function
import json
import sys
try:
    from xmlrpc import client as xmlrpc
except ImportError:
    import xmlrpclib as xmlrpc

package = sys.argv[1]
pypi = xmlrpc.ServerProxy("https://pypi.org/pypi")
releases = pypi.package_releases(package)
if not releases:
    print("{}")
    sys.exit(0)
json.dump(pypi.release_data(package, releases[0]), sys.stdout, indent=2)
print()
"""

# argv[1]: space-separated directory names to skip. Prints a JSON
# array of distribution names pipreqs resolves from bare imports.
# pipreqs must be importable by the chosen interpreter.
GUESS_CODE = """
from __future__ import print_function
import json
import sys
import pipreqs.pipreqs as pipreqs

imports = pipreqs.get_all_imports(".", extra_ignore_dirs=sys.argv[1].split())
json.dump(pipreqs.get_pkg_names(imports), sys.stdout, indent=2)
print()
"""

# The (?:.|\\\n) pieces let a match continue across backslash-newlines.
GUESS_REGEXPS = [
    re.compile(r"from ((?:.|\\\n)*) import"),
    re.compile(r"import ((?:.|\\\n)*) as"),
    re.compile(r"import ((?:.|\\\n)*)"),
]

# Specs starting with a PEP 440 operator attach directly to the name;
# anything else (caret, tilde, bare version, VCS) goes after "@".
_OPERATOR_SPEC = re.compile(r"^(?:[<>!=]|~=)")

_PROJECT_URL_KINDS = [
    (re.compile(r"doc", re.IGNORECASE), "documentation_url"),
    (re.compile(r"code", re.IGNORECASE), "source_code_url"),
    (re.compile(r"track", re.IGNORECASE), "bug_tracker_url"),
]

_DIST_NAME = re.compile(r"^[A-Za-z0-9._-]+")

# Table-form specs, in the order that best describes the source
_TABLE_SPEC_KEYS = ("version", "git", "path", "url")


def format_author(name: str, email: str = "", url: str = "") -> str:
    """``Name <email> (url)``, leaving out whatever is empty."""
    parts = []
    if name:
        parts.append(name)
    if email:
        parts.append(f"<{email}>")
    if url:
        parts.append(f"({url})")
    return " ".join(parts)


def requirement_arg(name: PackageName, spec: PackageSpec) -> str:
    """Render one ``poetry add`` argument."""
    if not spec:
        return name
    if _OPERATOR_SPEC.match(spec):
        return f"{name}{spec}"
    return f"{name}@{spec}"


class PoetryBackend(LanguageBackend, Lockable):
    """Python 2 or 3 via Poetry.

    Quirks: ``poetry add`` / ``poetry remove`` also lock and install,
    so add and remove touch the environment, not just the specfile.
    """

    specfile = "pyproject.toml"
    lockfile = "poetry.lock"
    filename_patterns = ["*.py"]
    quirks = Quirks.ADD_REMOVE_ALSO_INSTALLS

    FLAVORS = ("python2", "python3")

    def __init__(
        self,
        config: UpmConfig | None = None,
        root: Path | None = None,
        flavor: str = "python3",
    ):
        super().__init__(config, root)
        if flavor not in self.FLAVORS:
            raise ValueError(f"Unknown Python flavor {flavor!r}. Valid: {', '.join(self.FLAVORS)}")
        self.flavor = flavor
        self.name = f"python-{flavor}-poetry"

    @property
    def python(self) -> str:
        """Interpreter used for Poetry and embedded scripts."""
        return getattr(self.config, self.flavor)

    # ── Index queries ───────────────────────────────────────────

    def search(self, query: str) -> list[PackageInfo]:
        raw = self._run_script(SEARCH_CODE, query)
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise ResponseFormatError(f"PyPI search: expected a JSON array, got {type(raw).__name__}")

        results = []
        for entry in raw:
            if not isinstance(entry, dict):
                raise ResponseFormatError(f"PyPI search: unexpected entry {entry!r}")
            results.append(PackageInfo(
                name=entry.get("name") or "",
                description=entry.get("summary") or "",
                version=entry.get("version") or "",
            ))
        return results

    def info(self, name: PackageName) -> PackageInfo:
        raw = self._run_script(INFO_CODE, name)
        if not raw:
            return PackageInfo()
        if not isinstance(raw, dict):
            raise ResponseFormatError(f"PyPI info: expected a JSON object, got {type(raw).__name__}")
        return _info_from_release(raw)

    def _run_script(self, code: str, arg: str) -> Any:
        output = get_cmd_output(
            [self.python, "-c", code, arg],
            cwd=self.root,
            timeout=self.config.command_timeout,
        )
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise ResponseFormatError(f"PyPI response: {e}") from e

    # ── Specfile edits ──────────────────────────────────────────

    def add(self, pkgs: dict[PackageName, PackageSpec]) -> None:
        if not self.has_specfile():
            self._poetry("init", "--no-interaction")
        if not pkgs:
            return
        self._poetry("add", *(requirement_arg(name, spec) for name, spec in pkgs.items()))

    def remove(self, pkgs: set[PackageName]) -> None:
        declared = self.list_specfile()
        names = sorted(name for name in pkgs if name in declared)
        if not names:
            logger.debug("%s: nothing to remove", self.specfile)
            return
        self._poetry("remove", *names)

    # ── Environment ─────────────────────────────────────────────

    def lock(self) -> None:
        self._poetry("lock")

    def install(self) -> None:
        # Packages dropped from the lockfile outside Poetry (an
        # interrupted remove, say) may stay installed.
        self._poetry("install")

    def _poetry(self, *args: str) -> None:
        run_cmd(
            [self.python, "-m", "poetry", *args],
            cwd=self.root,
            timeout=self.config.command_timeout,
        )

    # ── Reads ───────────────────────────────────────────────────

    def list_specfile(self) -> dict[PackageName, PackageSpec]:
        data = _load_toml(self.specfile_path, SpecfileMissingError)

        # Poetry 2 declares dependencies in [project]; [tool.poetry]
        # tables, where present, refine them and win on duplicates.
        pkgs: dict[PackageName, PackageSpec] = {}
        project = _table(data, "project", self.specfile)
        for requirement in _project_requirements(project, self.specfile):
            name, spec = _split_requirement(requirement, self.specfile)
            pkgs[name] = spec

        poetry = _table(data, "tool", self.specfile)
        poetry = _table(poetry, "poetry", self.specfile)

        tables = [
            _table(poetry, "dependencies", self.specfile),
            _table(poetry, "dev-dependencies", self.specfile),
        ]
        groups = _table(poetry, "group", self.specfile)
        for group_name in groups:
            group = _table(groups, group_name, self.specfile)
            tables.append(_table(group, "dependencies", self.specfile))

        for deps in tables:
            for name, spec in deps.items():
                if name == "python":
                    continue
                pkgs[name] = _spec_string(name, spec, self.specfile)
        return pkgs

    def list_lockfile(self) -> dict[PackageName, PackageVersion]:
        data = _load_toml(self.lockfile_path, LockfileMissingError)
        packages = data.get("package", [])
        if not isinstance(packages, list):
            raise ParseError(f"{self.lockfile}: [[package]] is not an array of tables")

        pkgs: dict[PackageName, PackageVersion] = {}
        for entry in packages:
            if not isinstance(entry, dict) or "name" not in entry:
                raise ParseError(f"{self.lockfile}: package entry without a name")
            pkgs[str(entry["name"])] = str(entry.get("version", ""))
        return pkgs

    # ── Guessing ────────────────────────────────────────────────

    def guess_regexps(self) -> list[re.Pattern[str]]:
        return list(GUESS_REGEXPS)

    def guess(self) -> set[PackageName]:
        output = get_cmd_output(
            [self.python, "-c", GUESS_CODE, " ".join(self.config.ignored_paths)],
            cwd=self.root,
            timeout=self.config.command_timeout,
        )
        try:
            names = json.loads(output)
        except json.JSONDecodeError as e:
            raise ResponseFormatError(f"pipreqs: {e}") from e
        if not isinstance(names, list):
            raise ResponseFormatError(f"pipreqs: expected a JSON array, got {type(names).__name__}")
        return {str(name) for name in names}


# ── Helpers ─────────────────────────────────────────────────────


def _info_from_release(data: dict[str, Any]) -> PackageInfo:
    """Map PyPI ``release_data`` onto a PackageInfo."""
    fields: dict[str, Any] = {
        "name": data.get("name") or "",
        "description": data.get("summary") or "",
        "version": data.get("version") or "",
        "homepage_url": data.get("home_page") or "",
        "author": format_author(data.get("author") or "", data.get("author_email") or ""),
        "license": data.get("license") or "",
    }

    # "Label, URL" entries, classified by label
    for line in data.get("project_url") or []:
        label, sep, url = str(line).partition(", ")
        if not sep:
            continue
        for pattern, field_name in _PROJECT_URL_KINDS:
            if pattern.search(label):
                fields[field_name] = url
                break

    deps = []
    for line in data.get("requires_dist") or []:
        if "extra ==" in line:
            continue
        match = _DIST_NAME.match(line.strip())
        if match:
            deps.append(match.group(0))
    fields["dependencies"] = deps

    return PackageInfo(**fields)


def _load_toml(path: Path, missing_error: type[UpmError]) -> dict[str, Any]:
    if not path.is_file():
        raise missing_error(f"{path.name}: no such file")
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ParseError(f"{path.name}: {e}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError(f"{path.name}: cannot read: {e}") from e


def _table(parent: dict[str, Any], key: str, source: str) -> dict[str, Any]:
    """A sub-table, or {} if absent."""
    value = parent.get(key, {})
    if not isinstance(value, dict):
        raise ParseError(f"{source}: {key} is not a table")
    return value


def _project_requirements(project: dict[str, Any], source: str) -> list[str]:
    """PEP 508 strings from ``[project]`` dependencies and extras."""
    lists = [("dependencies", project.get("dependencies", []))]
    extras = _table(project, "optional-dependencies", source)
    lists.extend((f"optional-dependencies.{extra}", reqs) for extra, reqs in extras.items())

    requirements = []
    for key, reqs in lists:
        if not isinstance(reqs, list) or not all(isinstance(r, str) for r in reqs):
            raise ParseError(f"{source}: project.{key} is not an array of strings")
        requirements.extend(reqs)
    return requirements


def _split_requirement(requirement: str, source: str) -> tuple[PackageName, PackageSpec]:
    """``"requests (>=2.31,<3.0)"`` → ``("requests", "(>=2.31,<3.0)")``."""
    requirement = requirement.strip()
    match = _DIST_NAME.match(requirement)
    if not match:
        raise ParseError(f"{source}: invalid requirement {requirement!r}")
    return match.group(0), requirement[match.end():].strip()


def _spec_string(name: str, spec: Any, source: str) -> PackageSpec:
    """Collapse a Poetry dependency value to an opaque spec string."""
    if isinstance(spec, str):
        return spec
    if isinstance(spec, dict):
        for key in _TABLE_SPEC_KEYS:
            if key in spec:
                return str(spec[key])
        return ""
    if isinstance(spec, list):
        # Multiple-constraint form: one table per marker
        return ", ".join(_spec_string(name, item, source) for item in spec)
    raise ParseError(f"{source}: unsupported spec for {name}: {spec!r}")
