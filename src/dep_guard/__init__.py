# SPDX-FileCopyrightText: 2023-present ferstar <zhangjianfei3@gmail.com>
#
# SPDX-License-Identifier: MIT
import argparse
import concurrent.futures
import json
import logging
import os
import re
import sys
from collections.abc import Generator, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Generic, TypeVar, Union

logger = logging.getLogger(__name__)

# Constants
MAX_WORKERS_LIMIT = 64
DEFAULT_ROOT_DIR = "./src"
DEFAULT_PACKAGE_JSON_PATH = "./package.json"

IMPORT_P = re.compile(r"""(?:import|from)\s+['"]([^'"]+)['"]|require\s*\(['"]([^'"]+)['"]\)""")

FLAG_OPTIONS = frozenset({"-t", "--text", "-j", "--json", "-a", "--all", "--parallel", "-v", "--verbose"})
VALUE_OPTIONS = frozenset({"-d", "--dst-dir", "-p", "--package-json", "-i", "--ignore", "--max-workers"})

SOURCE_SUFFIXES = (".ts", ".tsx", ".js", ".jsx")

EXCLUDE_PATTERNS = (
    "**/node_modules/**",
    "**/dist/**",
    "**/*.test.*",
    "**/*.spec.*",
    "**/test/**",
    "**/tests/**",
)
# Only "*" is translated, so "." stays a regex wildcard and matching is a plain search.
EXCLUDE_P = tuple(re.compile(pattern.replace("*", ".*")) for pattern in EXCLUDE_PATTERNS)

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E


Result = Union[Ok[T], Err[E]]


@dataclass(frozen=True)
class ReadError:
    """Why a package.json could not be loaded."""

    path: Path
    cause: str

    def __str__(self) -> str:
        return f"Failed to read package.json: {self.cause}"


@dataclass(frozen=True)
class HelpRequested:
    """Signals that usage text was asked for and no analysis should run."""


class DependencyType(str, Enum):
    PRODUCTION = "dependencies"
    DEVELOPMENT = "devDependencies"
    PEER = "peerDependencies"


class OutputFormat(str, Enum):
    TEXT = "text"
    JSON = "json"


@dataclass(frozen=True)
class PackageJson:
    name: str | None = None
    version: str | None = None
    dependencies: Mapping[str, str] | None = None
    dev_dependencies: Mapping[str, str] | None = None
    peer_dependencies: Mapping[str, str] | None = None

    def get(self, dependency_type: DependencyType) -> Mapping[str, str] | None:
        """Return the mapping for a dependency class, ``None`` when the manifest omits it."""
        return {
            DependencyType.PRODUCTION: self.dependencies,
            DependencyType.DEVELOPMENT: self.dev_dependencies,
            DependencyType.PEER: self.peer_dependencies,
        }[dependency_type]


@dataclass(frozen=True)
class AnalysisResult:
    unused: tuple[str, ...] = ()
    misplaced: tuple[str, ...] = ()

    @property
    def total_issues(self) -> int:
        return len(self.unused) + len(self.misplaced)


@dataclass(frozen=True)
class CliOptions:
    format: OutputFormat = OutputFormat.TEXT
    root_dir: str = DEFAULT_ROOT_DIR
    package_json_path: str = DEFAULT_PACKAGE_JSON_PATH
    check_all: bool = False
    ignore: frozenset[str] = field(default_factory=frozenset)
    parallel: bool = False
    max_workers: int = 4
    verbose: bool = False


def supports_color() -> bool:
    """Check if the terminal supports color output."""
    # Check environment variables first
    if os.environ.get("NO_COLOR"):
        return False

    if os.environ.get("FORCE_COLOR"):
        return True

    # Check if output is redirected
    if not hasattr(sys.stdout, "isatty") or not sys.stdout.isatty():
        return False

    # Check TERM environment variable
    term = os.environ.get("TERM", "") or ""
    if term.lower() in ("dumb", "unknown"):
        return False

    return True


def colorize(text: str, color_code: str) -> str:
    """Add color to text if terminal supports it."""
    if supports_color():
        return f"\033[{color_code}m{text}\033[0m"
    return text


def red(text: str) -> str:
    """Make text red if terminal supports color."""
    return colorize(text, "31")


def yellow(text: str) -> str:
    """Make text yellow if terminal supports color."""
    return colorize(text, "33")


def green(text: str) -> str:
    return colorize(text, "32")


def cyan(text: str) -> str:
    return colorize(text, "36")


def bold(text: str) -> str:
    return colorize(text, "1")


def _optional_str(value: object) -> str | None:
    return value if isinstance(value, str) else None


def _optional_mapping(value: object) -> dict[str, str] | None:
    return dict(value) if isinstance(value, dict) else None


def read_package_json(path: Path | str) -> "Result[PackageJson, ReadError]":
    """Read a package.json file into a :class:`PackageJson`.

    Fields that are absent or have an unexpected type are treated as absent.
    A file that cannot be read or is not valid JSON yields ``Err(ReadError)``.
    """
    if isinstance(path, str):
        path = Path(path)

    try:
        with open(path, encoding="utf-8-sig") as f:
            content = json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        return Err(ReadError(path, str(e)))

    if not isinstance(content, dict):
        logger.debug("%s does not contain a JSON object, treating every field as absent", path)
        return Ok(PackageJson())

    return Ok(
        PackageJson(
            name=_optional_str(content.get("name")),
            version=_optional_str(content.get("version")),
            dependencies=_optional_mapping(content.get(DependencyType.PRODUCTION.value)),
            dev_dependencies=_optional_mapping(content.get(DependencyType.DEVELOPMENT.value)),
            peer_dependencies=_optional_mapping(content.get(DependencyType.PEER.value)),
        )
    )


def extract_dependencies(package_json: PackageJson, dependency_type: DependencyType) -> list[str]:
    deps = package_json.get(dependency_type)
    if deps is None:
        return []
    return list(deps)


def _merge_dependency_keys(package_json: PackageJson, types: Iterable[DependencyType]) -> list[str]:
    # dict.fromkeys keeps first-seen order while dropping duplicates
    return list(
        dict.fromkeys(name for dependency_type in types for name in extract_dependencies(package_json, dependency_type))
    )


def extract_production_dependencies(package_json: PackageJson) -> list[str]:
    return _merge_dependency_keys(package_json, [DependencyType.PRODUCTION])


def extract_all_dependencies(package_json: PackageJson) -> list[str]:
    return _merge_dependency_keys(
        package_json,
        [DependencyType.PRODUCTION, DependencyType.DEVELOPMENT, DependencyType.PEER],
    )


def get_declared_dependencies(package_json: PackageJson, check_all: bool) -> list[str]:
    """Dependencies checked for usage: production only, or every class when ``check_all``."""
    if check_all:
        return extract_all_dependencies(package_json)
    return extract_production_dependencies(package_json)


def should_exclude_file(relative_path: str) -> bool:
    """Check a root-relative path against the exclusion patterns.

    Patterns match anywhere in the string, so ``src/my-testing-lib/index.ts``
    is excluded just like ``src/test/index.ts``.
    """
    path_str = "/" + relative_path.replace("\\", "/").lstrip("/")
    return any(pattern.search(path_str) for pattern in EXCLUDE_P)


def find_source_files(root_dir: Path | str) -> list[Path]:
    """Find JavaScript and TypeScript sources under ``root_dir``.

    A missing root, or one without matching files, gives an empty list.
    """
    if isinstance(root_dir, str):
        root_dir = Path(root_dir)

    if not root_dir.is_dir():
        logger.debug("Source directory %s does not exist, nothing to scan", root_dir)
        return []

    files = []
    for path in root_dir.rglob("*"):
        if path.suffix not in SOURCE_SUFFIXES:
            continue
        relative_path = path.relative_to(root_dir)
        if any(part.startswith(".") for part in relative_path.parts):
            continue
        if should_exclude_file(relative_path.as_posix()):
            continue
        if path.is_file():
            files.append(path)
    return sorted(files)


def extract_imports_from_content(content: str) -> list[str]:
    return [match.group(1) or match.group(2) for match in IMPORT_P.finditer(content)]


def extract_imports_from_file(path: Path) -> list[str]:
    """Extract module specifiers from a file, an unreadable file has none.

    Undecodable bytes are replaced so one stray byte does not hide the imports.
    """
    try:
        with open(path, encoding="utf-8", errors="replace") as file_obj:
            content = file_obj.read()
    except OSError as e:
        logger.debug("Failed to read %s: %s", path, e)
        return []
    return extract_imports_from_content(content)


def extract_package_name(import_path: str) -> str | None:
    """Map a module specifier to the package that provides it.

    Relative (``./x``) and absolute (``/x``) specifiers are not packages.
    Scoped packages keep two segments (``@scope/pkg/sub`` -> ``@scope/pkg``),
    everything else keeps the first one (``lodash/map`` -> ``lodash``).
    """
    if import_path.startswith((".", "/")):
        return None

    parts = import_path.split("/")
    if import_path.startswith("@"):
        if len(parts) >= 2:
            return f"{parts[0]}/{parts[1]}"
        return None
    return parts[0] or None


def extract_package_names(imports: Iterable[str]) -> Generator[str, None, None]:
    for import_path in imports:
        package_name = extract_package_name(import_path)
        if package_name is not None:
            yield package_name


def get_used_packages_parallel(root_dir: Path | str, max_workers: int = 4) -> set[str]:
    """Get used packages reading files in a thread pool."""
    packages: set[str] = set()

    def process_single_file(p: Path) -> set[str]:
        return set(extract_package_names(extract_imports_from_file(p)))

    all_paths = find_source_files(root_dir)
    logger.debug("Scanning %d source files with %d workers", len(all_paths), max_workers)

    # Use ThreadPoolExecutor for I/O bound tasks
    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_path = {executor.submit(process_single_file, path): path for path in all_paths}

        for future in concurrent.futures.as_completed(future_to_path):
            try:
                packages.update(future.result())
            except Exception as e:
                # Individual file errors shouldn't stop the entire scan
                logger.debug("Failed to process %s: %s", future_to_path[future], e)

    return packages


def get_used_packages(root_dir: Path | str, *, use_parallel: bool = False, max_workers: int = 4) -> set[str]:
    """Get the set of packages imported by sources under ``root_dir``."""
    if use_parallel:
        packages = get_used_packages_parallel(root_dir, max_workers)
    else:
        packages = set()
        all_paths = find_source_files(root_dir)
        logger.debug("Scanning %d source files", len(all_paths))
        for path in all_paths:
            packages.update(extract_package_names(extract_imports_from_file(path)))
    logger.debug("Found %d used packages", len(packages))
    return packages


def find_unused_dependencies(declared: Iterable[str], used: Iterable[str]) -> tuple[str, ...]:
    used_set = set(used)
    return tuple(sorted({dep for dep in declared if dep not in used_set}))


def find_misplaced_dependencies(dev_deps: Iterable[str], used: Iterable[str]) -> tuple[str, ...]:
    used_set = set(used)
    return tuple(sorted({dep for dep in dev_deps if dep in used_set}))


def create_analysis_result(package_json: PackageJson, used_packages: Iterable[str], check_all: bool) -> AnalysisResult:
    used_set = set(used_packages)
    dev_deps = extract_dependencies(package_json, DependencyType.DEVELOPMENT)
    declared = get_declared_dependencies(package_json, check_all)
    return AnalysisResult(
        unused=find_unused_dependencies(declared, used_set),
        misplaced=find_misplaced_dependencies(dev_deps, used_set),
    )


def analyze_dependencies(
    package_json: PackageJson,
    root_dir: Path | str,
    check_all: bool,
    *,
    use_parallel: bool = False,
    max_workers: int = 4,
) -> AnalysisResult:
    """Classify declared dependencies as unused or misplaced.

    Args:
        package_json: The parsed manifest
        root_dir: Directory holding the sources to scan
        check_all: Also check dev and peer dependencies for usage
        use_parallel: Read source files in a thread pool
        max_workers: Thread pool size when ``use_parallel`` is set

    Returns:
        AnalysisResult with sorted, duplicate-free ``unused`` and ``misplaced``
    """
    used_packages = get_used_packages(root_dir, use_parallel=use_parallel, max_workers=max_workers)
    return create_analysis_result(package_json, used_packages, check_all)


def ignore_packages(result: AnalysisResult, ignore: Iterable[str]) -> AnalysisResult:
    ignored = set(ignore)
    if not ignored:
        return result
    return AnalysisResult(
        unused=tuple(dep for dep in result.unused if dep not in ignored),
        misplaced=tuple(dep for dep in result.misplaced if dep not in ignored),
    )


def has_issues(result: AnalysisResult) -> bool:
    return bool(result.unused or result.misplaced)


def report_as_text(result: AnalysisResult) -> str:
    rule = cyan("━" * 60)
    lines = ["", rule, bold("  Dependency Analysis Report"), rule, ""]

    if not has_issues(result):
        lines.extend([green("✓ All dependencies are properly used and placed!"), "", rule, ""])
        return "\n".join(lines)

    if result.unused:
        lines.append(yellow("⚠ Unused Dependencies:"))
        lines.append(yellow("  (declared but not imported in source code)"))
        lines.append("")
        lines.extend(f"  {yellow('•')} {dep}" for dep in result.unused)
        lines.append("")

    if result.misplaced:
        lines.append(red("⚠ Misplaced Dependencies:"))
        lines.append(red("  (in devDependencies but used in source code)"))
        lines.append("")
        lines.extend(f"  {red('•')} {dep}" for dep in result.misplaced)
        lines.append("")

    lines.extend([rule, bold(f"  Total Issues: {result.total_issues}"), rule, ""])
    return "\n".join(lines)


def report_as_json(result: AnalysisResult) -> str:
    return json.dumps(
        {
            "unused": list(result.unused),
            "misplaced": list(result.misplaced),
            "totalIssues": result.total_issues,
        },
        indent=2,
        ensure_ascii=False,
    )


REPORTERS = {
    OutputFormat.TEXT: report_as_text,
    OutputFormat.JSON: report_as_json,
}


def report(result: AnalysisResult, output_format: OutputFormat) -> str:
    return REPORTERS[output_format](result)


def param_as_set(value: str) -> set[str]:
    return {v.strip() for v in value.split(",") if v.strip()}


def show_help() -> str:
    return """
dep-guard - Dependency analyzer for JavaScript and TypeScript projects

Usage:
  dep-guard [options]

Options:
  -t, --text                Output as text (default)
  -j, --json                Output as JSON
  -a, --all                 Check all dependencies including devDependencies
  -d, --dst-dir DIR         Source directory to scan (default: ./src)
  -p, --package-json PATH   Path of package.json (default: ./package.json)
  -i, --ignore a,b,c        Packages to leave out of the report (comma separated)
  --parallel                Use parallel processing for faster file scanning
  --max-workers N           Worker threads for --parallel (default: 4)
  -v, --verbose             Print debug logging to stderr
  -h, --help                Show this help message

Examples:
  dep-guard
  dep-guard -j
  dep-guard --all
  dep-guard -j --all -d lib -p lib/package.json
"""


def _split_known_args(argv: Sequence[str]) -> tuple[list[str], list[str]]:
    """Split argv into tokens the parser fully understands and tokens to drop.

    Only exact option strings are kept (plus ``--opt=value`` for options taking
    a value), so ``-ax`` or ``--json=yes`` are dropped whole instead of failing.
    """
    known: list[str] = []
    unknown: list[str] = []
    tokens = iter(argv)
    for token in tokens:
        if token in FLAG_OPTIONS:
            known.append(token)
        elif token in VALUE_OPTIONS:
            known.append(token)
            value = next(tokens, None)
            if value is not None:
                known.append(value)
        elif token.startswith("--") and token.split("=", 1)[0] in VALUE_OPTIONS:
            known.append(token)
        else:
            unknown.append(token)
    return known, unknown


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dep-guard", add_help=False, allow_abbrev=False, exit_on_error=False)
    parser.add_argument("-t", "--text", dest="format", action="store_const", const=OutputFormat.TEXT)
    parser.add_argument("-j", "--json", dest="format", action="store_const", const=OutputFormat.JSON)
    parser.add_argument("-a", "--all", dest="check_all", action="store_true")
    parser.add_argument("-d", "--dst-dir", dest="root_dir", default=DEFAULT_ROOT_DIR)
    parser.add_argument("-p", "--package-json", dest="package_json_path", default=DEFAULT_PACKAGE_JSON_PATH)
    parser.add_argument("-i", "--ignore", type=param_as_set, default=set())
    parser.add_argument("--parallel", action="store_true")
    parser.add_argument("--max-workers", type=int, default=4)
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.set_defaults(format=OutputFormat.TEXT)
    return parser


def parse_args(argv: Sequence[str]) -> "Result[CliOptions, HelpRequested | str]":
    """Parse command line flags without exiting the process.

    Unknown flags are ignored. ``-h`` short-circuits to ``Err(HelpRequested())``.
    """
    argv = list(argv)
    if "-h" in argv or "--help" in argv:
        return Err(HelpRequested())

    known, unknown = _split_known_args(argv)
    parser = _build_parser()
    try:
        args, _ = parser.parse_known_args(known)
    except argparse.ArgumentError as e:
        return Err(str(e))

    if unknown:
        logger.debug("Ignoring unrecognized arguments: %s", unknown)

    if args.max_workers < 1:
        return Err("--max-workers must be at least 1")
    if args.max_workers > MAX_WORKERS_LIMIT:
        return Err(f"--max-workers should not exceed {MAX_WORKERS_LIMIT}")

    return Ok(
        CliOptions(
            format=args.format,
            root_dir=args.root_dir,
            package_json_path=args.package_json_path,
            check_all=args.check_all,
            ignore=frozenset(args.ignore),
            parallel=args.parallel,
            max_workers=args.max_workers,
            verbose=args.verbose,
        )
    )


def run(argv: Sequence[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parsed = parse_args(argv)
    if isinstance(parsed, Err):
        if isinstance(parsed.error, HelpRequested):
            print(show_help())
            return 0
        print(red(f"Error: {parsed.error}"), file=sys.stderr)
        return 2
    options = parsed.value

    if options.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    loaded = read_package_json(options.package_json_path)
    if isinstance(loaded, Err):
        print(red(str(loaded.error)), file=sys.stderr)
        return 2

    result = analyze_dependencies(
        loaded.value,
        options.root_dir,
        options.check_all,
        use_parallel=options.parallel,
        max_workers=options.max_workers,
    )
    result = ignore_packages(result, options.ignore)

    print(report(result, options.format))
    return 1 if has_issues(result) else 0


def main() -> None:
    """Main entry point for the application."""
    sys.exit(run())


if __name__ == "__main__":
    main()
