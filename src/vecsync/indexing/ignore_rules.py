"""
Ignore rules for .gitignore and the project override file.

Combines gitignore-syntax patterns from three layers, in precedence order:
1. Built-in defaults (node_modules, .git, build output, etc.)
2. .gitignore patterns (if present)
3. Project override patterns, .vecsyncignore by default (if present)

Later layers win: a `!pattern` in the override file re-includes a path the
defaults or .gitignore excluded, and a plain pattern there excludes it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import pathspec
import structlog

logger = structlog.get_logger(__name__)

GITIGNORE_NAME = ".gitignore"
DEFAULT_OVERRIDE_NAME = ".vecsyncignore"

# Always applied, even without any ignore file
DEFAULT_IGNORES: tuple[str, ...] = (
    # Version control
    ".git",
    ".svn",
    ".hg",
    # Dependencies
    "node_modules",
    "vendor",
    "bower_components",
    "__pycache__",
    ".venv",
    "venv",
    "env",
    # Build output
    "dist",
    "build",
    "out",
    ".next",
    ".nuxt",
    ".output",
    "target",
    "*.egg-info",
    # IDE/editor
    ".idea",
    ".vscode",
    "*.swp",
    "*.swo",
    "*~",
    ".DS_Store",
    "Thumbs.db",
    # Logs
    "*.log",
    "logs",
    "npm-debug.log*",
    "yarn-debug.log*",
    "yarn-error.log*",
    # Caches
    ".cache",
    ".eslintcache",
    ".parcel-cache",
    ".turbo",
    ".pytest_cache",
    ".mypy_cache",
    ".tox",
    # Test coverage
    "coverage",
    ".nyc_output",
    # Secrets
    ".env",
    ".env.*",
    "*.pem",
    "*.key",
    # Lock files
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "bun.lockb",
    "Cargo.lock",
    "Gemfile.lock",
    "poetry.lock",
    "composer.lock",
)


@dataclass(frozen=True)
class IgnoreRuleSet:
    """
    Immutable, compiled set of layered ignore patterns.

    Replaced wholesale on reload, never mutated, so a reader holding a
    reference always sees a consistent set.
    """

    patterns: tuple[str, ...]
    sources: tuple[str, ...] = ()
    _spec: pathspec.GitIgnoreSpec = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "_spec", pathspec.GitIgnoreSpec.from_lines(self.patterns)
        )

    @property
    def has_negations(self) -> bool:
        """True if any pattern re-includes paths."""
        return any(p.startswith("!") for p in self.patterns)

    def is_ignored(self, relative_path: str | Path) -> bool:
        """Check a path relative to the project root."""
        return is_ignored(self, relative_path)


def normalize_relative_path(relative_path: str | Path) -> str:
    """Convert to the forward-slash form patterns are matched against."""
    normalized = str(relative_path).replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def is_ignored(rule_set: IgnoreRuleSet, relative_path: str | Path) -> bool:
    """
    Check if a relative path is excluded by the rule set.

    Args:
        rule_set: Compiled ignore rules.
        relative_path: Path relative to the project root.

    Returns:
        True if the path should not be indexed.
    """
    normalized = normalize_relative_path(relative_path)

    # Empty paths (the root itself) and paths outside the root never match
    if not normalized or normalized == "." or normalized.startswith("../"):
        return False

    return rule_set._spec.match_file(normalized)


def parse_ignore_file(path: Path) -> list[str]:
    """
    Parse an ignore file (.gitignore or override format).

    Args:
        path: Path to the ignore file.

    Returns:
        List of gitignore-syntax patterns, negations included.
    """
    if not path.exists():
        return []

    patterns: list[str] = []

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Failed to read ignore file", path=str(path), error=str(e))
        return []

    for line in content.splitlines():
        line = line.strip()

        # Skip empty lines and comments
        if not line or line.startswith("#"):
            continue

        patterns.append(line)

    return patterns


def default_ignore_patterns() -> list[str]:
    """Return a copy of the built-in default patterns."""
    return list(DEFAULT_IGNORES)


def create_default_rules() -> IgnoreRuleSet:
    """Create a rule set with only the built-in defaults."""
    return IgnoreRuleSet(patterns=DEFAULT_IGNORES, sources=("defaults",))


def load_ignore_rules(
    project_root: Path,
    override_name: str = DEFAULT_OVERRIDE_NAME,
) -> IgnoreRuleSet:
    """
    Load all ignore layers for a project.

    Never raises: a missing or unreadable file contributes no patterns.

    Args:
        project_root: Project root directory.
        override_name: File name of the project-specific override file.

    Returns:
        Compiled IgnoreRuleSet.
    """
    patterns: list[str] = list(DEFAULT_IGNORES)
    sources: list[str] = ["defaults"]

    for name in (GITIGNORE_NAME, override_name):
        file_patterns = parse_ignore_file(project_root / name)
        if file_patterns:
            logger.info(
                "Loaded ignore patterns",
                file=name,
                count=len(file_patterns),
            )
            patterns.extend(file_patterns)
            sources.append(name)

    return IgnoreRuleSet(patterns=tuple(patterns), sources=tuple(sources))


def create_default_ignore_file() -> str:
    """
    Create default override file content.

    Returns:
        Default .vecsyncignore file content.
    """
    return """# vecsync ignore file
# Patterns here are excluded from the semantic index.
# Uses gitignore syntax; later patterns win, so `!path` re-includes
# files excluded by .gitignore or the built-in defaults.

# Large generated files
*.min.js
*.min.css
*.bundle.js
*.chunk.js
*.map

# Test snapshots (often noisy)
__snapshots__/
*.snap

# vecsync's own data
.vecsync/
"""
