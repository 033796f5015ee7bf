from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Final

DEFAULT_CATEGORY: Final[str] = "general"


@dataclass(frozen=True)
class CategoryRule:
    category: str
    keywords: tuple[str, ...]
    weight: int
    types: tuple[str, ...] = ()
    file_patterns: tuple[re.Pattern[str], ...] = field(default_factory=tuple)


def _patterns(*raw: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(item, re.IGNORECASE) for item in raw)


CATEGORY_RULES: Final[tuple[CategoryRule, ...]] = (
    CategoryRule(
        category="security",
        keywords=(
            "security", "vulnerability", "cve", "xss", "csrf", "injection",
            "sanitize", "escape", "auth", "authentication", "authorization",
            "permission", "cors", "rate-limit", "token", "encrypt",
            "decrypt", "secret", "redact", "owasp",
        ),
        file_patterns=_patterns(r"security", r"auth", r"secrets?\.py"),
        weight=10,
    ),
    CategoryRule(
        category="testing",
        keywords=(
            "test", "expect", "assert", "mock", "stub", "fixture",
            "coverage", "pytest", "unit test", "integration test", "e2e",
        ),
        types=("test",),
        file_patterns=_patterns(r"test_[^/]*\.py", r"_test\.", r"\.spec\.", r"tests?/"),
        weight=8,
    ),
    CategoryRule(
        category="debugging",
        keywords=(
            "debug", "fix", "bug", "error", "crash", "stacktrace", "stack trace",
            "exception", "traceback", "breakpoint", "investigate", "root cause",
            "troubleshoot", "diagnose", "bisect", "regression",
        ),
        types=("bugfix",),
        weight=8,
    ),
    CategoryRule(
        category="architecture",
        keywords=(
            "architect", "design", "pattern", "modular", "migration",
            "schema", "database", "api design", "abstract",
            "dependency injection", "singleton", "factory", "observer", "middleware",
            "pipeline", "microservice", "monolith",
        ),
        types=("decision", "constraint"),
        weight=7,
    ),
    CategoryRule(
        category="refactoring",
        keywords=(
            "refactor", "rename", "extract", "inline", "move", "split", "merge",
            "simplify", "cleanup", "clean up", "dead code", "consolidate",
            "reorganize", "restructure", "decouple",
        ),
        weight=6,
    ),
    CategoryRule(
        category="config",
        keywords=(
            "config", "configuration", "env", "environment", "dotenv", ".env",
            "settings", "pyproject", "ruff", "mypy", "docker", "ci/cd",
            "github actions", "deploy", "build", "package",
        ),
        file_patterns=_patterns(
            r"\.config\.", r"\.env", r"pyproject\.toml", r"\.ya?ml", r"\.toml",
            r"Dockerfile", r"docker-compose",
        ),
        weight=5,
    ),
    CategoryRule(
        category="docs",
        keywords=(
            "document", "readme", "changelog", "docstring", "comment", "explain",
            "guide", "tutorial", "api doc", "openapi", "swagger",
        ),
        types=("docs",),
        file_patterns=_patterns(r"\.md$", r"\.rst$", r"docs?/", r"readme", r"changelog"),
        weight=5,
    ),
    CategoryRule(
        category="feature-dev",
        keywords=(
            "feature", "implement", "add", "create", "new", "endpoint", "component",
            "module", "service", "handler", "route", "hook", "plugin", "integration",
        ),
        types=("feature", "file-write"),
        weight=3,
    ),
)


def categorize(
    *,
    obs_type: str,
    title: str,
    text: str | None = None,
    narrative: str | None = None,
    concepts: str | None = None,
    files_modified: str | None = None,
    files_read: str | None = None,
) -> str:
    """Pick the best matching category for an observation, or "general".

    Each keyword hit adds the rule weight, a matching observation type adds
    twice the weight and each matching file pattern adds the weight once.
    Ties keep the rule listed first.
    """
    search_text = " ".join([title, text or "", narrative or "", concepts or ""]).lower()
    all_files = ",".join([files_modified or "", files_read or ""])
    has_files = bool(all_files.strip(","))

    best_category = DEFAULT_CATEGORY
    best_score = 0
    for rule in CATEGORY_RULES:
        score = sum(rule.weight for keyword in rule.keywords if keyword in search_text)
        if obs_type in rule.types:
            score += rule.weight * 2
        if has_files:
            score += sum(rule.weight for pattern in rule.file_patterns if pattern.search(all_files))
        if score > best_score:
            best_score = score
            best_category = rule.category
    return best_category

