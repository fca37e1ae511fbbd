"""
Build Validator - Run the project build and classify its failures.

`npm run build` output (stdout + stderr) is scanned line by line against
an ordered pattern list; the first pattern matching a line produces one
ClassifiedError for it. A failed build that matches nothing still yields
one generic BUILD_ERROR so a failure is never silently empty.
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from bwork.sandbox.contracts import (
    BuildValidationResult,
    ClassifiedError,
    ErrorCategory,
    Fixability,
)
from bwork.sandbox.providers.base import SandboxProvider
from bwork.sandbox.repair.error_classifier import classify_error

logger = logging.getLogger("bwork.sandbox.validation.build")

BUILD_COMMAND = "npm run build"
ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")

# A line that is only "..." or a "// ... rest of code" style placeholder
TRUNCATION_MARKER = re.compile(
    r"^\s*(?:(?://|/\*|\{/\*)\s*)?\.\.\.(?:\s*(?:rest|remaining|more)\b.*)?\s*(?:\*/\}?)?\s*$",
    re.MULTILINE | re.IGNORECASE,
)


@dataclass(frozen=True)
class BuildPattern:
    name: str
    regex: re.Pattern
    extract: Callable[[re.Match, str], ClassifiedError]


def _classified(message: str, **location) -> ClassifiedError:
    error = classify_error(message)
    for key, value in location.items():
        setattr(error, key, value)
    return error


def _unresolved_import(match: re.Match, line: str) -> ClassifiedError:
    return _classified(line.strip())


def _marker(prefix: str) -> Callable[[re.Match, str], ClassifiedError]:
    def extract(match: re.Match, line: str) -> ClassifiedError:
        return _classified(f"{prefix}: {match.group(1).strip()}")
    return extract


def _not_defined(match: re.Match, line: str) -> ClassifiedError:
    return _classified(match.group(0))


def _located(match: re.Match, line: str) -> ClassifiedError:
    error = _classified(
        match.group(5).strip(),
        file=match.group(1),
        line=int(match.group(3)),
        column=int(match.group(4)),
    )
    if error.category == ErrorCategory.UNKNOWN:
        # A diagnostic pinned to a source file is a code problem
        error.category = ErrorCategory.BUILD_ERROR
        error.fixable = Fixability.AI
    return error


def _vite(match: re.Match, line: str) -> ClassifiedError:
    return _classified(match.group(1).strip())


BUILD_PATTERNS: List[BuildPattern] = [
    BuildPattern(
        "unresolved-import",
        re.compile(r"[Ff]ailed to resolve import ['\"]([^'\"]+)['\"]|Cannot find module ['\"]([^'\"]+)['\"]|Module not found"),
        _unresolved_import,
    ),
    BuildPattern("syntax-error", re.compile(r"SyntaxError: (.+)"), _marker("SyntaxError")),
    BuildPattern("type-error", re.compile(r"TypeError: (.+)"), _marker("TypeError")),
    BuildPattern("not-defined", re.compile(r"'([^']+)' is not defined"), _not_defined),
    BuildPattern("located", re.compile(r"([^:\s]+\.(jsx?|tsx?)):(\d+):(\d+):\s*(.+)"), _located),
    BuildPattern("vite", re.compile(r"\[vite\]\s*(.+)"), _vite),
]


class BuildValidator:
    """
    Runs the build inside a sandbox.

    Usage:
        validator = BuildValidator()
        result = await validator.validate(provider)
        if not result.passed:
            for error in result.errors:
                print(error.describe())
    """

    def __init__(self, command: str = BUILD_COMMAND):
        self.command = command

    async def validate(self, provider: SandboxProvider) -> BuildValidationResult:
        """
        Run the build and classify failures.

        Returns:
            BuildValidationResult. Never raises: driver failures become a
            BUILD_ERROR result.
        """
        start = time.time()
        try:
            result = await provider.run_command(self.command)
        except Exception as e:
            logger.error(f"Build command could not run: {e}")
            return BuildValidationResult(
                passed=False,
                errors=[ClassifiedError(
                    category=ErrorCategory.BUILD_ERROR,
                    message=str(e) or "Build failed",
                    fixable=Fixability.USER,
                )],
                output=str(e),
                duration_ms=(time.time() - start) * 1000,
            )

        output = f"{result.stderr}\n{result.stdout}"
        errors: List[ClassifiedError] = []
        if not result.success:
            errors = self.parse_build_errors(output)
            logger.info(f"Build failed with {len(errors)} classified error(s)")

        return BuildValidationResult(
            passed=result.success,
            errors=errors,
            output=output,
            duration_ms=(time.time() - start) * 1000,
        )

    def parse_build_errors(self, output: str) -> List[ClassifiedError]:
        """
        Classify a failed build's output.

        First matching pattern wins per line; exact duplicates (same
        category, message and location) are reported once.
        """
        errors: List[ClassifiedError] = []
        seen = set()

        for raw_line in ANSI_ESCAPE.sub("", output).splitlines():
            line = raw_line.strip()
            if not line:
                continue
            for pattern in BUILD_PATTERNS:
                match = pattern.regex.search(line)
                if not match:
                    continue
                error = pattern.extract(match, line)
                key = (error.category, error.message, error.file, error.line)
                if key not in seen:
                    seen.add(key)
                    errors.append(error)
                break

        if not errors:
            tail = "\n".join(output.strip().splitlines()[-5:])
            errors.append(ClassifiedError(
                category=ErrorCategory.BUILD_ERROR,
                message=f"Build failed with unknown error{': ' + tail if tail else ''}",
                fixable=Fixability.USER,
            ))
        return errors

    def quick_build_check(self, code: str) -> List[ClassifiedError]:
        """
        Cheap static pre-check of a component before it reaches the sandbox.

        Detects unbalanced delimiters (outside strings and comments),
        a missing default export and truncation markers left by the model.
        """
        issues: List[ClassifiedError] = []

        for message in _delimiter_issues(code):
            issues.append(ClassifiedError(
                category=ErrorCategory.SYNTAX_ERROR,
                message=message,
                fixable=Fixability.AI,
            ))

        if "export default" not in code:
            issues.append(ClassifiedError(
                category=ErrorCategory.SYNTAX_ERROR,
                message="Missing default export for App component",
                fixable=Fixability.AI,
            ))

        if TRUNCATION_MARKER.search(code):
            issues.append(ClassifiedError(
                category=ErrorCategory.SYNTAX_ERROR,
                message="Code appears to be truncated",
                fixable=Fixability.AI,
            ))

        return issues


_PAIRS = {"}": "{", ")": "(", "]": "["}
_NAMES = {"{": "braces", "(": "parentheses", "[": "brackets"}


def _delimiter_issues(code: str) -> List[str]:
    """Report unbalanced delimiters, ignoring string literals and comments."""
    stack: List[str] = []
    issues: List[str] = []
    i, n = 0, len(code)
    quote: Optional[str] = None

    while i < n:
        ch = code[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
            i += 1
            continue
        if code.startswith("//", i):
            newline = code.find("\n", i)
            i = n if newline == -1 else newline
            continue
        if code.startswith("/*", i):
            end = code.find("*/", i + 2)
            i = n if end == -1 else end + 2
            continue
        if ch == "'" and 0 < i < n - 1 and code[i - 1].isalnum() and code[i + 1].isalnum():
            pass  # apostrophe in JSX text, e.g. Don't
        elif ch in "'\"`":
            quote = ch
        elif ch in "{([":
            stack.append(ch)
        elif ch in "})]":
            if not stack or stack[-1] != _PAIRS[ch]:
                issues.append(f"Mismatched {_NAMES[_PAIRS[ch]]}: unexpected '{ch}'")
                return issues
            stack.pop()
        i += 1

    if quote:
        issues.append("Unterminated string literal")
    if stack:
        issues.append(f"Mismatched {_NAMES[stack[-1]]}: '{stack[-1]}' is never closed")
    return issues
