"""
Error Classifier - Map raw diagnostic text to the closed error taxonomy.

Classification is a strictly ordered table of (regex -> category, tier,
optional remedy extractor). The first matching pattern wins; text that
matches nothing is UNKNOWN / USER so no error is ever left uncategorized.

The tier decides repair routing:
- AUTO: a mechanical fix is known (install a package, add an import)
- AI: needs a semantic rewrite of the source
- USER: cannot be resolved automatically (out of memory, infrastructure)
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from bwork.sandbox.contracts import (
    ClassifiedError,
    ErrorCategory,
    Fixability,
    USER_ERROR_MESSAGES,
)


# Identifiers the auto-fixer knows how to import
COMMON_IMPORTS: Dict[str, str] = {
    "useState": "import { useState } from 'react';",
    "useEffect": "import { useEffect } from 'react';",
    "useRef": "import { useRef } from 'react';",
    "useCallback": "import { useCallback } from 'react';",
    "useMemo": "import { useMemo } from 'react';",
    "useContext": "import { useContext } from 'react';",
    "useReducer": "import { useReducer } from 'react';",
    "React": "import React from 'react';",
    "Fragment": "import { Fragment } from 'react';",
}


@dataclass(frozen=True)
class ErrorPattern:
    """One row of the classification table."""

    pattern: re.Pattern
    category: ErrorCategory
    fixable: Fixability
    refine: Optional[Callable[[re.Match], "ClassifiedError"]] = None
    """Builds the error from the match when tier or remedy depend on it."""


def _is_local_specifier(specifier: str) -> bool:
    return specifier.startswith((".", "/", "@/", "~/"))


def extract_package_name(specifier: str) -> Optional[str]:
    """
    Turn a module specifier into an installable package name.

    'lodash/debounce' -> 'lodash', '@tanstack/react-query/devtools' ->
    '@tanstack/react-query'. Local paths return None.
    """
    specifier = specifier.strip()
    if not specifier or _is_local_specifier(specifier):
        return None
    parts = specifier.split("/")
    if specifier.startswith("@"):
        if len(parts) < 2 or not parts[1]:
            return None
        return f"{parts[0]}/{parts[1]}"
    return parts[0]


def _missing_module(match: re.Match) -> ClassifiedError:
    specifier = match.group(1)
    package = extract_package_name(specifier)
    if package is None:
        # A relative file that does not exist cannot be installed
        return ClassifiedError(
            category=ErrorCategory.MISSING_IMPORT,
            message=match.string.strip(),
            fixable=Fixability.AI,
        )
    return ClassifiedError(
        category=ErrorCategory.MISSING_PACKAGE,
        message=match.string.strip(),
        fixable=Fixability.AUTO,
        suggestion=f"npm install {package}",
    )


def _undefined_identifier(match: re.Match) -> ClassifiedError:
    identifier = match.group(1)
    statement = COMMON_IMPORTS.get(identifier)
    return ClassifiedError(
        category=ErrorCategory.MISSING_IMPORT,
        message=match.string.strip(),
        fixable=Fixability.AUTO if statement else Fixability.AI,
        suggestion=statement,
    )


# ---------------------------------------------------------------------------
# CLASSIFICATION TABLE (order matters: first match wins)
# ---------------------------------------------------------------------------
ERROR_PATTERNS: List[ErrorPattern] = [
    # Missing packages
    ErrorPattern(re.compile(r"[Ff]ailed to resolve import ['\"]([^'\"]+)['\"]"),
                 ErrorCategory.MISSING_PACKAGE, Fixability.AUTO, _missing_module),
    ErrorPattern(re.compile(r"Cannot find module ['\"]([^'\"]+)['\"]"),
                 ErrorCategory.MISSING_PACKAGE, Fixability.AUTO, _missing_module),
    ErrorPattern(re.compile(r"Module not found.*?['\"]([^'\"]+)['\"]"),
                 ErrorCategory.MISSING_PACKAGE, Fixability.AUTO, _missing_module),

    # Missing imports
    ErrorPattern(re.compile(r"'([^']+)' is not defined"),
                 ErrorCategory.MISSING_IMPORT, Fixability.AUTO, _undefined_identifier),
    ErrorPattern(re.compile(r"\b(\w+) is not defined"),
                 ErrorCategory.MISSING_IMPORT, Fixability.AUTO, _undefined_identifier),
    ErrorPattern(re.compile(r"'([^']+)' is not exported from"),
                 ErrorCategory.MISSING_IMPORT, Fixability.AI),

    # Syntax errors
    ErrorPattern(re.compile(r"SyntaxError|Unexpected token|Unterminated string|Missing.*semicolon"),
                 ErrorCategory.SYNTAX_ERROR, Fixability.AI),

    # Type errors
    ErrorPattern(re.compile(r"TypeError|is not a function|Cannot read propert|undefined is not an object"),
                 ErrorCategory.TYPE_ERROR, Fixability.AI),

    # Runtime errors
    ErrorPattern(re.compile(r"ReferenceError|Maximum call stack"),
                 ErrorCategory.RUNTIME_ERROR, Fixability.AI),
    ErrorPattern(re.compile(r"out of memory|heap limit", re.IGNORECASE),
                 ErrorCategory.RUNTIME_ERROR, Fixability.USER),

    # Infrastructure
    ErrorPattern(re.compile(r"timeout|timed out|ETIMEDOUT|ECONNREFUSED|connection refused", re.IGNORECASE),
                 ErrorCategory.TIMEOUT, Fixability.USER),
    ErrorPattern(re.compile(r"sandbox.*failed|provider.*error", re.IGNORECASE),
                 ErrorCategory.PROVIDER_ERROR, Fixability.USER),
]


def classify_error(message: str) -> ClassifiedError:
    """
    Classify one raw error message.

    Args:
        message: Raw diagnostic text (a build line, a test failure, ...)

    Returns:
        ClassifiedError; UNKNOWN / USER when no pattern matches
    """
    text = message or ""
    for row in ERROR_PATTERNS:
        match = row.pattern.search(text)
        if not match:
            continue
        if row.refine is not None:
            return row.refine(match)
        return ClassifiedError(
            category=row.category,
            message=text.strip(),
            fixable=row.fixable,
        )

    return ClassifiedError(
        category=ErrorCategory.UNKNOWN,
        message=text.strip() or "Unknown error",
        fixable=Fixability.USER,
    )


def classify_errors(messages: Iterable[str]) -> List[ClassifiedError]:
    return [classify_error(m) for m in messages if m and m.strip()]


# ---------------------------------------------------------------------------
# PRIORITIZATION
# ---------------------------------------------------------------------------
FIXABILITY_PRIORITY: Dict[Fixability, int] = {
    Fixability.AUTO: 0,
    Fixability.AI: 1,
    Fixability.USER: 2,
}


def prioritize_errors(errors: List[ClassifiedError]) -> List[ClassifiedError]:
    """
    Stable sort: all AUTO errors, then AI, then USER.

    Errors within a tier keep their original relative order, so applying
    this twice yields the same list.
    """
    return sorted(errors, key=lambda e: FIXABILITY_PRIORITY[e.fixable])


def can_auto_fix(errors: List[ClassifiedError]) -> bool:
    return any(e.fixable == Fixability.AUTO for e in errors)


def needs_ai_repair(errors: List[ClassifiedError]) -> bool:
    return any(e.fixable == Fixability.AI for e in errors)


# ---------------------------------------------------------------------------
# REMEDY HELPERS
# ---------------------------------------------------------------------------
_MODULE_IN_MESSAGE = re.compile(
    r"(?:[Ff]ailed to resolve import|Cannot find module|Module not found.*?)\s*['\"]([^'\"]+)['\"]"
)


def extract_package_name_from_error(message: str) -> Optional[str]:
    """Installable package named in a missing-module message, if any."""
    match = _MODULE_IN_MESSAGE.search(message or "")
    if not match:
        return None
    return extract_package_name(match.group(1))


def extract_undefined_identifier(message: str) -> Optional[str]:
    match = re.search(r"'([^']+)' is not defined", message or "")
    if not match:
        match = re.search(r"\b(\w+) is not defined", message or "")
    return match.group(1) if match else None


def get_suggested_import(identifier: str) -> Optional[str]:
    return COMMON_IMPORTS.get(identifier)


def get_user_message(category: ErrorCategory) -> str:
    """Non-technical message shown to the end user for a category."""
    return USER_ERROR_MESSAGES.get(category, USER_ERROR_MESSAGES[ErrorCategory.UNKNOWN])
