"""
Auto Fixer - Mechanical, deterministic repairs of generated code.

Two kinds of fixes:
1. Per-error: for each AUTO-tier error, install the missing package or
   inject the missing import into src/App.jsx.
2. Blanket passes, run regardless of the error list: invalid Tailwind
   tokens, `.js` suffixes on relative imports, stylesheet imports and
   duplicate default exports.

The pure *_code() helpers transform a source string and report what they
changed; the async methods apply them to the sandbox file.
"""

import logging
import re
from typing import Dict, List, Optional, Tuple

from bwork.sandbox.cancellation import CancellationToken
from bwork.sandbox.config import APP_ENTRY_FILE
from bwork.sandbox.contracts import (
    AutoFixResult,
    ClassifiedError,
    ErrorCategory,
    FixApplied,
    Fixability,
)
from bwork.sandbox.providers.base import SandboxProvider
from bwork.sandbox.repair.error_classifier import (
    extract_package_name_from_error,
    extract_undefined_identifier,
    get_suggested_import,
)

logger = logging.getLogger("bwork.sandbox.repair.auto")

# Tailwind tokens that do not exist in the default scale
INVALID_TAILWIND_CLASSES: Dict[str, str] = {
    "shadow-3xl": "shadow-2xl",
    "rounded-4xl": "rounded-3xl",
    "blur-3xl": "blur-2xl",
}

# Whole import statements, including multi-line `import {\n ...\n} from "x";` blocks
IMPORT_STATEMENT = re.compile(
    r"""^import\s+(?:[^'";]*?\s+from\s+)?(['"])[^'"\n]+\1;?[ \t]*$""",
    re.MULTILINE,
)
RELATIVE_JS_IMPORT = re.compile(r"""from\s+(['"])(\.{1,2}/[^'"]+)\.js\1""")
CSS_IMPORT = re.compile(r"""import\s+['"][^'"]+\.css['"];?[ \t]*\n?""")
EXPORT_DEFAULT = "export default"


# ---------------------------------------------------------------------------
# PURE TRANSFORMS
# ---------------------------------------------------------------------------

def inject_import(code: str, statement: str) -> str:
    """
    Insert `statement` after the last import statement, or at the top.

    Returns the code unchanged when the statement is already present.
    """
    if statement in code:
        return code

    imports = list(IMPORT_STATEMENT.finditer(code))
    if imports:
        end = imports[-1].end()
        return code[:end] + "\n" + statement + code[end:]
    return statement + "\n\n" + code


def fix_tailwind_classes(code: str) -> Tuple[str, List[str]]:
    fixes = []
    for invalid, valid in INVALID_TAILWIND_CLASSES.items():
        pattern = re.compile(rf"(?<![\w-]){re.escape(invalid)}(?![\w-])")
        if pattern.search(code):
            code = pattern.sub(valid, code)
            fixes.append(f"Replaced {invalid} with {valid}")
    return code, fixes


def fix_import_paths_code(code: str) -> Tuple[str, List[str]]:
    """Drop `.js` from relative import specifiers (Vite resolves .jsx)."""
    fixed, count = RELATIVE_JS_IMPORT.subn(r"from \1\2\1", code)
    if count:
        return fixed, [f"Removed .js extension from {count} relative import(s)"]
    return code, []


def remove_problematic_patterns_code(code: str) -> Tuple[str, List[str]]:
    fixes = []

    code, count = CSS_IMPORT.subn("", code)
    if count:
        fixes.append("Removed CSS imports (using Tailwind)")

    if code.count(EXPORT_DEFAULT) > 1:
        # Keep only the last default export
        parts = code.split(EXPORT_DEFAULT)
        code = "".join(parts[:-1]) + EXPORT_DEFAULT + parts[-1]
        fixes.append("Fixed duplicate export default")

    return code, fixes


# ---------------------------------------------------------------------------
# AUTO FIXER
# ---------------------------------------------------------------------------

class AutoFixer:
    """
    Applies mechanical fixes inside a live sandbox.

    Usage:
        fixer = AutoFixer()
        result = await fixer.run_all_auto_fixes(provider, errors)
        if result.success:
            ...  # re-validate
    """

    def __init__(self, entry_file: str = APP_ENTRY_FILE):
        self.entry_file = entry_file

    async def auto_fix(
        self,
        provider: SandboxProvider,
        errors: List[ClassifiedError],
        cancel_token: Optional[CancellationToken] = None,
    ) -> AutoFixResult:
        """
        Fix each AUTO-tier error; non-AUTO errors are returned untouched.

        success is True only when no error remains.
        """
        fixes: List[FixApplied] = []
        remaining: List[ClassifiedError] = []

        for error in errors:
            fix = None
            if error.fixable == Fixability.AUTO:
                if error.category == ErrorCategory.MISSING_PACKAGE:
                    fix = await self._install_missing_package(provider, error, cancel_token)
                elif error.category == ErrorCategory.MISSING_IMPORT:
                    fix = await self._add_missing_import(provider, error)

            if fix is None:
                remaining.append(error)
            else:
                fixes.append(fix)

        return AutoFixResult(success=not remaining, fixes_applied=fixes, remaining_errors=remaining)

    async def _install_missing_package(
        self,
        provider: SandboxProvider,
        error: ClassifiedError,
        cancel_token: Optional[CancellationToken],
    ) -> Optional[FixApplied]:
        package = extract_package_name_from_error(error.message)
        if package is None and error.suggestion and error.suggestion.startswith("npm install "):
            package = error.suggestion[len("npm install "):].strip()
        if not package:
            return None

        logger.info(f"Installing missing package: {package}")
        result = await provider.install_packages([package], cancel_token=cancel_token)
        if not result.success:
            logger.warning(f"Failed to install {package}: {result.stderr[:200]}")
            return None
        return FixApplied(type="package-install", description=f"Installed {package}")

    async def _add_missing_import(
        self,
        provider: SandboxProvider,
        error: ClassifiedError,
    ) -> Optional[FixApplied]:
        identifier = extract_undefined_identifier(error.message)
        statement = get_suggested_import(identifier) if identifier else None
        if statement is None:
            return None

        code = await provider.read_file(self.entry_file)
        updated = inject_import(code, statement)
        if updated != code:
            logger.info(f"Adding import for: {identifier}")
            await provider.write_file(self.entry_file, updated)
        return FixApplied(
            type="add-import",
            description=f"Added import for {identifier}",
            file=self.entry_file,
        )

    async def _apply(self, provider: SandboxProvider, transform) -> List[str]:
        try:
            code = await provider.read_file(self.entry_file)
        except FileNotFoundError:
            logger.warning(f"{self.entry_file} not found, skipping {transform.__name__}")
            return []

        updated, fixes = transform(code)
        if fixes:
            await provider.write_file(self.entry_file, updated)
        return fixes

    async def fix_tailwind_issues(self, provider: SandboxProvider) -> List[str]:
        return await self._apply(provider, fix_tailwind_classes)

    async def fix_import_paths(self, provider: SandboxProvider) -> List[str]:
        return await self._apply(provider, fix_import_paths_code)

    async def remove_problematic_patterns(self, provider: SandboxProvider) -> List[str]:
        return await self._apply(provider, remove_problematic_patterns_code)

    async def run_all_auto_fixes(
        self,
        provider: SandboxProvider,
        errors: List[ClassifiedError],
        cancel_token: Optional[CancellationToken] = None,
    ) -> AutoFixResult:
        """Per-error fixes followed by every blanket pass."""
        logger.info("Running all auto-fix strategies...")
        result = await self.auto_fix(provider, errors, cancel_token=cancel_token)

        fixes = list(result.fixes_applied)
        fixes += [FixApplied("tailwind", f, self.entry_file) for f in await self.fix_tailwind_issues(provider)]
        fixes += [FixApplied("import-path", f, self.entry_file) for f in await self.fix_import_paths(provider)]
        fixes += [FixApplied("pattern", f, self.entry_file) for f in await self.remove_problematic_patterns(provider)]

        logger.info(f"Applied {len(fixes)} fix(es), {len(result.remaining_errors)} error(s) remain")
        return AutoFixResult(
            success=not result.remaining_errors,
            fixes_applied=fixes,
            remaining_errors=result.remaining_errors,
        )


# ---------------------------------------------------------------------------
# SINGLETON INSTANCE
# ---------------------------------------------------------------------------
auto_fixer = AutoFixer()
