"""
Package Detector - Infer npm dependencies from generated source.

Scans import / require references, normalizes scoped packages and
subpaths, resolves common shorthand aliases, and drops Node built-ins and
packages already bundled into the sandbox template. Names that are not
valid npm package names (typically hallucinated) never reach `npm install`.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger("bwork.sandbox.package_detector")


class PackageDetector:
    """
    Static dependency detection for generated React code.

    Usage:
        detector = PackageDetector()
        detector.detect("import dayjs from 'dayjs'")  # ["dayjs"]
    """

    BUILTIN_MODULES = frozenset({
        "assert", "buffer", "child_process", "cluster", "console", "constants",
        "crypto", "dgram", "dns", "domain", "events", "fs", "http", "https",
        "module", "net", "os", "path", "process", "punycode", "querystring",
        "readline", "repl", "stream", "string_decoder", "timers", "tls", "tty",
        "url", "util", "v8", "vm", "worker_threads", "zlib",
    })

    # Installed by the template's package.json during setup
    TEMPLATE_PACKAGES = frozenset({
        "react",
        "react-dom",
        "vite",
        "@vitejs/plugin-react",
        "tailwindcss",
        "postcss",
        "autoprefixer",
        "tailwindcss-animate",
        "vitest",
        "@testing-library/react",
        "@testing-library/jest-dom",
        "jsdom",
    })

    # Shorthand or outdated names mapped to the published package
    PACKAGE_ALIASES: Dict[str, str] = {
        "react-router": "react-router-dom",
        "router": "react-router-dom",
        "_": "lodash",
        "motion": "framer-motion",
        "react-query": "@tanstack/react-query",
        "react-table": "@tanstack/react-table",
        "heroicons": "@heroicons/react",
        "headlessui": "@headlessui/react",
    }

    # Known-good version ranges for packages generated code commonly uses
    PACKAGE_VERSIONS: Dict[str, str] = {
        "axios": "^1.6.0",
        "lodash": "^4.17.21",
        "date-fns": "^3.0.0",
        "dayjs": "^1.11.0",
        "uuid": "^9.0.0",
        "clsx": "^2.0.0",
        "framer-motion": "^10.16.0",
        "zustand": "^4.4.0",
        "jotai": "^2.5.0",
        "@tanstack/react-query": "^5.0.0",
        "react-router-dom": "^6.20.0",
        "lucide-react": "^0.300.0",
        "react-hook-form": "^7.48.0",
        "zod": "^3.22.0",
        "recharts": "^2.10.0",
        "sonner": "^1.2.0",
    }

    IMPORT_PATTERN = re.compile(r"""import\s+(?:[\w${},*\s]+\s+from\s+)?['"]([^'"]+)['"]""")
    EXPORT_FROM_PATTERN = re.compile(r"""export\s+(?:[\w${},*\s]+)\s+from\s+['"]([^'"]+)['"]""")
    DYNAMIC_IMPORT_PATTERN = re.compile(r"""import\(\s*['"]([^'"]+)['"]\s*\)""")
    REQUIRE_PATTERN = re.compile(r"""require\s*\(\s*['"]([^'"]+)['"]\s*\)""")

    PLAIN_NAME = re.compile(r"^[a-z0-9-~][a-z0-9-._~]*$")
    SCOPED_NAME = re.compile(r"^@[a-z0-9-~][a-z0-9-._~]*/[a-z0-9-~][a-z0-9-._~]*$")
    SOURCE_FILE = re.compile(r"\.(js|jsx|ts|tsx|mjs|cjs)$")

    def extract_package_name(self, specifier: str) -> Optional[str]:
        """
        Normalize an import specifier to a package name.

        Returns None for relative paths, path aliases and built-ins.
        """
        specifier = specifier.strip()
        if not specifier or specifier.startswith((".", "/", "@/", "~/")):
            return None
        if specifier.startswith("node:"):
            return None

        if specifier.startswith("@"):
            parts = specifier.split("/")
            if len(parts) < 2 or not parts[1]:
                return None
            return f"{parts[0]}/{parts[1]}"

        base = specifier.split("/")[0]
        if base in self.BUILTIN_MODULES:
            return None
        return self.resolve_alias(base)

    def resolve_alias(self, name: str) -> str:
        return self.PACKAGE_ALIASES.get(name, name)

    def detect(self, code: str) -> List[str]:
        """
        Packages to install for one source file.

        Order follows first appearance in the source; duplicates are dropped.
        """
        found: List[str] = []
        specifiers = []
        for pattern in (
            self.IMPORT_PATTERN,
            self.EXPORT_FROM_PATTERN,
            self.DYNAMIC_IMPORT_PATTERN,
            self.REQUIRE_PATTERN,
        ):
            specifiers.extend((m.start(), m.group(1)) for m in pattern.finditer(code or ""))

        for _, specifier in sorted(specifiers):
            name = self.extract_package_name(specifier)
            if name and name not in found:
                found.append(name)

        return self.filter_packages(found)

    def detect_from_files(self, files: Dict[str, str]) -> List[str]:
        """Union of detect() over every JS/TS file in a path -> content mapping."""
        packages: List[str] = []
        for path, content in files.items():
            if not self.SOURCE_FILE.search(path):
                continue
            for name in self.detect(content):
                if name not in packages:
                    packages.append(name)
        return packages

    def is_valid_package_name(self, name: str) -> bool:
        """
        npm naming rules: lowercase, limited character set, at most 214
        characters, and exactly one slash for scoped packages.
        """
        if not name or len(name) > 214:
            return False
        if name.startswith("@"):
            return bool(self.SCOPED_NAME.match(name))
        return bool(self.PLAIN_NAME.match(name))

    def filter_packages(self, packages: Iterable[str]) -> List[str]:
        """Drop invalid names, template packages and built-ins."""
        result = []
        for name in packages:
            if not self.is_valid_package_name(name):
                logger.warning(f"Skipping invalid package name: {name!r}")
                continue
            if name in self.TEMPLATE_PACKAGES or name in self.BUILTIN_MODULES:
                continue
            if name not in result:
                result.append(name)
        return result

    def get_package_version(self, name: str) -> Optional[str]:
        return self.PACKAGE_VERSIONS.get(name)

    def format_install_spec(self, name: str) -> str:
        """'zod' -> 'zod@^3.22.0' when a version is pinned, else the bare name."""
        version = self.get_package_version(name)
        return f"{name}@{version}" if version else name


# ---------------------------------------------------------------------------
# SINGLETON INSTANCE
# ---------------------------------------------------------------------------
package_detector = PackageDetector()


def detect_packages(code: str) -> List[str]:
    return package_detector.detect(code)


def is_valid_package_name(name: str) -> bool:
    return package_detector.is_valid_package_name(name)
