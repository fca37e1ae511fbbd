"""
Tests for the package detector.

These tests verify:
- Import, re-export, dynamic import and require detection
- Scoped package and subpath normalization
- Built-ins, template packages and local paths are excluded
- Invalid names never reach npm install
"""

import pytest

from bwork.sandbox.utils.package_detector import PackageDetector, detect_packages, is_valid_package_name


@pytest.fixture
def detector() -> PackageDetector:
    return PackageDetector()


class TestDetect:
    """Tests for PackageDetector.detect()."""

    def test_detects_imports_in_order(self, detector: PackageDetector):
        """Packages come back in first-appearance order."""
        code = (
            "import { motion } from 'framer-motion';\n"
            "import dayjs from 'dayjs';\n"
            "import { Check } from 'lucide-react';\n"
        )

        assert detector.detect(code) == ["framer-motion", "dayjs", "lucide-react"]

    def test_side_effect_and_dynamic_imports(self, detector: PackageDetector):
        """Bare imports, import() and require() are all detected."""
        code = (
            "import 'chart.js/auto';\n"
            "const confetti = await import('canvas-confetti');\n"
            "const _ = require('lodash');\n"
        )

        assert detector.detect(code) == ["chart.js", "canvas-confetti", "lodash"]

    def test_export_from(self, detector: PackageDetector):
        """Re-exports pull in their package."""
        assert detector.detect("export { clsx } from 'clsx';") == ["clsx"]

    def test_dollar_bindings(self, detector: PackageDetector):
        """Identifiers containing $ still count as import bindings."""
        code = "import $ from 'jquery';\nimport { $el as el$ } from 'dom-helpers';\n"

        assert detector.detect(code) == ["jquery", "dom-helpers"]

    def test_scoped_and_subpath(self, detector: PackageDetector):
        """Scoped packages keep their scope; subpaths are dropped."""
        code = (
            "import { useQuery } from '@tanstack/react-query';\n"
            "import debounce from 'lodash/debounce';\n"
        )

        assert detector.detect(code) == ["@tanstack/react-query", "lodash"]

    def test_excludes_template_builtins_and_locals(self, detector: PackageDetector):
        """React, Node built-ins and relative paths are never installed."""
        code = (
            "import React, { useState } from 'react';\n"
            "import { createRoot } from 'react-dom/client';\n"
            "import fs from 'fs';\n"
            "import path from 'node:path';\n"
            "import Button from './Button';\n"
            "import { cn } from '@/lib/utils';\n"
        )

        assert detector.detect(code) == []

    def test_aliases_resolved(self, detector: PackageDetector):
        """Shorthand names map to the published package."""
        code = "import { Link } from 'react-router';\nimport { motion } from 'motion';"

        assert detector.detect(code) == ["react-router-dom", "framer-motion"]

    def test_deduplicates(self, detector: PackageDetector):
        """A package imported twice is listed once."""
        code = "import a from 'zod';\nimport { z } from 'zod';"

        assert detector.detect(code) == ["zod"]

    def test_invalid_names_dropped(self, detector: PackageDetector):
        """Names that break npm rules are filtered out."""
        code = "import X from 'Not_A_Package';\nimport y from 'valid-pkg';"

        assert detector.detect(code) == ["valid-pkg"]

    def test_empty_code(self, detector: PackageDetector):
        """No code, no packages."""
        assert detector.detect("") == []

    def test_module_helper(self):
        """detect_packages() uses the shared detector."""
        assert detect_packages("import axios from 'axios'") == ["axios"]


class TestPackageNames:
    """Tests for name validation and install specs."""

    @pytest.mark.parametrize("name", ["lodash", "chart.js", "@scope/pkg", "left-pad"])
    def test_valid_names(self, name: str):
        """Lowercase plain and scoped names are valid."""
        assert is_valid_package_name(name) is True

    @pytest.mark.parametrize("name", ["", "Upper", "@scope", "@a/b/c", "has space", "x" * 215])
    def test_invalid_names(self, name: str):
        """Uppercase, malformed scopes and overlong names are invalid."""
        assert is_valid_package_name(name) is False

    def test_format_install_spec(self, detector: PackageDetector):
        """Pinned packages carry their version range."""
        assert detector.format_install_spec("zod") == "zod@^3.22.0"
        assert detector.format_install_spec("left-pad") == "left-pad"

    def test_detect_from_files(self, detector: PackageDetector):
        """Only JS/TS files are scanned."""
        files = {
            "src/App.jsx": "import dayjs from 'dayjs';",
            "src/util.ts": "import { z } from 'zod';",
            "README.md": "import nope from 'nope';",
        }

        assert detector.detect_from_files(files) == ["dayjs", "zod"]
