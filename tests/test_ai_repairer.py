"""
Tests for the AI repairer.

The AI provider is an AsyncMock; no model is called.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from bwork.ai.providers import AnthropicProvider
from bwork.ai.providers.base import AIProvider, AIResponse, ProviderType, TokenUsage
from bwork.sandbox.cancellation import CancellationToken
from bwork.sandbox.config import APP_ENTRY_FILE
from bwork.sandbox.contracts import ClassifiedError, ErrorCategory, Fixability
from bwork.sandbox.exceptions import PipelineCancelledError
from bwork.sandbox.repair.ai_repairer import (
    REPAIR_SYSTEM_PROMPT,
    AIRepairer,
    format_errors,
    parse_repair_response,
    strip_code_fences,
)

from sandbox_fakes import FakeProvider


BROKEN = "export default function App() {\n  return <div>{items.map(i => i)}</div>;\n}\n"
FIXED = "export default function App() {\n  const items = [];\n  return <div>{items.map(i => i)}</div>;\n}\n"

ERRORS = [ClassifiedError(ErrorCategory.RUNTIME_ERROR, "ReferenceError: items is not defined", Fixability.AI)]


def ai_provider(content: str = "", success: bool = True, available: bool = True) -> MagicMock:
    provider = MagicMock(spec=AIProvider)
    provider.is_available = available
    provider.generate_json = AsyncMock(return_value=AIResponse(
        content=content,
        provider=ProviderType.ANTHROPIC,
        model="claude-test",
        usage=TokenUsage(prompt_tokens=300, completion_tokens=200),
        success=success,
        error=None if success else "overloaded",
    ))
    return provider


class TestParseRepairResponse:
    """Tests for parse_repair_response()."""

    def test_valid_json(self):
        """Well-formed JSON is accepted."""
        parsed = parse_repair_response(json.dumps({"code": FIXED, "explanation": "declared items"}))

        assert parsed.code == FIXED.strip()
        assert parsed.explanation == "declared items"

    def test_fenced_code_inside_json(self):
        """Fences inside the code field are stripped."""
        parsed = parse_repair_response(json.dumps({"code": "```jsx\n" + FIXED + "```"}))

        assert parsed.code == FIXED.strip()

    def test_salvages_malformed_json(self):
        """The code field is recovered when the object does not parse."""
        content = '{"code": "export default function App() {\\n  return null;\\n}", "explanation": broken}'

        parsed = parse_repair_response(content)

        assert parsed.code == "export default function App() {\n  return null;\n}"

    def test_accepts_raw_code_with_default_export(self):
        """A raw component body is accepted."""
        parsed = parse_repair_response("```jsx\n" + FIXED + "```")

        assert parsed.code == FIXED.strip()

    def test_rejects_prose(self):
        """Replies without usable code fail closed."""
        assert parse_repair_response("I could not fix this, sorry.") is None
        assert parse_repair_response("") is None

    def test_rejects_json_without_code(self):
        """JSON missing the code field is not treated as raw code."""
        assert parse_repair_response('{"explanation": "export default nothing"}') is None

    def test_rejects_empty_code(self):
        """An empty code field is not a repair."""
        assert parse_repair_response('{"code": "   "}') is None

    def test_strip_code_fences(self):
        """Language tags and closing fences are removed."""
        assert strip_code_fences("```tsx\nconst a = 1;\n```") == "const a = 1;"


class TestRepairCode:
    """Tests for AIRepairer.repair_code()."""

    @pytest.mark.asyncio
    async def test_success(self):
        """A usable reply returns the repaired code and tokens."""
        provider = ai_provider(json.dumps({"code": FIXED, "explanation": "declared items"}))
        repairer = AIRepairer(provider=provider, max_tokens=4096)

        result = await repairer.repair_code(BROKEN, ERRORS)

        assert result.success is True
        assert result.repaired_code == FIXED.strip()
        assert result.tokens_used == 500

        kwargs = provider.generate_json.call_args.kwargs
        assert kwargs["system_prompt"] == REPAIR_SYSTEM_PROMPT
        assert kwargs["max_tokens"] == 4096
        assert "items is not defined" in kwargs["prompt"]
        assert BROKEN in kwargs["prompt"]

    @pytest.mark.asyncio
    async def test_provider_failure_keeps_original(self):
        """A failed request keeps the original code."""
        repairer = AIRepairer(provider=ai_provider(success=False))

        result = await repairer.repair_code(BROKEN, ERRORS)

        assert result.success is False
        assert result.repaired_code == BROKEN
        assert result.error == "overloaded"

    @pytest.mark.asyncio
    async def test_unusable_reply_keeps_original(self):
        """Prose replies fail closed."""
        repairer = AIRepairer(provider=ai_provider("Sorry, cannot help."))

        result = await repairer.repair_code(BROKEN, ERRORS)

        assert result.success is False
        assert result.repaired_code == BROKEN
        assert result.tokens_used == 500

    @pytest.mark.asyncio
    async def test_unavailable_provider(self):
        """No credentials, no request."""
        provider = ai_provider(available=False)
        repairer = AIRepairer(provider=provider)

        result = await repairer.repair_code(BROKEN, ERRORS)

        assert repairer.is_ai_repair_available() is False
        assert result.success is False
        provider.generate_json.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancelled_token(self):
        """A cancelled run does not wait for the model."""
        repairer = AIRepairer(provider=ai_provider(json.dumps({"code": FIXED})))
        token = CancellationToken()
        token.cancel("closed")

        with pytest.raises(PipelineCancelledError):
            await repairer.repair_code(BROKEN, ERRORS, cancel_token=token)


class TestRepairWithAnthropic:
    """repair_code() through a real AnthropicProvider whose client is mocked."""

    def _repairer(self, text: str) -> AIRepairer:
        provider = AnthropicProvider(api_key="test-key")
        provider._client = MagicMock()
        provider._client.messages.create = AsyncMock(return_value=SimpleNamespace(
            content=[SimpleNamespace(type="text", text=text)],
            usage=SimpleNamespace(input_tokens=300, output_tokens=200),
        ))
        return AIRepairer(provider=provider)

    @pytest.mark.asyncio
    async def test_fenced_jsx_reply(self):
        """A ```jsx block instead of JSON still yields the component."""
        result = await self._repairer("```jsx\n" + FIXED + "```").repair_code(BROKEN, ERRORS)

        assert result.success is True
        assert result.repaired_code == FIXED.strip()

    @pytest.mark.asyncio
    async def test_raw_code_reply(self):
        """Unfenced source code is accepted as the repair."""
        result = await self._repairer("import React from 'react';\n\n" + FIXED).repair_code(BROKEN, ERRORS)

        assert result.success is True
        assert result.repaired_code.startswith("import React from 'react';")
        assert result.repaired_code.endswith(FIXED.strip())

    @pytest.mark.asyncio
    async def test_json_reply(self):
        """The requested JSON shape still works through the same path."""
        result = await self._repairer(json.dumps({"code": FIXED, "explanation": "declared items"})).repair_code(
            BROKEN, ERRORS
        )

        assert result.success is True
        assert result.repaired_code == FIXED.strip()
        assert result.explanation == "declared items"


class TestApplyAIRepair:
    """Tests for AIRepairer.apply_ai_repair() against a fake sandbox."""

    @pytest.mark.asyncio
    async def test_writes_repaired_code_and_restarts(self):
        """The entry file is replaced and the dev server restarted."""
        sandbox = FakeProvider()
        await sandbox.create()
        await sandbox.write_file(APP_ENTRY_FILE, BROKEN)
        repairer = AIRepairer(provider=ai_provider(json.dumps({"code": FIXED})))

        result = await repairer.apply_ai_repair(sandbox, ERRORS)

        assert result.success is True
        assert await sandbox.read_file(APP_ENTRY_FILE) == FIXED.strip()
        assert sandbox.ran("pkill -f vite")
        assert sandbox.ran("npm run dev")

    @pytest.mark.asyncio
    async def test_failure_leaves_sandbox_untouched(self):
        """A failed repair does not write or restart."""
        sandbox = FakeProvider()
        await sandbox.create()
        await sandbox.write_file(APP_ENTRY_FILE, BROKEN)
        repairer = AIRepairer(provider=ai_provider("no code here"))

        result = await repairer.apply_ai_repair(sandbox, ERRORS)

        assert result.success is False
        assert await sandbox.read_file(APP_ENTRY_FILE) == BROKEN
        assert sandbox.commands == []

    @pytest.mark.asyncio
    async def test_missing_entry_file(self):
        """Nothing to repair when src/App.jsx is absent."""
        sandbox = FakeProvider()
        await sandbox.create()
        repairer = AIRepairer(provider=ai_provider(json.dumps({"code": FIXED})))

        result = await repairer.apply_ai_repair(sandbox, ERRORS)

        assert result.success is False


class TestOtherPrompts:
    """Tests for simplify_code() and generate_missing_component()."""

    @pytest.mark.asyncio
    async def test_simplify_code(self):
        """Known errors are included in the simplification prompt."""
        provider = ai_provider(json.dumps({"code": FIXED}))
        repairer = AIRepairer(provider=provider)

        result = await repairer.simplify_code(BROKEN, ERRORS)

        assert result.success is True
        assert "KNOWN ERRORS" in provider.generate_json.call_args.kwargs["prompt"]

    @pytest.mark.asyncio
    async def test_generate_missing_component(self):
        """A generated component is returned as code."""
        component = "export default function Chart() { return <div />; }"
        repairer = AIRepairer(provider=ai_provider(json.dumps({"code": component})))

        assert await repairer.generate_missing_component("Chart", "a bar chart") == component

    @pytest.mark.asyncio
    async def test_generate_missing_component_failure(self):
        """Failure yields None."""
        repairer = AIRepairer(provider=ai_provider(success=False))

        assert await repairer.generate_missing_component("Chart", "a bar chart") is None

    def test_format_errors(self):
        """One bullet per error with its category."""
        assert format_errors(ERRORS) == "- runtime-error: ReferenceError: items is not defined"
