"""
AI Repairer - Semantic repair of generated code through an LLM.

The model receives the component source and its classified errors and is
asked for JSON of the form {"code": "...", "explanation": "..."}.

Reply parsing, in order:
1. JSON validated against RepairResponse (code is required)
2. Regex salvage of the "code" string from malformed JSON
3. A raw code body (fenced or not), only if it has a default export
4. Otherwise the repair fails closed and the original code is kept

Nothing here raises: every failure is an AIRepairResult(success=False).
"""

import json
import logging
import re
from typing import List, Optional

from pydantic import BaseModel, ValidationError

from bwork.ai.providers import AIProvider, get_repair_provider
from bwork.core.config import settings
from bwork.sandbox.cancellation import CancellationToken, cancellable
from bwork.sandbox.config import APP_ENTRY_FILE
from bwork.sandbox.contracts import AIRepairResult, ClassifiedError
from bwork.sandbox.providers.base import SandboxProvider

logger = logging.getLogger("bwork.sandbox.repair.ai")


REPAIR_SYSTEM_PROMPT = """You are an expert at fixing React/JSX code. You receive code with errors and must correct it.

STRICT RULES:
1. Do not change the business logic; fix only the errors
2. Keep the same code style
3. Do not add comments
4. The code must be a valid React function component exported by default
5. Use Tailwind CSS for styling (no external CSS)
6. The code must be self-contained (no imports besides React and installed packages)

OUTPUT FORMAT:
Respond with a JSON object:
{"code": "<the complete corrected JSX file>", "explanation": "<one sentence>"}
The code starts with its imports and ends with the default export."""


class RepairResponse(BaseModel):
    """Shape of a repair reply."""
    code: str
    explanation: Optional[str] = None


_CODE_FIELD = re.compile(r'"code"\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)
_FENCE_OPEN = re.compile(r"^```(?:jsx?|typescript|tsx)?\n?", re.MULTILINE)
_FENCE_CLOSE = re.compile(r"```$", re.MULTILINE)


def strip_code_fences(text: str) -> str:
    return _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", text or "")).strip()


def parse_repair_response(content: str) -> Optional[RepairResponse]:
    """
    Extract repaired code from a model reply.

    Returns:
        RepairResponse, or None when no usable code could be recovered
    """
    text = (content or "").strip()
    if not text:
        return None

    try:
        parsed = RepairResponse.model_validate_json(text)
        if parsed.code.strip():
            parsed.code = strip_code_fences(parsed.code)
            return parsed
    except ValidationError:
        pass

    salvaged = _CODE_FIELD.search(text)
    if salvaged:
        try:
            code = json.loads(f'"{salvaged.group(1)}"', strict=False)
        except json.JSONDecodeError:
            code = None
        if code and code.strip():
            logger.warning("Repair reply was not valid JSON, salvaged the code field")
            return RepairResponse(code=strip_code_fences(code), explanation="Salvaged from malformed reply")

    raw = strip_code_fences(text)
    if "export default" in raw and not raw.lstrip().startswith("{"):
        logger.warning("Repair reply was raw code, accepting it")
        return RepairResponse(code=raw)

    return None


def format_errors(errors: List[ClassifiedError]) -> str:
    return "\n".join(f"- {e.category.value}: {e.message}" for e in errors)


class AIRepairer:
    """
    Repairs component source with an AI provider.

    Usage:
        repairer = AIRepairer()
        if repairer.is_ai_repair_available():
            result = await repairer.repair_code(code, errors)

    Args:
        provider: AI provider (default: get_repair_provider())
        max_tokens: Output token budget per repair
    """

    def __init__(self, provider: Optional[AIProvider] = None, max_tokens: Optional[int] = None):
        self._provider = provider
        self.max_tokens = max_tokens or settings.AI_REPAIR_MAX_TOKENS

    def _get_provider(self) -> AIProvider:
        if self._provider is None:
            self._provider = get_repair_provider()
        return self._provider

    def is_ai_repair_available(self) -> bool:
        return self._get_provider().is_available

    async def _request(
        self,
        prompt: str,
        original_code: str,
        max_tokens: int,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AIRepairResult:
        if not self.is_ai_repair_available():
            return AIRepairResult(success=False, repaired_code=original_code, error="AI repair not configured")

        response = await cancellable(
            self._get_provider().generate_json(
                prompt=prompt,
                system_prompt=REPAIR_SYSTEM_PROMPT,
                max_tokens=max_tokens,
            ),
            cancel_token,
        )
        tokens = response.usage.total_tokens

        if not response.success:
            return AIRepairResult(
                success=False,
                repaired_code=original_code,
                tokens_used=tokens,
                error=response.error or "AI request failed",
            )

        parsed = parse_repair_response(response.content)
        if parsed is None:
            logger.warning("AI reply contained no usable code")
            return AIRepairResult(
                success=False,
                repaired_code=original_code,
                tokens_used=tokens,
                error="AI response contained no usable code",
            )

        logger.info(f"AI repair completed, tokens used: {tokens}")
        return AIRepairResult(
            success=True,
            repaired_code=parsed.code,
            explanation=parsed.explanation,
            tokens_used=tokens,
        )

    async def repair_code(
        self,
        code: str,
        errors: List[ClassifiedError],
        cancel_token: Optional[CancellationToken] = None,
    ) -> AIRepairResult:
        """Repair a source string without touching any sandbox."""
        prompt = (
            "Fix the following errors in this React code:\n\n"
            f"ERRORS:\n{format_errors(errors)}\n\n"
            f"CODE TO FIX:\n```jsx\n{code}\n```"
        )
        logger.info(f"Requesting AI repair for {len(errors)} error(s)")
        return await self._request(prompt, code, self.max_tokens, cancel_token)

    async def apply_ai_repair(
        self,
        provider: SandboxProvider,
        errors: List[ClassifiedError],
        code: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AIRepairResult:
        """
        Repair the sandbox's entry file in place.

        On success the repaired code is written back and the dev server
        restarted so the next validation sees it.
        """
        try:
            current = code if code is not None else await provider.read_file(APP_ENTRY_FILE)
        except FileNotFoundError as e:
            return AIRepairResult(success=False, repaired_code=code or "", error=str(e))

        result = await self.repair_code(current, errors, cancel_token=cancel_token)
        if not result.success:
            return result

        await provider.write_file(APP_ENTRY_FILE, result.repaired_code)
        await provider.restart_dev_server(cancel_token=cancel_token)
        logger.info("Repaired code applied to sandbox")
        return result

    async def generate_missing_component(self, name: str, context: str) -> Optional[str]:
        """Generate a simple default-exported component named `name`."""
        prompt = (
            f'Generate a simple React component named "{name}" based on this context:\n{context}\n\n'
            "RULES:\n- Functional React component\n- Tailwind CSS\n- Default export\n- No complex props"
        )
        result = await self._request(prompt, "", 2048)
        return result.repaired_code if result.success else None

    async def simplify_code(
        self,
        code: str,
        errors: Optional[List[ClassifiedError]] = None,
    ) -> AIRepairResult:
        """Ask for a reduced version that keeps the main feature but drops risky parts."""
        prompt = (
            "Simplify this React code so that it runs without errors. Keep the main "
            "functionality but remove complex parts that could cause errors.\n\n"
        )
        if errors:
            prompt += f"KNOWN ERRORS:\n{format_errors(errors)}\n\n"
        prompt += f"CODE:\n```jsx\n{code}\n```"
        return await self._request(prompt, code, self.max_tokens)


# ---------------------------------------------------------------------------
# SINGLETON INSTANCE
# ---------------------------------------------------------------------------
ai_repairer = AIRepairer()
