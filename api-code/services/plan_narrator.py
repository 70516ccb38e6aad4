from __future__ import annotations

import asyncio
import json
import logging
import re
import textwrap
from typing import Any, Dict, List, Optional, Sequence

import google.generativeai as genai

from models import AIDeploymentPlan, GitStatus


logger = logging.getLogger("devflow-deployer.narrator")

MAX_FILES_IN_PROMPT = 40


class PlanNarrator:
    """Turns a heuristic deployment plan into a short teammate-facing summary.

    Without a Gemini key, or when the model call fails, the narrative falls back
    to one built from the plan itself.
    """

    def __init__(self, api_key: Optional[str], model_name: str) -> None:
        self.api_key = api_key
        self.model_name = model_name

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def narrate(
        self,
        project_id: str,
        plan: AIDeploymentPlan,
        git_status: Optional[GitStatus],
        changed_files: Sequence[str],
    ) -> Dict[str, Any]:
        if not self.enabled:
            return self._fallback(plan)

        prompt = self._build_prompt(project_id, plan, git_status, changed_files)
        try:
            raw_text = await asyncio.to_thread(self._call_gemini, prompt)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Gemini plan narration failed: %s", exc)
            return self._fallback(plan)

        structured = self._coerce_narrative(raw_text)
        if not structured["summary"]:
            structured["summary"] = plan.rationale
        return structured

    @staticmethod
    def _fallback(plan: AIDeploymentPlan) -> Dict[str, Any]:
        return {
            "summary": plan.rationale,
            "highlights": [suggestion.title for suggestion in plan.suggestions][:3],
            "risks": list(plan.risk.factors)[:3],
        }

    def _build_prompt(
        self,
        project_id: str,
        plan: AIDeploymentPlan,
        git_status: Optional[GitStatus],
        changed_files: Sequence[str],
    ) -> str:
        files = list(changed_files)[:MAX_FILES_IN_PROMPT]
        if len(changed_files) > MAX_FILES_IN_PROMPT:
            files.append(f"... ({len(changed_files) - MAX_FILES_IN_PROMPT} more)")
        branch = git_status.branch if git_status and git_status.branch else "unknown"
        ahead_by = git_status.ahead_by if git_status and git_status.ahead_by is not None else 0
        changed = "\n".join(files) or "(no file changes listed)"
        return textwrap.dedent(
            f"""
            You are an expert release engineer. Summarize the upcoming deployment for a teammate.

            Project: {project_id}
            Branch: {branch} ({ahead_by} commits since the last successful deployment)
            Recommended environment: {plan.recommended_environment.value}
            Risk level: {plan.risk.level} ({', '.join(plan.risk.factors) or 'no factors'})

            Changed files:
            {changed}

            Respond ONLY with compact JSON that matches:
            {{
              "summary": "<one-sentence overview>",
              "highlights": ["<key change>", "<another highlight>"],
              "risks": ["<risk or validation reminder>"]
            }}
            Limit highlights and risks to at most three short entries each.
            """
        ).strip()

    def _call_gemini(self, prompt: str) -> str:
        genai.configure(api_key=self.api_key)
        model = genai.GenerativeModel(self.model_name)
        response = model.generate_content(prompt)
        if hasattr(response, "text") and response.text:
            return response.text
        if getattr(response, "candidates", None):
            parts: List[str] = []
            for candidate in response.candidates:
                content = getattr(candidate, "content", None)
                if not content:
                    continue
                for part in getattr(content, "parts", []):
                    text = getattr(part, "text", None)
                    if text:
                        parts.append(text)
            if parts:
                return "\n".join(parts)
        return ""

    @staticmethod
    def _coerce_narrative(raw_text: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"summary": "", "highlights": [], "risks": []}
        if not raw_text:
            return payload

        candidate = raw_text.strip()
        fence_match = re.search(r"```(?:json)?\s*(.*?)```", candidate, re.DOTALL | re.IGNORECASE)
        if fence_match:
            candidate = fence_match.group(1).strip()

        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            parsed = None

        if isinstance(parsed, dict):
            payload["summary"] = str(parsed.get("summary") or "").strip()
            payload["highlights"] = _clean_entries(parsed.get("highlights"))
            payload["risks"] = _clean_entries(parsed.get("risks"))
            return payload

        lines = [line.strip() for line in candidate.splitlines() if line.strip()]
        payload["summary"] = lines[0] if lines else ""
        for line in lines[1:]:
            normalized = line.lstrip("-* ").strip()
            if not normalized:
                continue
            bucket = "risks" if "risk" in normalized.lower() else "highlights"
            if len(payload[bucket]) < 3:
                payload[bucket].append(normalized)
        return payload


def _clean_entries(values: Any) -> List[str]:
    if not isinstance(values, list):
        return []
    entries = [
        str(item).strip()
        for item in values
        if isinstance(item, (str, int, float)) and str(item).strip()
    ]
    return entries[:3]
