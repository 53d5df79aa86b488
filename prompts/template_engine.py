"""Prompt templates with {{variable}} substitution and {{include:file}} directives."""

import os
import re
from datetime import datetime, timezone

from agent.exceptions import PromptTemplateError

PROMPTS_DIR = os.path.dirname(os.path.abspath(__file__))

SYSTEM_TEMPLATE = "chat.system.md"
FINAL_TEMPLATE = "chat.final.md"

_INCLUDE = re.compile(r"\{\{include:([^}]+)\}\}")
_VARIABLE = re.compile(r"\{\{([a-z_][a-z0-9_]*)\}\}")


class PromptLibrary:
    """Renders the chat prompts of one profile (`prompts/<profile>/`)."""

    def __init__(self, profile: str = "default", prompts_dir: str = PROMPTS_DIR):
        self.base_dir = os.path.join(prompts_dir, profile)
        if not os.path.isdir(self.base_dir):
            raise PromptTemplateError(f"Prompts directory not found: {self.base_dir}")

    def render(self, template_name: str, variables: dict) -> str:
        """Load a template, resolve includes, then substitute variables."""
        template = self._resolve_includes(self._read(template_name), depth=0)

        def substitute(match):
            key = match.group(1)
            if key not in variables:
                raise PromptTemplateError(f"{template_name}: no value for '{{{{{key}}}}}'")
            return str(variables[key])

        return _VARIABLE.sub(substitute, template)

    def system_prompt(self, tool_names: list[str], schema_prefix: str = "", max_calls_per_tool: int = 3) -> str:
        """The prompt sent on every loop iteration."""
        tools = "\n".join(f"- `{name}`" for name in tool_names) or "- (none)"
        return self.render(SYSTEM_TEMPLATE, {
            "current_time": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC"),
            "tool_list": tools,
            "schema_prefix": schema_prefix or "(no prefix)",
            "max_calls_per_tool": max_calls_per_tool,
        })

    def final_prompt(self, system_prompt: str) -> str:
        """The system prompt for the streamed final answer."""
        return system_prompt + "\n\n" + self.render(FINAL_TEMPLATE, {})

    def _read(self, template_name: str) -> str:
        path = os.path.join(self.base_dir, template_name)
        if not os.path.exists(path):
            raise PromptTemplateError(f"Template not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def _resolve_includes(self, template: str, depth: int) -> str:
        if depth > 10:
            raise PromptTemplateError("Include depth exceeded 10 (circular include?)")
        return _INCLUDE.sub(
            lambda m: self._resolve_includes(self._read(m.group(1).strip()), depth + 1),
            template,
        )
