"""
MCP Prompts.

Named prompt templates with ``{argument}`` placeholders.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from .protocol import PromptArgument, PromptTemplate, ToolResult


logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


BUILT_IN_PROMPTS = [
    PromptTemplate(
        id="ballerina.project.init",
        name="Initialize Ballerina Project",
        description="Create a new Ballerina project with customization options",
        arguments=[
            PromptArgument("projectName", "Name of the project", required=True),
            PromptArgument(
                "projectType",
                "Type of project (service, library, application)",
                required=True,
                default="service",
            ),
        ],
        template="Create a new Ballerina {projectType} project named {projectName}",
    ),
    PromptTemplate(
        id="ballerina.error.diagnose",
        name="Diagnose Build Error",
        description="Help diagnose and fix Ballerina build errors",
        arguments=[
            PromptArgument("error", "The error message", required=True),
            PromptArgument("file", "The file where error occurred"),
        ],
        template="Help me fix this Ballerina error: {error} in file {file}",
    ),
]


class PromptHandler:
    """Stores prompt templates and renders them."""

    def __init__(self, prompts: Optional[List[PromptTemplate]] = None):
        self.prompts: Dict[str, PromptTemplate] = {}
        for prompt in BUILT_IN_PROMPTS if prompts is None else prompts:
            self.add_prompt(prompt)

    def add_prompt(self, prompt: PromptTemplate) -> None:
        if prompt.id in self.prompts:
            logger.warning(f"Overwriting existing prompt: {prompt.id}")
        self.prompts[prompt.id] = prompt
        logger.debug(f"Added prompt: {prompt.id}")

    def list(self) -> List[dict]:
        return [prompt.to_dict() for prompt in self.prompts.values()]

    def get(self, id: str) -> ToolResult:
        prompt = self.prompts.get(id)
        if prompt is None:
            return ToolResult.fail(f"Prompt not found: {id}")
        return ToolResult.ok(prompt.to_dict())

    def render(self, id: str, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        """
        Substitute arguments into a template.

        Defaults fill omitted arguments; a missing required argument fails.
        Placeholders without a value are left in the text as written.
        """
        prompt = self.prompts.get(id)
        if prompt is None:
            return ToolResult.fail(f"Prompt not found: {id}")

        values = dict(arguments or {})
        missing = []
        for arg in prompt.arguments:
            if arg.name in values:
                continue
            if arg.default is not None:
                values[arg.name] = arg.default
            elif arg.required:
                missing.append(f"Missing required argument: {arg.name}")

        if missing:
            return ToolResult.fail(f"Invalid arguments: {', '.join(missing)}")

        text = _PLACEHOLDER_RE.sub(
            lambda m: str(values[m.group(1)]) if values.get(m.group(1)) is not None else m.group(0),
            prompt.template,
        )
        return ToolResult.ok({"id": id, "text": text})
