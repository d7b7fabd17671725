"""Tests for ballerina_mcp.prompts module."""

from ballerina_mcp.prompts import BUILT_IN_PROMPTS, PromptHandler
from ballerina_mcp.protocol import PromptArgument, PromptTemplate


class TestPromptHandler:
    def test_built_in_prompts_loaded(self):
        handler = PromptHandler()
        ids = [p["id"] for p in handler.list()]
        assert ids == ["ballerina.project.init", "ballerina.error.diagnose"]

    def test_custom_prompt_set(self):
        handler = PromptHandler(prompts=[])
        assert handler.list() == []

    def test_add_prompt(self):
        handler = PromptHandler(prompts=[])
        handler.add_prompt(PromptTemplate(id="greet", name="Greet", template="Hi {who}"))
        assert handler.get("greet").result["template"] == "Hi {who}"

    def test_get(self):
        result = PromptHandler().get("ballerina.error.diagnose")
        assert result.success is True
        assert result.result["name"] == "Diagnose Build Error"

    def test_get_missing(self):
        result = PromptHandler().get("nope")
        assert result.success is False
        assert result.error == "Prompt not found: nope"

    def test_render_with_default(self):
        result = PromptHandler().render("ballerina.project.init", {"projectName": "orders"})
        assert result.success is True
        assert result.result["text"] == "Create a new Ballerina service project named orders"

    def test_render_missing_required(self):
        result = PromptHandler().render("ballerina.error.diagnose", {})
        assert result.success is False
        assert result.error.startswith("Invalid arguments:")
        assert "error" in result.error

    def test_render_unfilled_placeholder_kept(self):
        result = PromptHandler().render("ballerina.error.diagnose", {"error": "undefined symbol"})
        assert result.result["text"] == "Help me fix this Ballerina error: undefined symbol in file {file}"

    def test_render_repeated_placeholder(self):
        handler = PromptHandler(prompts=[
            PromptTemplate(
                id="twice",
                name="Twice",
                template="{x} and {x}",
                arguments=[PromptArgument("x", required=True)],
            )
        ])
        assert handler.render("twice", {"x": 1}).result["text"] == "1 and 1"

    def test_render_missing_prompt(self):
        assert PromptHandler().render("nope").error == "Prompt not found: nope"

    def test_built_ins_not_shared(self):
        handler = PromptHandler()
        handler.prompts.clear()
        assert len(BUILT_IN_PROMPTS) == 2
