"""
Tool and prompt catalog.

The catalog is the transport-independent half of the MCP server: it holds the
declared tools (name, description, pydantic input model, handler) and prompts
(name, description, seed text generator), validates arguments before a
handler runs, and turns handler results into the uniform MCP envelopes.

Usage:
    catalog = ToolCatalog()

    @catalog.tool("get-deal", "Get a specific deal by ID", DealIdInput)
    async def get_deal(params: DealIdInput, ctx: ToolContext) -> ToolResult:
        ...

    @catalog.prompt("list-all-deals", "List all deals")
    def list_all_deals() -> str:
        return "Please list all deals..."
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class NoArguments(BaseModel):
    """Input model for tools that take no arguments."""


class UnknownToolError(LookupError):
    """No tool or prompt with the requested name."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind.capitalize()} {name} not found")


class ToolValidationError(ValueError):
    """Arguments did not match the tool's input model; the handler never ran."""

    def __init__(self, tool_name: str, error: ValidationError):
        self.tool_name = tool_name
        self.errors = error.errors(include_url=False)
        details = "; ".join(
            f"{'.'.join(str(part) for part in item['loc']) or '<root>'}: {item['msg']}"
            for item in self.errors
        )
        super().__init__(f"Invalid arguments for tool {tool_name}: {details}")


@dataclass(frozen=True)
class ToolResult:
    """Outcome of a tool handler: text plus a success/error flag."""

    text: str
    is_error: bool = False

    @classmethod
    def success(cls, text: str) -> "ToolResult":
        return cls(text=text)

    @classmethod
    def success_json(cls, payload: Any) -> "ToolResult":
        return cls(text=json.dumps(payload, indent=2, default=str))

    @classmethod
    def failure(cls, message: str) -> "ToolResult":
        return cls(text=message, is_error=True)

    def to_envelope(self) -> Dict[str, Any]:
        envelope: Dict[str, Any] = {"content": [{"type": "text", "text": self.text}]}
        if self.is_error:
            envelope["isError"] = True
        return envelope


ToolHandler = Callable[[Any, Any], Awaitable[ToolResult]]


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    input_model: Type[BaseModel]
    handler: ToolHandler

    @property
    def input_schema(self) -> Dict[str, Any]:
        schema = self.input_model.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})
        return schema

    def validate(self, arguments: Optional[Dict[str, Any]]) -> BaseModel:
        try:
            return self.input_model.model_validate(arguments or {})
        except ValidationError as exc:
            raise ToolValidationError(self.name, exc) from exc


@dataclass(frozen=True)
class PromptDescriptor:
    name: str
    description: str
    generator: Callable[[], str]

    def render(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "messages": [
                {"role": "user", "content": {"type": "text", "text": self.generator()}}
            ],
        }


class ToolCatalog:
    """
    Registry of tools and prompts with argument validation and dispatch.

    Entries are registered once at import time and never change afterwards.
    """

    def __init__(self):
        """Initialize an empty catalog."""
        self._tools: Dict[str, ToolDescriptor] = {}
        self._prompts: Dict[str, PromptDescriptor] = {}

    def tool(
        self,
        name: str,
        description: str,
        input_model: Type[BaseModel] = NoArguments,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """
        Register an async handler as a tool.

        Args:
            name: Unique tool name
            description: Human-readable description
            input_model: Pydantic model describing and validating arguments

        Raises:
            ValueError: If a tool with the same name is already registered
        """
        def decorator(handler: ToolHandler) -> ToolHandler:
            if name in self._tools:
                raise ValueError(f"Tool {name} is already registered")
            self._tools[name] = ToolDescriptor(name, description, input_model, handler)
            return handler

        return decorator

    def prompt(self, name: str, description: str) -> Callable[[Callable[[], str]], Callable[[], str]]:
        """Register a zero-argument function returning a prompt's seed text."""
        def decorator(generator: Callable[[], str]) -> Callable[[], str]:
            if name in self._prompts:
                raise ValueError(f"Prompt {name} is already registered")
            self._prompts[name] = PromptDescriptor(name, description, generator)
            return generator

        return decorator

    def list_tools(self) -> List[ToolDescriptor]:
        return list(self._tools.values())

    def list_prompts(self) -> List[PromptDescriptor]:
        return list(self._prompts.values())

    def get_tool(self, name: str) -> ToolDescriptor:
        try:
            return self._tools[name]
        except KeyError:
            raise UnknownToolError("tool", name) from None

    def get_prompt(self, name: str) -> Dict[str, Any]:
        try:
            prompt = self._prompts[name]
        except KeyError:
            raise UnknownToolError("prompt", name) from None
        return prompt.render()

    async def call_tool(
        self,
        name: str,
        arguments: Optional[Dict[str, Any]],
        context: Any,
    ) -> ToolResult:
        """
        Validate arguments and run a tool.

        Args:
            name: Tool name
            arguments: Raw arguments from the client
            context: Passed to the handler as its second argument

        Returns:
            The handler's ToolResult. Exceptions escaping a handler are logged
            and reported as an error result rather than raised.

        Raises:
            UnknownToolError: If no tool has this name
            ToolValidationError: If the arguments do not match the input model
        """
        tool = self.get_tool(name)
        params = tool.validate(arguments)
        try:
            return await tool.handler(params, context)
        except Exception as exc:
            logger.exception("Tool %s failed", name)
            return ToolResult.failure(f"Error executing tool {name}: {exc}")
