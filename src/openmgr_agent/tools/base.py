"""
Base classes for tools.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from ..errors import ToolValidationError
from ..llm.base import ToolDefinition

if TYPE_CHECKING:
    from ..agent.cancellation import AbortSignal
    from ..agent.subagents import SubagentCoordinator


@dataclass
class ToolOutput:
    """What a tool handler returns; the executor turns it into a ToolResult."""

    output: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolContext:
    """Per-call execution context handed to every tool handler."""

    working_directory: str
    signal: "AbortSignal"
    timeout: float | None = None
    session_id: str | None = None
    emit_event: Callable[[Any], None] | None = None
    subagents: "SubagentCoordinator | None" = None


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    param_type: str  # string, integer, number, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


def _matches_type(value: Any, param_type: str) -> bool:
    expected = _JSON_TYPES.get(param_type)
    if expected is None:
        return True
    # bool is an int subclass but not a JSON number
    if isinstance(value, bool) and param_type != "boolean":
        return False
    return isinstance(value, expected)


ToolHandler = Callable[..., Coroutine[Any, Any, ToolOutput | str]]


@dataclass
class Tool:
    """
    A named capability the model can invoke.

    The handler is called as ``handler(ctx, **arguments)`` after the
    arguments have been checked against ``parameters``.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    handler: ToolHandler
    timeout: float | None = None
    # Reads a per-call timeout in seconds from the raw arguments, or None
    timeout_resolver: Callable[[dict[str, Any]], float | None] | None = None

    def get_parameters_schema(self) -> dict[str, Any]:
        """Convert parameters to JSON Schema format."""
        properties = {}
        required = []

        for param in self.parameters:
            prop = {
                "type": param.param_type,
                "description": param.description,
            }
            if param.enum:
                prop["enum"] = param.enum
            if param.default is not None:
                prop["default"] = param.default

            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    def resolve_timeout(self, arguments: dict[str, Any]) -> float | None:
        """Seconds this call may run, or None to leave it to the executor."""
        if self.timeout_resolver is not None and isinstance(arguments, dict):
            requested = self.timeout_resolver(arguments)
            if requested:
                return requested
        return self.timeout

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.get_parameters_schema(),
        )

    def validate_arguments(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Check arguments against the parameter list.

        Returns the keyword arguments for the handler with defaults filled
        in. Unknown keys are dropped. Raises ToolValidationError.
        """
        if not isinstance(arguments, dict):
            raise ToolValidationError(f"Arguments for {self.name} must be an object")

        validated: dict[str, Any] = {}
        for param in self.parameters:
            if param.name not in arguments or arguments[param.name] is None:
                if param.required:
                    raise ToolValidationError(f"Missing required parameter: {param.name}")
                if param.default is not None:
                    validated[param.name] = param.default
                continue

            value = arguments[param.name]
            if not _matches_type(value, param.param_type):
                raise ToolValidationError(
                    f"Parameter {param.name} must be of type {param.param_type}, "
                    f"got {type(value).__name__}"
                )
            if param.enum and value not in param.enum:
                raise ToolValidationError(
                    f"Parameter {param.name} must be one of: {', '.join(param.enum)}"
                )
            validated[param.name] = value

        return validated

    async def execute(self, arguments: dict[str, Any], ctx: ToolContext) -> ToolOutput:
        """Validate arguments and run the handler."""
        kwargs = self.validate_arguments(arguments)
        result = await self.handler(ctx, **kwargs)
        if isinstance(result, str):
            return ToolOutput(output=result)
        return result
