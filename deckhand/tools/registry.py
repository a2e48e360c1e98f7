"""
Operation registry.

Collects every AI-callable operation and dispatches calls to it.
Each operation declares:
  - a pydantic model for its arguments (validated before the handler runs)
  - a description written like docs for a new hire
  - a risk class

Handlers raise OperationError to report validation/duplicate failures.
Anything else they raise is treated as fatal.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Type

from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import ErrorKind, OperationError

logger = logging.getLogger(__name__)

MAX_RESULT_CHARS = 4000  # Cap result text folded back into the transcript


class ToolRisk(str, Enum):
    READ = "read"            # No side effects
    WRITE = "write"          # Creates/modifies data
    EXTERNAL = "external"    # Calls external APIs


@dataclass
class Identity:
    """Who the turn is for. user_id is None until the session is linked."""
    user_id: Optional[str] = None
    anon_id: Optional[str] = None
    email: Optional[str] = None


@dataclass
class OperationContext:
    db: AsyncSession
    identity: Identity
    role: str = "owner"


@dataclass
class ToolResult:
    name: str
    success: bool
    payload: dict = field(default_factory=dict)
    error_kind: Optional[ErrorKind] = None
    error_message: str = ""

    @property
    def satisfied(self) -> bool:
        """Success, or a duplicate of something that already exists."""
        return self.success or self.error_kind == ErrorKind.DUPLICATE

    def to_text(self) -> str:
        """Rendering folded into the transcript as a tool_result turn."""
        if self.success:
            body = json.dumps(self.payload, default=str)
            if len(body) > MAX_RESULT_CHARS:
                body = body[:MAX_RESULT_CHARS - 20] + " ...[truncated]"
            return f"{self.name} succeeded: {body}"
        if self.error_kind == ErrorKind.DUPLICATE:
            return (
                f"{self.name}: already exists ({self.error_message}). "
                "This step is already satisfied. Do not call it again; move on to the next step."
            )
        if self.error_kind == ErrorKind.NOT_AVAILABLE_IN_STEP:
            return (
                f"{self.name} is not available in the current step. "
                f"{self.error_message} Use only the operations listed for this step."
            )
        if self.error_kind == ErrorKind.VALIDATION:
            return (
                f"{self.name} failed validation: {self.error_message}. "
                "Fix the arguments and call it again, or ask the user for the missing details."
            )
        return f"{self.name} failed."


Handler = Callable[[Any, OperationContext], Awaitable[dict]]

# name -> {name, description, args_model, handler, risk, category}
_operations: dict[str, dict] = {}


def operation(
    name: str,
    description: str,
    args_model: Type[BaseModel],
    risk: ToolRisk = ToolRisk.WRITE,
    category: str = "onboarding",
):
    """
    Decorator to register an AI-callable operation.

    The decorated coroutine receives the validated args model and an
    OperationContext, and returns a JSON-serializable dict.
    """

    def decorator(func: Handler):
        _operations[name] = {
            "name": name,
            "description": description,
            "args_model": args_model,
            "handler": func,
            "risk": risk.value,
            "category": category,
        }
        logger.debug("Registered operation: %s [%s/%s]", name, category, risk.value)
        return func

    return decorator


def get_operation_names() -> list[str]:
    return list(_operations)


def get_operation_risk(name: str) -> str:
    op = _operations.get(name)
    return op["risk"] if op else ToolRisk.READ.value


def schemas_for(names) -> list[dict]:
    """Schemas for the given operations, in a stable order, for the prompt."""
    _ensure_loaded()
    schemas = []
    for name in sorted(names):
        op = _operations.get(name)
        if not op:
            continue
        schemas.append({
            "name": name,
            "description": op["description"],
            "parameters": op["args_model"].model_json_schema(),
        })
    return schemas


def _format_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


async def execute(
    name: str,
    args: dict,
    identity: Identity,
    db: AsyncSession,
    role: str = "owner",
) -> ToolResult:
    """
    Validate arguments and run one operation. Never raises: every outcome is
    reported as a ToolResult with an error kind.
    """
    _ensure_loaded()
    op = _operations.get(name)
    if op is None:
        logger.warning("Unknown operation called: %s", name)
        return ToolResult(
            name=name, success=False, error_kind=ErrorKind.NOT_AVAILABLE_IN_STEP,
            error_message=f"Unknown operation '{name}'.",
        )

    try:
        parsed = op["args_model"].model_validate(args or {})
    except ValidationError as e:
        logger.info("Bad arguments for %s: %s", name, e.error_count())
        return ToolResult(
            name=name, success=False, error_kind=ErrorKind.VALIDATION,
            error_message=_format_validation_error(e),
        )

    logger.info("Operation call: %s(%s)", name, json.dumps(args, default=str)[:200])
    start = time.monotonic()
    ctx = OperationContext(db=db, identity=identity, role=role)

    try:
        payload = await op["handler"](parsed, ctx)
    except OperationError as e:
        logger.info("Operation %s: %s (%s)", name, e.kind.value, e.message)
        return ToolResult(
            name=name, success=False, payload=e.payload,
            error_kind=e.kind, error_message=e.message,
        )
    except Exception as e:
        elapsed = time.monotonic() - start
        logger.exception("Operation '%s' failed after %dms: %s", name, int(elapsed * 1000), e)
        return ToolResult(
            name=name, success=False, error_kind=ErrorKind.FATAL,
            error_message=type(e).__name__,
        )

    elapsed = time.monotonic() - start
    logger.info("Operation %s completed in %dms", name, int(elapsed * 1000))
    return ToolResult(name=name, success=True, payload=payload or {})


def _ensure_loaded() -> None:
    if not _operations:
        init_operations()


def init_operations() -> None:
    """Import operation modules to trigger registration. Called on startup, or on first use."""
    from . import profile  # noqa: F401
    from . import vessel   # noqa: F401
    from . import route    # noqa: F401

    logger.info(
        "Operations ready: %d [%s]",
        len(_operations),
        ", ".join(get_operation_names()),
    )
