"""
Local executors.

A local executor performs one task type on the device. Executors are
registered per TaskType in an ExecutorRegistry, which is frozen once the
router is built so routing decisions never race with registration.
"""

from __future__ import annotations

import ast
import asyncio
import logging
import operator
import re
import time
from collections.abc import Mapping
from typing import Protocol, runtime_checkable

import psutil

from .types import TaskResult, TaskType

logger = logging.getLogger(__name__)


@runtime_checkable
class LocalExecutor(Protocol):
    """Something that can run a classified task on the device."""

    async def execute(self, parameters: Mapping[str, str]) -> TaskResult: ...


class ExecutorRegistry:
    """
    Maps task types to local executors.

    Example:
        registry = ExecutorRegistry.with_builtins()
        registry.register(TaskType.FILE_OPERATION, FinderExecutor())
        registry.freeze()
    """

    def __init__(self, executors: Mapping[TaskType, LocalExecutor] | None = None):
        self._executors: dict[TaskType, LocalExecutor] = {}
        self._frozen = False
        for task_type, executor in (executors or {}).items():
            self.register(task_type, executor)

    @classmethod
    def with_builtins(cls) -> ExecutorRegistry:
        """Registry preloaded with the help, calculation and system executors."""
        return cls(
            {
                TaskType.HELP: HelpExecutor(),
                TaskType.CALCULATION: CalculationExecutor(),
                TaskType.SYSTEM_QUERY: SystemQueryExecutor(),
            }
        )

    def register(self, task_type: TaskType, executor: LocalExecutor) -> None:
        """
        Register an executor for a task type, replacing any previous one.

        Raises:
            RuntimeError: If the registry is frozen
            ValueError: If task_type is UNKNOWN
        """
        if self._frozen:
            raise RuntimeError("Executor registry is frozen")
        if task_type is TaskType.UNKNOWN:
            raise ValueError("Cannot register an executor for unknown tasks")
        self._executors[task_type] = executor

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, task_type: TaskType) -> LocalExecutor | None:
        return self._executors.get(task_type)

    def __contains__(self, task_type: object) -> bool:
        return task_type in self._executors

    @property
    def task_types(self) -> list[TaskType]:
        return list(self._executors)


# Built-in executors


HELP_TEXT = """I'm your assistant. I can help with:
- File operations: copy, move, rename and organize files
- System information: battery, storage, memory, CPU and network status
- App control: open, close and switch between applications
- Text processing: summarize, translate and rewrite text
- Calculations: arithmetic, percentages and unit conversions
- Web search: look things up and open websites
- Automation: schedule and repeat tasks
- Settings: adjust volume, brightness and other preferences

Just tell me what you'd like to do."""

HELP_TOPICS = {
    "file": "Try \"copy report.pdf to Desktop\" or \"move notes.txt into Documents\".",
    "system": "Ask \"what's my battery percentage\" or \"how much storage is left\".",
    "app": "Say \"open Safari\" or \"quit Spotify\".",
    "calc": "Say \"calculate 15% of 240\" or \"calculate (3 + 4) * 2\".",
    "math": "Say \"calculate 15% of 240\" or \"calculate (3 + 4) * 2\".",
    "setting": "Say \"set volume to 50%\" or \"turn on dark mode\".",
    "text": "Say \"summarize this: <your text>\" or \"translate to French: <your text>\".",
}


class HelpExecutor:
    """Answers help requests from static text."""

    async def execute(self, parameters: Mapping[str, str]) -> TaskResult:
        start = time.perf_counter()
        topic = parameters.get("topic", "").lower()
        output = HELP_TEXT
        for key, hint in HELP_TOPICS.items():
            if key in topic:
                output = f"{hint}\n\n{HELP_TEXT}"
                break
        return TaskResult(
            success=True,
            output=output,
            confidence=1.0,
            execution_time_ms=(time.perf_counter() - start) * 1000,
            follow_up_suggestions=("what's my battery percentage", "calculate 2 + 2"),
        )


_BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPERATORS = {ast.UAdd: operator.pos, ast.USub: operator.neg}
MAX_EXPONENT = 100

# Spoken operators rewritten to symbols before parsing
_WORD_OPERATORS = (
    (re.compile(r"(\d+(?:\.\d+)?)\s*(?:%|percent)\s+of\b", re.IGNORECASE), r"(\1/100)*"),
    (re.compile(r"\bdivided by\b", re.IGNORECASE), "/"),
    (re.compile(r"\bplus\b", re.IGNORECASE), "+"),
    (re.compile(r"\bminus\b", re.IGNORECASE), "-"),
    (re.compile(r"\b(?:times|multiplied by)\b", re.IGNORECASE), "*"),
    (re.compile(r"(?<=\d)\s*[x×]\s*(?=\d)"), "*"),
    (re.compile(r"÷"), "/"),
    (re.compile(r"\^"), "**"),
)


class CalculationExecutor:
    """Evaluates arithmetic without eval(): only numbers and operators are allowed."""

    async def execute(self, parameters: Mapping[str, str]) -> TaskResult:
        start = time.perf_counter()
        expression = parameters.get("expression", "").strip()
        if not expression:
            return TaskResult(success=False, output="", error_message="No arithmetic expression found")

        try:
            answer = format_number(evaluate_expression(expression))
        except (ValueError, ZeroDivisionError, OverflowError) as e:
            return TaskResult(
                success=False,
                output="",
                error_message=f"Could not calculate {expression!r}: {e}",
                execution_time_ms=(time.perf_counter() - start) * 1000,
            )

        return TaskResult(
            success=True,
            output=f"{expression} = {answer}",
            confidence=1.0,
            execution_time_ms=(time.perf_counter() - start) * 1000,
        )


def evaluate_expression(expression: str) -> float:
    """
    Safely evaluate an arithmetic expression.

    Args:
        expression: e.g. "15% of 200", "3 plus 4 * 2", "2^10"

    Returns:
        Numeric result

    Raises:
        ValueError: If the expression contains anything but arithmetic
        ZeroDivisionError: On division by zero
    """
    text = expression.strip().rstrip("?=").replace(",", "")
    for pattern, replacement in _WORD_OPERATORS:
        text = pattern.sub(replacement, text)

    try:
        tree = ast.parse(text, mode="eval")
    except SyntaxError as e:
        raise ValueError("not an arithmetic expression") from e
    return _evaluate_node(tree.body)


def _evaluate_node(node: ast.AST) -> float:
    if isinstance(node, ast.Constant) and type(node.value) in (int, float):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPERATORS:
        left = _evaluate_node(node.left)
        right = _evaluate_node(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
            raise ValueError(f"exponent {right} is too large")
        return _BINARY_OPERATORS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPERATORS:
        return _UNARY_OPERATORS[type(node.op)](_evaluate_node(node.operand))
    raise ValueError(f"unsupported element {type(node).__name__}")


def format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int):
        return f"{value:,}"
    return f"{value:,.6g}" if abs(value) >= 1e-4 else repr(value)


def _format_bytes(size: float) -> str:
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size < 1024 or unit == "TB":
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


class SystemQueryExecutor:
    """Reads battery, storage, memory, CPU and network state via psutil."""

    def __init__(self, disk_path: str = "/"):
        self.disk_path = disk_path

    async def execute(self, parameters: Mapping[str, str]) -> TaskResult:
        start = time.perf_counter()
        query_type = parameters.get("query_type", "system").lower()
        handler = {
            "battery": self._battery,
            "storage": self._storage,
            "disk": self._storage,
            "memory": self._memory,
            "cpu": self._cpu,
            "network": self._network,
            "wifi": self._network,
            "uptime": self._uptime,
        }.get(query_type, self._overview)

        try:
            output = await asyncio.to_thread(handler)
        except (OSError, psutil.Error) as e:
            logger.warning(f"System query {query_type} failed: {e}")
            output = None
            error = str(e)
        else:
            error = None if output else f"No {query_type} information is available on this device"

        elapsed = (time.perf_counter() - start) * 1000
        if error:
            return TaskResult(success=False, output="", error_message=error, execution_time_ms=elapsed)
        return TaskResult(success=True, output=output, confidence=1.0, execution_time_ms=elapsed)

    def _battery(self) -> str | None:
        battery = psutil.sensors_battery()
        if battery is None:
            return None
        status = "charging" if battery.power_plugged else "on battery power"
        if battery.power_plugged or battery.secsleft in (psutil.POWER_TIME_UNLIMITED, psutil.POWER_TIME_UNKNOWN):
            remaining = ""
        else:
            hours, minutes = battery.secsleft // 3600, (battery.secsleft % 3600) // 60
            remaining = f", about {hours}h {minutes}m remaining"
        return f"Battery is at {round(battery.percent)}% ({status}{remaining})."

    def _storage(self) -> str:
        usage = psutil.disk_usage(self.disk_path)
        return (
            f"{_format_bytes(usage.free)} free of {_format_bytes(usage.total)} "
            f"({usage.percent:.0f}% used)."
        )

    def _memory(self) -> str:
        mem = psutil.virtual_memory()
        return (
            f"Memory: {_format_bytes(mem.available)} available of {_format_bytes(mem.total)} "
            f"({mem.percent:.0f}% used)."
        )

    def _cpu(self) -> str:
        percent = psutil.cpu_percent(interval=0.1)
        return f"CPU usage is {percent:.0f}% across {psutil.cpu_count()} cores."

    def _network(self) -> str:
        stats = psutil.net_if_stats()
        up = sorted(name for name, stat in stats.items() if stat.isup and name != "lo")
        if not up:
            return "No active network interfaces."
        return f"Active network interfaces: {', '.join(up)}."

    def _uptime(self) -> str:
        seconds = int(time.time() - psutil.boot_time())
        return f"Up for {seconds // 86400}d {(seconds % 86400) // 3600}h {(seconds % 3600) // 60}m."

    def _overview(self) -> str:
        return " ".join((self._cpu(), self._memory(), "Storage: " + self._storage()))


__all__ = [
    "CalculationExecutor",
    "ExecutorRegistry",
    "HELP_TEXT",
    "HelpExecutor",
    "LocalExecutor",
    "SystemQueryExecutor",
    "evaluate_expression",
    "format_number",
]
