"""
Token cost accounting for remote calls.

Prices are per 1M tokens. Unknown models fall back to family matching and
then to the default model's pricing.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class CostComponent(Enum):
    """Remote operations that incur token costs."""

    CLASSIFY = "classify"
    EXECUTE = "execute"


# Input / output dollars per 1M tokens
MODEL_COSTS: dict[str, dict[str, float]] = {
    "claude-sonnet-4-20250514": {"input": 3.0, "output": 15.0},
    "claude-haiku-4-5-20251001": {"input": 1.0, "output": 5.0},
    "claude-3-haiku-20240307": {"input": 0.25, "output": 1.25},
    "sonnet": {"input": 3.0, "output": 15.0},
    "haiku": {"input": 1.0, "output": 5.0},
    "haiku-3": {"input": 0.25, "output": 1.25},
    "gpt-4o": {"input": 2.5, "output": 10.0},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
}

DEFAULT_MODEL_FOR_COSTS = "haiku"

# Rough characters per token for English text
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Cheap token estimate used for budgeting before a call is made."""
    return max(1, len(text) // CHARS_PER_TOKEN)


def get_model_costs(model: str) -> dict[str, float]:
    """
    Get cost rates for a model.

    Args:
        model: Model name or alias

    Returns:
        Dict with 'input' and 'output' costs per 1M tokens
    """
    if model in MODEL_COSTS:
        return MODEL_COSTS[model]

    # "claude-sonnet-x" matches "sonnet"
    model_lower = model.lower()
    for key, costs in MODEL_COSTS.items():
        if key in model_lower or model_lower in key:
            return costs

    return MODEL_COSTS[DEFAULT_MODEL_FOR_COSTS]


def estimate_call_cost(input_tokens: int, output_tokens: int, model: str) -> float:
    """Dollar cost of a single call."""
    costs = get_model_costs(model)
    return (input_tokens / 1_000_000) * costs["input"] + (output_tokens / 1_000_000) * costs["output"]


@dataclass
class TokenUsage:
    """Token usage for a single remote call."""

    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    component: CostComponent = CostComponent.EXECUTE
    timestamp: float = field(default_factory=time.time)
    latency_ms: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def estimate_cost(self) -> float:
        return estimate_call_cost(self.input_tokens, self.output_tokens, self.model)


@dataclass
class BudgetAlert:
    """Alert when a spend threshold is crossed."""

    threshold_name: str
    threshold_value: float
    current_value: float
    message: str
    severity: str  # "warning", "critical"
    timestamp: float = field(default_factory=time.time)


class CostTracker:
    """
    Accumulates remote token usage and dollar cost.

    Emits one BudgetAlert per threshold when spend approaches or passes
    the configured dollar budget.
    """

    def __init__(self, budget_dollars: float = 5.0, warning_threshold: float = 0.8):
        self.budget_dollars = budget_dollars
        self.warning_threshold = warning_threshold

        self._lock = threading.Lock()
        self._usage: list[TokenUsage] = []
        self._alerts: list[BudgetAlert] = []
        self._alert_callbacks: list[Callable[[BudgetAlert], None]] = []

    def record_usage(
        self,
        input_tokens: int,
        output_tokens: int,
        model: str,
        component: CostComponent = CostComponent.EXECUTE,
        latency_ms: float = 0.0,
    ) -> TokenUsage:
        """
        Record token usage of one remote call.

        Returns:
            TokenUsage record; its estimate_cost() is the call's cost
        """
        usage = TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=model,
            component=component,
            latency_ms=latency_ms,
        )
        with self._lock:
            self._usage.append(usage)
            alerts = self._check_budget()

        for alert in alerts:
            logger.warning(alert.message)
            for callback in self._alert_callbacks:
                callback(alert)
        return usage

    def _check_budget(self) -> list[BudgetAlert]:
        """Return alerts not raised before. Caller holds the lock."""
        if self.budget_dollars <= 0:
            return []
        total = sum(u.estimate_cost() for u in self._usage)
        fraction = total / self.budget_dollars
        if fraction >= 1.0:
            name, severity, threshold = "cost_budget", "critical", self.budget_dollars
            message = f"Cost budget exceeded: ${total:.4f} / ${self.budget_dollars:.2f}"
        elif fraction >= self.warning_threshold:
            name, severity = "cost_warning", "warning"
            threshold = self.budget_dollars * self.warning_threshold
            message = f"Approaching cost budget: ${total:.4f} / ${self.budget_dollars:.2f} ({fraction:.0%})"
        else:
            return []

        if any(a.threshold_name == name for a in self._alerts):
            return []
        alert = BudgetAlert(name, threshold, total, message, severity)
        self._alerts.append(alert)
        return [alert]

    def on_alert(self, callback: Callable[[BudgetAlert], None]) -> None:
        """Register callback for budget alerts."""
        self._alert_callbacks.append(callback)

    @property
    def alerts(self) -> list[BudgetAlert]:
        with self._lock:
            return list(self._alerts)

    @property
    def total_tokens(self) -> int:
        with self._lock:
            return sum(u.total_tokens for u in self._usage)

    @property
    def total_cost(self) -> float:
        with self._lock:
            return sum(u.estimate_cost() for u in self._usage)

    @property
    def remaining_budget(self) -> float:
        return max(0.0, self.budget_dollars - self.total_cost)

    def get_breakdown_by_model(self) -> dict[str, dict[str, Any]]:
        """Get cost breakdown by model."""
        with self._lock:
            usage = list(self._usage)

        breakdown: dict[str, dict[str, Any]] = {}
        for u in usage:
            entry = breakdown.setdefault(
                u.model, {"input_tokens": 0, "output_tokens": 0, "total_tokens": 0, "cost": 0.0, "calls": 0}
            )
            entry["input_tokens"] += u.input_tokens
            entry["output_tokens"] += u.output_tokens
            entry["total_tokens"] += u.total_tokens
            entry["cost"] += u.estimate_cost()
            entry["calls"] += 1
        return breakdown

    def get_breakdown_by_component(self) -> dict[str, dict[str, Any]]:
        """Get cost breakdown by component."""
        with self._lock:
            usage = list(self._usage)

        breakdown: dict[str, dict[str, Any]] = {}
        for component in CostComponent:
            component_usage = [u for u in usage if u.component == component]
            if component_usage:
                breakdown[component.value] = {
                    "tokens": sum(u.total_tokens for u in component_usage),
                    "cost": sum(u.estimate_cost() for u in component_usage),
                    "calls": len(component_usage),
                }
        return breakdown

    def reset(self) -> None:
        with self._lock:
            self._usage.clear()
            self._alerts.clear()


__all__ = [
    "BudgetAlert",
    "CHARS_PER_TOKEN",
    "CostComponent",
    "CostTracker",
    "MODEL_COSTS",
    "TokenUsage",
    "estimate_call_cost",
    "estimate_tokens",
    "get_model_costs",
]
