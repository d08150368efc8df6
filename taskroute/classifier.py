"""
Rule-based local task classifier.

Maps a free-text utterance to a TaskType with a confidence score and the
parameters an executor needs. Deterministic and explainable: every point
of confidence comes from a named signal.

Confidence is built from four parts:
- lexical strength: exact keyword hits beat inflected ("fuzzy") hits,
  extra distinct hits add a little, all scaled by the rule's weight
- context signal: the rule's context pattern appears in the input
- parameter completeness: share of the rule's required parameters found
- conflict penalty: other rules whose keywords also matched
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from .normalize import collapse_whitespace, split_instruction
from .types import ClassificationResult, ProcessingRoute, TaskComplexity, TaskType

logger = logging.getLogger(__name__)

# Scoring weights
EXACT_HIT = 0.40
FUZZY_HIT = 0.30
EXTRA_HIT = 0.05
MAX_EXTRA_HITS = 3
CONTEXT_BONUS = 0.15
PARAMETER_BONUS = 0.25
CONFLICT_PENALTY = 0.10
MAX_CONFLICT_PENALTY = 0.20

# Suffixes accepted for a fuzzy keyword hit ("copying", "summarized")
INFLECTIONS = ("s", "es", "d", "ed", "ing")

# Punctuation stripped from token edges. "/" and "~" are kept so a path
# stays one token and its segments never count as keywords.
_EDGE_PUNCTUATION = ".,;:!?()[]{}\"'`“”‘’"

COMMON_APPS = (
    "safari", "chrome", "firefox", "mail", "calendar", "notes", "finder",
    "terminal", "xcode", "vscode", "photoshop", "illustrator", "sketch",
    "figma", "slack", "discord", "spotify", "music", "photos", "preview",
    "textedit", "pages", "numbers", "keynote", "system preferences",
    "system settings", "activity monitor", "zoom", "messages", "reminders",
)  # fmt: skip

# Base seconds per task type, multiplied by complexity
BASE_DURATION: dict[TaskType, float] = {
    TaskType.SYSTEM_QUERY: 0.5,
    TaskType.CALCULATION: 0.5,
    TaskType.HELP: 0.5,
    TaskType.FILE_OPERATION: 1.0,
    TaskType.APP_CONTROL: 1.0,
    TaskType.SETTINGS: 1.0,
    TaskType.TEXT_PROCESSING: 2.0,
    TaskType.WEB_QUERY: 2.0,
    TaskType.AUTOMATION: 5.0,
    TaskType.UNKNOWN: 1.0,
}


def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


_FILE_TOKEN = _compile(r"(?:^|\s)(?:~?/[^\s]+|[\w-]+\.[a-z0-9]{1,5})(?=\s|$)")
_APP_NAMES = _compile(r"\b(" + "|".join(re.escape(app) for app in COMMON_APPS) + r")\b")

# Two numbers joined by an arithmetic operator. Dates, times, versions and
# path segments ("2024-05-01", "10:30-11:00", "v1.2-3") do not count.
_ARITHMETIC_OPERATOR = r"(?:[-+*/x×÷^]|plus|minus|times|divided by)"
_ARITHMETIC = _compile(
    r"(?<![\w.:/])(?<!\d-)\d+(?:\.\d+)?\s*" + _ARITHMETIC_OPERATOR + r"\s*\(?-?\d+(?:\.\d+)?(?![\w:/]|[.-]\d)"
)

# Generic extractors, applied to every input after the type-specific ones
GENERIC_EXTRACTORS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("path", _compile(r"(?:^|\s)((?:~|\.{1,2})?/[^\s\"']+)")),
    ("quoted", _compile(r"[\"“]([^\"”]+)[\"”]")),
    ("email", _compile(r"\b([\w.+-]+@[\w-]+(?:\.[\w-]+)+)\b")),
    ("date", _compile(r"\b(\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2})?)?)\b")),
    (
        "quantity",
        _compile(r"\b(\d+(?:\.\d+)?\s?(?:%|percent|gb|mb|kb|tb|bytes|ms|seconds|minutes|hours|days))"),
    ),
)


@dataclass(frozen=True)
class ClassificationRule:
    """Keywords, scoring inputs and extractors for one task type."""

    task_type: TaskType
    keywords: tuple[str, ...]
    weight: float = 1.0
    complexity: TaskComplexity = TaskComplexity.SIMPLE
    requires_confirmation: bool = False
    context: re.Pattern[str] | None = None
    # Matches the rule even when no keyword does, scored like an exact hit
    trigger: re.Pattern[str] | None = None
    extractors: tuple[tuple[str, re.Pattern[str]], ...] = ()
    # Each group is satisfied by any one of its parameter names
    required: tuple[tuple[str, ...], ...] = ()
    phrases: tuple[re.Pattern[str], ...] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "phrases",
            tuple(
                re.compile(r"\b" + re.escape(keyword) + r"\b")
                for keyword in self.keywords
                if " " in keyword
            ),
        )


DEFAULT_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        task_type=TaskType.FILE_OPERATION,
        keywords=("copy", "move", "delete", "rename", "organize", "find", "create folder", "mkdir", "trash"),
        weight=1.2,
        requires_confirmation=True,
        context=_FILE_TOKEN,
        extractors=(
            ("action", _compile(r"\b(copy|move|delete|rename|organize|find|mkdir|trash|create folder)")),
            (
                "source",
                _compile(
                    r"\b(?:copy|move|rename|delete|trash|organize)\s+(?:the\s+)?(?:file\s+|folder\s+)?"
                    r"[\"']?([^\s\"']+)"
                ),
            ),
            ("destination", _compile(r"\b(?:to|into|onto)\s+(?:the\s+)?[\"']?([^\s\"']+)")),
            ("filename", _compile(r"\b(?:create|find)\s+(?:file\s+|folder\s+)?[\"']?([^\s\"']+\.[a-z0-9]+)")),
            ("extension", _compile(r"\bfind\b.*?\.([a-z0-9]{1,5})\b")),
            ("directory", _compile(r"\b(?:in|from)\s+[\"']?([^\s\"']+)")),
        ),
        required=(("source", "filename", "path", "quoted"),),
    ),
    ClassificationRule(
        task_type=TaskType.SYSTEM_QUERY,
        keywords=(
            "battery", "storage", "memory", "disk space", "cpu", "network",
            "wifi", "system info", "running apps", "uptime",
        ),  # fmt: skip
        weight=1.1,
        context=_compile(r"^(?:what|whats|how|is|are|show|check|tell|get)\b|\?"),
        extractors=(
            ("query_type", _compile(r"\b(battery|storage|memory|disk|cpu|network|wifi|uptime|system)\b")),
            ("unit", _compile(r"\b(percentage|percent|gb|mb|kb|bytes)\b")),
        ),
        required=(("query_type",),),
    ),
    ClassificationRule(
        task_type=TaskType.APP_CONTROL,
        keywords=("open", "launch", "start", "close", "quit", "switch to", "activate", "minimize", "maximize"),
        context=_APP_NAMES,
        extractors=(
            ("action", _compile(r"\b(open|launch|start|close|quit|switch to|activate|minimize|maximize)\b")),
            ("app_name", _APP_NAMES),
            (
                "app_name",
                _compile(r"\b(?:open|launch|start|close|quit|switch to|activate)\s+(?:the\s+)?([^\s,.;!?]+)"),
            ),
        ),
        required=(("app_name",),),
    ),
    ClassificationRule(
        task_type=TaskType.CALCULATION,
        keywords=(
            "calculate", "compute", "math", "add", "subtract", "multiply",
            "divide", "percent of", "convert units", "sum",
        ),  # fmt: skip
        context=_compile(r"\d\s*(?:[-+*/x^%]|plus|minus|times|divided by)\s*\d|\d+(?:\.\d+)?"),
        trigger=_ARITHMETIC,
        extractors=(
            ("expression", _compile(r"\b(?:calculate|compute)\s+(.+)")),
            (
                "expression",
                _compile(
                    r"(\(?\d+(?:\.\d+)?(?:\s*(?:%|" + _ARITHMETIC_OPERATOR + r")\s*\(?-?\d+(?:\.\d+)?\)?)+)"
                ),
            ),
            ("operation", _compile(r"\b(add|subtract|multiply|divide|percent|convert|sum)")),
            ("numbers", _compile(r"(\d+(?:\.\d+)?)")),
        ),
        required=(("expression",),),
    ),
    ClassificationRule(
        task_type=TaskType.SETTINGS,
        keywords=(
            "settings", "preferences", "configure", "setup", "change",
            "adjust", "volume", "brightness", "dark mode", "turn on", "turn off",
        ),  # fmt: skip
        context=_compile(r"\b(volume|brightness|theme|dark mode|language|notifications|wallpaper)\b"),
        extractors=(
            ("setting", _compile(r"\b(volume|brightness|theme|dark mode|language|notifications|wallpaper)\b")),
            ("value", _compile(r"\b(?:to|at)\s+(\d+%?|\w+)")),
        ),
        required=(("setting",),),
    ),
    ClassificationRule(
        task_type=TaskType.TEXT_PROCESSING,
        keywords=(
            "summarize", "translate", "format", "rewrite", "proofread",
            "extract", "analyze", "count words", "spell check", "paraphrase",
        ),  # fmt: skip
        weight=0.9,
        complexity=TaskComplexity.MODERATE,
        extractors=(
            (
                "action",
                _compile(r"\b(summarize|translate|format|rewrite|proofread|extract|analyze|count|spell check|paraphrase)"),
            ),
            ("language", _compile(r"\b(?:to|into)\s+(english|spanish|french|german|italian|portuguese|chinese|japanese|korean)\b")),
            ("format", _compile(r"\b(?:to|as)\s+(pdf|docx|txt|html|markdown|json|csv)\b")),
        ),
        required=(("action",), ("text",)),
    ),
    ClassificationRule(
        task_type=TaskType.WEB_QUERY,
        keywords=("search", "google", "browse", "website", "url", "bookmark", "web", "look up"),
        weight=0.8,
        context=_compile(r"(https?://\S+|www\.\S+)"),
        extractors=(
            ("query", _compile(r"\b(?:search|google|look up)\s+(?:the web\s+)?(?:for\s+)?(.+)")),
            ("url", _compile(r"(https?://[^\s]+|www\.[^\s]+|\b[a-z0-9-]+\.(?:com|org|net|io|dev|edu|gov)\b)")),
            ("action", _compile(r"\b(search|browse|bookmark|open|look up)\b")),
        ),
        required=(("query", "url"),),
    ),
    ClassificationRule(
        task_type=TaskType.AUTOMATION,
        keywords=("workflow", "automate", "schedule", "repeat", "batch", "script", "macro", "every day"),
        weight=0.9,
        complexity=TaskComplexity.COMPLEX,
        requires_confirmation=True,
        context=_compile(r"\b(daily|weekly|monthly|hourly|every\s+\w+)\b"),
        extractors=(
            ("action", _compile(r"\b(create|run|schedule|automate|repeat)\b")),
            ("frequency", _compile(r"\b(daily|weekly|monthly|hourly|every\s+\d*\s*\w+)\b")),
        ),
        required=(("action",),),
    ),
    ClassificationRule(
        task_type=TaskType.HELP,
        keywords=("help", "how to", "tutorial", "guide", "explain", "what is", "show me", "what can you do"),
        weight=0.7,
        context=_compile(r"\b(me|with|about)\b|\?"),
        extractors=(
            ("topic", _compile(r"\b(?:help with|help me with|how to|explain|what is|show me)\s+(.+)")),
        ),
    ),
)


def tokenize(head: str) -> list[str]:
    """Whitespace tokens with edge punctuation removed."""
    tokens = (token.strip(_EDGE_PUNCTUATION) for token in head.split())
    return [token for token in tokens if token]


@dataclass
class _RuleMatch:
    rule: ClassificationRule
    exact: list[str] = field(default_factory=list)
    fuzzy: list[str] = field(default_factory=list)
    triggered: bool = False

    @property
    def matched(self) -> bool:
        return bool(self.exact or self.fuzzy) or self.triggered

    @property
    def distinct_hits(self) -> int:
        return max(len(set(self.exact) | set(self.fuzzy)), 1)


class LocalClassifier:
    """
    Deterministic keyword-and-pattern classifier.

    Rules are evaluated in order and the first rule whose keywords match
    the instruction head decides the task type. The classifier is pure:
    it holds no per-request state and never raises for any input.
    """

    def __init__(
        self,
        rules: tuple[ClassificationRule, ...] = DEFAULT_RULES,
        hybrid_threshold: float = 0.70,
    ):
        self.rules = rules
        self.hybrid_threshold = hybrid_threshold

    def classify(self, text: str) -> ClassificationResult:
        """
        Classify an utterance.

        Args:
            text: Raw user input

        Returns:
            ClassificationResult; `unknown` with confidence 0.0 when no
            rule matches
        """
        try:
            return self._classify(text)
        except Exception as e:
            # A classifier bug must never take down routing
            logger.exception(f"Classification failed, treating input as unknown: {e}")
            return ClassificationResult.unknown()

    def _classify(self, text: str) -> ClassificationResult:
        original = collapse_whitespace(text)
        head, payload = split_instruction(original)
        head_lower = head.lower()
        tokens = tokenize(head_lower)

        matches = [self._match_rule(rule, tokens, head_lower) for rule in self.rules]
        matched = [m for m in matches if m.matched]
        if not matched:
            logger.debug("No rule matched, classifying as unknown")
            return ClassificationResult.unknown()

        best = matched[0]
        rule = best.rule
        conflicts = [m.rule.task_type for m in matched[1:]]

        parameters = self.extract_parameters(rule, head, original, payload)
        signals = [f"keyword:{k}" for k in best.exact] + [f"fuzzy:{k}" for k in best.fuzzy]
        if best.triggered:
            signals.append("trigger")

        lexical = EXACT_HIT if best.exact or best.triggered else FUZZY_HIT
        lexical += EXTRA_HIT * min(best.distinct_hits - 1, MAX_EXTRA_HITS)
        score = lexical * rule.weight

        if self._has_context(rule, original, payload):
            score += CONTEXT_BONUS
            signals.append("context")

        required = self._required_groups(rule, parameters)
        if required:
            resolved = sum(1 for group in required if any(name in parameters for name in group))
            completeness = resolved / len(required)
        else:
            completeness = 1.0
        score += PARAMETER_BONUS * completeness
        if completeness < 1.0:
            signals.append(f"missing_parameters:{completeness:.2f}")

        if conflicts:
            score -= min(CONFLICT_PENALTY * len(conflicts), MAX_CONFLICT_PENALTY)
            signals.extend(f"conflict:{task_type.value}" for task_type in conflicts)

        confidence = round(min(1.0, max(0.0, score)), 4)

        if confidence >= self.hybrid_threshold:
            suggested_route = rule.complexity.default_route
        else:
            suggested_route = ProcessingRoute.REMOTE

        logger.debug(
            f"Classified as {rule.task_type.value} ({confidence:.2f}), signals={signals}"
        )

        return ClassificationResult(
            task_type=rule.task_type,
            confidence=confidence,
            parameters=parameters,
            complexity=rule.complexity,
            suggested_route=suggested_route,
            requires_confirmation=rule.requires_confirmation,
            estimated_duration=estimate_duration(rule.task_type, rule.complexity),
            signals=tuple(signals),
        )

    def _match_rule(self, rule: ClassificationRule, tokens: list[str], head: str) -> _RuleMatch:
        match = _RuleMatch(rule)
        token_set = set(tokens)
        for keyword in rule.keywords:
            if " " in keyword:
                continue
            if keyword in token_set:
                match.exact.append(keyword)
            elif any(_is_inflection(token, keyword) for token in tokens):
                match.fuzzy.append(keyword)
        for phrase, keyword in zip(rule.phrases, (k for k in rule.keywords if " " in k)):
            if phrase.search(head):
                match.exact.append(keyword)
        if rule.trigger is not None and rule.trigger.search(head):
            match.triggered = True
        return match

    def _has_context(self, rule: ClassificationRule, text: str, payload: str) -> bool:
        if rule.task_type is TaskType.TEXT_PROCESSING:
            return bool(payload)
        if rule.context is None:
            return False
        return bool(rule.context.search(text))

    def _required_groups(
        self, rule: ClassificationRule, parameters: dict[str, str]
    ) -> tuple[tuple[str, ...], ...]:
        # Copy, move and rename also need to know where things go
        if rule.task_type is TaskType.FILE_OPERATION and parameters.get("action", "").lower() in (
            "copy",
            "move",
            "rename",
        ):
            return rule.required + (("destination",),)
        return rule.required

    def extract_parameters(
        self, rule: ClassificationRule, head: str, text: str, payload: str = ""
    ) -> dict[str, str]:
        """
        Pull the rule's parameters out of the input.

        Type-specific extractors read the instruction head, generic ones
        read the whole text. The first match wins for each name. Case is
        preserved from the input.
        """
        parameters: dict[str, str] = {}
        for name, pattern in rule.extractors:
            if name in parameters:
                continue
            found = pattern.search(head)
            if found:
                value = found.group(1).strip().rstrip(".,;!?")
                if value:
                    parameters[name] = value

        for name, pattern in GENERIC_EXTRACTORS:
            if name in parameters:
                continue
            found = pattern.search(text)
            if found:
                parameters[name] = found.group(1).strip()

        if payload:
            parameters["text"] = payload
        return parameters

    def quick_classify(self, text: str) -> ClassificationResult | None:
        """
        Shortcut for obvious system and app requests.

        Returns:
            A high-confidence result for battery/storage questions and
            "open X"/"launch X" commands, None for everything else
        """
        original = collapse_whitespace(text)
        lowered = original.lower()

        for query_type in ("battery", "storage"):
            if query_type in lowered:
                return ClassificationResult(
                    task_type=TaskType.SYSTEM_QUERY,
                    confidence=0.9,
                    parameters={"query_type": query_type},
                    complexity=TaskComplexity.SIMPLE,
                    suggested_route=ProcessingRoute.LOCAL,
                    estimated_duration=estimate_duration(TaskType.SYSTEM_QUERY, TaskComplexity.SIMPLE),
                    signals=(f"quick:{query_type}",),
                )

        for verb in ("open ", "launch "):
            if lowered.startswith(verb) and len(lowered) > len(verb):
                return ClassificationResult(
                    task_type=TaskType.APP_CONTROL,
                    confidence=0.85,
                    parameters={"app_name": original[len(verb) :].strip(), "action": "open"},
                    complexity=TaskComplexity.SIMPLE,
                    suggested_route=ProcessingRoute.LOCAL,
                    estimated_duration=estimate_duration(TaskType.APP_CONTROL, TaskComplexity.SIMPLE),
                    signals=(f"quick:{verb.strip()}",),
                )

        return None


def _is_inflection(token: str, keyword: str) -> bool:
    return token.startswith(keyword) and token[len(keyword) :] in INFLECTIONS


def estimate_duration(task_type: TaskType, complexity: TaskComplexity) -> float:
    """Expected execution time in seconds."""
    return BASE_DURATION.get(task_type, 1.0) * complexity.duration_multiplier


__all__ = [
    "BASE_DURATION",
    "COMMON_APPS",
    "ClassificationRule",
    "DEFAULT_RULES",
    "LocalClassifier",
    "estimate_duration",
    "tokenize",
]
