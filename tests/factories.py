"""
Test Doubles and Data Builders

Shared by the fixtures in ``conftest.py`` and by test modules that build
model output directly.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Union

from infrastructure.llm_client import LLMResponse, ModelProvider


class FrozenClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


HANG = object()

Script = Union[str, BaseException, object]


class FakeLLMClient:
    """
    Completion client replaying a script.

    Each call consumes the next item: a string is returned as content, an
    exception is raised, ``HANG`` blocks until cancelled. The last item
    repeats once the script is exhausted.
    """

    def __init__(self, script: Optional[List[Script]] = None):
        self.script = list(script or [])
        self.calls: List[Dict[str, Any]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def complete(self, system_prompt, user_prompt, *, temperature=None, max_tokens=None):
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        index = min(len(self.calls) - 1, len(self.script) - 1)
        item = self.script[index]

        if item is HANG:
            await asyncio.sleep(3600)
        if isinstance(item, BaseException):
            raise item

        return LLMResponse(
            content=item,
            model="test-model",
            provider=ModelProvider.OPENAI,
            latency_ms=1.0,
            finish_reason="stop",
        )

    async def close(self) -> None:
        pass


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records the requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_suggestion(kind: str, index: int = 1, **overrides) -> Dict[str, Any]:
    suggestion = {
        "id": f"{kind}_{index}",
        "type": kind,
        "severity": "medium",
        "startOffset": 0,
        "endOffset": 5,
        "originalText": "Their",
        "suggestedText": "They're",
        "explanation": f"{kind} issue",
        "category": kind,
        "documentSpecificCategory": "basic-grammar-rules",
        "confidence": 0.9,
    }
    suggestion.update(overrides)
    return suggestion


def make_model_output(grammar: int = 1, style: int = 0, readability: int = 0, **metrics) -> str:
    readability_metrics = {
        "fleschScore": 62,
        "gradeLevel": 8,
        "avgSentenceLength": 14,
        "avgSyllablesPerWord": 1.4,
        "wordCount": 120,
        "sentenceCount": 8,
        "complexWordsPercent": 11,
    }
    readability_metrics.update(metrics)
    return json.dumps(
        {
            "grammarSuggestions": [make_suggestion("grammar", i) for i in range(grammar)],
            "styleSuggestions": [make_suggestion("style", i) for i in range(style)],
            "readabilitySuggestions": [
                make_suggestion("readability", i) for i in range(readability)
            ],
            "readabilityMetrics": readability_metrics,
        }
    )


