"""Default response parser.

Extracts requested tool calls from model text of the form::

    {"function_calls": [{"name": "Files.read", "parameters": {"path": "a.txt"}}]}

The JSON may appear bare or inside a fenced ```json block, surrounded by
free text. Text without a ``function_calls`` document yields no calls.
"""

import json
import re
from typing import Any, Iterator, List, Protocol

from ..schemas.domain import FunctionCall

_FENCED = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


class ResponseParseError(ValueError):
    """The response announced function calls that could not be read."""


class ResponseParser(Protocol):
    def parse(self, text: str) -> List[FunctionCall]: ...


def _candidates(text: str) -> Iterator[str]:
    for m in _FENCED.finditer(text):
        yield m.group(1)
    yield text
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        yield text[start : end + 1]


class JsonFunctionCallParser:
    """Parse ``{"function_calls": [...]}`` documents out of model text."""

    key = "function_calls"

    def parse(self, text: str) -> List[FunctionCall]:
        for candidate in _candidates(text):
            try:
                doc = json.loads(candidate)
            except ValueError:
                continue
            if isinstance(doc, dict) and self.key in doc:
                return self._calls(doc[self.key])
        if f'"{self.key}"' in text:
            raise ResponseParseError(f"Could not parse the {self.key} JSON in the response")
        return []

    def _calls(self, items: Any) -> List[FunctionCall]:
        if not isinstance(items, list):
            raise ResponseParseError(f"{self.key} must be a list")
        calls: List[FunctionCall] = []
        for item in items:
            if not isinstance(item, dict) or not isinstance(item.get("name"), str):
                raise ResponseParseError(f"Invalid function call entry: {item!r}")
            params = item.get("parameters") or {}
            if not isinstance(params, dict):
                raise ResponseParseError(f"Parameters of {item['name']} must be an object")
            calls.append(FunctionCall(name=item["name"], parameters=params))
        return calls
