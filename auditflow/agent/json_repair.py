# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Locate, repair and parse a JSON payload inside free-form model output.

Models wrap JSON in markdown fences, prepend commentary, or stop mid-object
when they hit an output limit. ``extract_json`` handles all three:

- a fenced ```json block wins over anything else in the text
- otherwise the payload runs from the first ``{`` or ``[`` to its matching
  closer, found with a string-aware bracket scan
- an unclosed payload gets the missing closers appended in nesting order
- one more parse is attempted with trailing commas removed

A payload truncated inside a string literal is not repaired.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

FENCED_JSON = re.compile(r"```json\s*(.*?)(?:```|$)", re.DOTALL | re.IGNORECASE)
FENCED_ANY = re.compile(r"```\s*\n(.*?)```", re.DOTALL)
TRAILING_COMMA = re.compile(r",\s*([}\]])")

CLOSERS = {"{": "}", "[": "]"}


class JSONExtractionError(ValueError):
    """No parseable JSON payload could be recovered."""


@dataclass
class ScanResult:
    """Outcome of the bracket scan.

    Attributes:
        payload: Text from the opening bracket to its matching closer, or to
            the end of input when it never closes.
        missing_closers: Closers needed to balance ``payload``, innermost first.
        truncated_in_string: True when input ended inside a string literal.
    """

    payload: str
    missing_closers: str = ""
    truncated_in_string: bool = False


def _fenced_block(text: str) -> Optional[str]:
    match = FENCED_JSON.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()
    match = FENCED_ANY.search(text)
    if match:
        body = match.group(1).strip()
        if body.startswith(("{", "[")):
            return body
    return None


def scan_payload(text: str) -> Optional[ScanResult]:
    """Find the first JSON container in ``text`` and where it ends."""
    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if not starts:
        return None
    start = min(starts)

    stack: List[str] = []
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in CLOSERS:
            stack.append(CLOSERS[char])
        elif char in "}]":
            if stack and stack[-1] == char:
                stack.pop()
                if not stack:
                    return ScanResult(payload=text[start : index + 1])
            # a mismatched closer is left for the parser to reject

    return ScanResult(
        payload=text[start:].rstrip(),
        missing_closers="".join(reversed(stack)),
        truncated_in_string=in_string,
    )


def repair_json(text: str) -> str:
    """Return the candidate payload in ``text`` with its brackets balanced.

    Raises:
        JSONExtractionError: If no ``{`` or ``[`` is present.
    """
    source = _fenced_block(text) or text
    scan = scan_payload(source)
    if scan is None:
        raise JSONExtractionError("No JSON object or array found in model output")
    if scan.missing_closers:
        logger.debug(f"Appending missing closers: {scan.missing_closers}")
    return scan.payload + scan.missing_closers


def remove_trailing_commas(text: str) -> str:
    return TRAILING_COMMA.sub(r"\1", text)


def extract_json(text: str) -> Any:
    """Extract, repair and parse the JSON payload in ``text``.

    Raises:
        JSONExtractionError: If nothing parseable can be recovered.
    """
    if not text or not text.strip():
        raise JSONExtractionError("Model output is empty")

    candidate = repair_json(text)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as first_error:
        relaxed = remove_trailing_commas(candidate)
        if relaxed != candidate:
            try:
                return json.loads(relaxed)
            except json.JSONDecodeError:
                pass
        raise JSONExtractionError(
            f"Invalid JSON at line {first_error.lineno} column {first_error.colno}: {first_error.msg}"
        ) from first_error
