"""Defensive parsing of free-form AI model output into JSON.

Models wrap JSON in prose or code fences and sometimes stop mid-object, so
the text is located, repaired where possible and parsed into a tagged result.
"""
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

REFUSAL_PATTERNS = (
    'cannot',
    "can't",
    'refuse',
    'unable to',
    'not provide',
    'not facilitate',
    'illegal',
    'promote',
)

_FENCE_OPEN = re.compile(r'^\s*```[\w-]*\s*\n?')
_FENCE_CLOSE = re.compile(r'\n?\s*```\s*$')

@dataclass
class ParseSuccess:
    value: Dict[str, Any]
    ok: bool = field(default=True, init=False)

@dataclass
class ParseFailure:
    reason: str
    text: Optional[str] = None
    ok: bool = field(default=False, init=False)

ParseResult = Union[ParseSuccess, ParseFailure]

def extract_response_text(response: Any) -> Optional[str]:
    """Pull the generated text out of the shapes inference endpoints return.
    
    Handles a bare string, ``{response}``, ``{content}``, ``{text}``, a
    ``{result: ...}`` envelope and a list of chat messages (last one wins).
    """
    if response is None:
        return None
    if isinstance(response, str):
        return response
    if isinstance(response, dict):
        for key in ('response', 'content', 'text'):
            value = response.get(key)
            if isinstance(value, str):
                return value
        if 'result' in response:
            return extract_response_text(response['result'])
        if 'choices' in response:
            return extract_response_text(response['choices'])
        if 'message' in response:
            return extract_response_text(response['message'])
        return None
    if isinstance(response, list) and response:
        return extract_response_text(response[-1])
    return None

def strip_code_fences(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith('```'):
        stripped = _FENCE_OPEN.sub('', stripped, count=1)
        stripped = _FENCE_CLOSE.sub('', stripped, count=1)
    return stripped.strip()

def extract_json_text(text: str) -> Optional[str]:
    """Locate the first JSON object in text, closing it if output was truncated.
    
    Returns:
        The object text, or None if the text contains no ``{``
    """
    cleaned = strip_code_fences(text)
    start = cleaned.find('{')
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for pos in range(start, len(cleaned)):
        char = cleaned[pos]
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == '{':
            depth += 1
        elif char == '}':
            depth -= 1
            if depth == 0:
                return cleaned[start:pos + 1]

    # Truncated: balance the braces that never closed
    tail = cleaned[start:].rstrip()
    if tail.endswith('```'):
        tail = tail[:-3].rstrip()
    return tail + '}' * depth

def looks_like_refusal(text: Optional[str]) -> bool:
    """True when the model declined to answer instead of emitting JSON."""
    if not text:
        return False
    lowered = text.lower()
    return any(pattern in lowered for pattern in REFUSAL_PATTERNS)

def parse_json_response(response: Any) -> ParseResult:
    """Parse model output into a JSON object.
    
    Args:
        response: Raw inference result in any supported shape
        
    Returns:
        ParseSuccess with the decoded object, or ParseFailure with a reason
        and the extracted text (useful for refusal detection)
    """
    text = extract_response_text(response)
    if text is None or not text.strip():
        return ParseFailure("Empty AI response", text)

    json_text = extract_json_text(text)
    if json_text is None:
        return ParseFailure("No JSON object found in response", text)

    try:
        value = json.loads(json_text)
    except json.JSONDecodeError as e:
        return ParseFailure(f"Failed to parse JSON response: {e}", text)

    if not isinstance(value, dict):
        return ParseFailure("Failed to parse JSON response: not an object", text)
    return ParseSuccess(value)
