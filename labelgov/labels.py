"""Label mapping helpers shared by every component."""

import json
import re
from typing import Dict, List, Mapping, Optional

from labelgov.models.results import LabelChange

_KEY_START = re.compile(r"^[a-z]")
_ALLOWED_CHARS = re.compile(r"^[a-z0-9_-]*$")
_MAX_LENGTH = 63


def canonical_label_hash(labels: Mapping[str, str]) -> str:
    """Keys sorted, then serialized compactly. Equal mappings hash equal."""
    return json.dumps(dict(labels), sort_keys=True, separators=(",", ":"))


def parse_label_hash(label_hash: str) -> Optional[Dict[str, str]]:
    """Read a stored label hash back into a mapping, or None if unreadable."""
    try:
        parsed = json.loads(label_hash)
    except (ValueError, TypeError):
        return None
    if not isinstance(parsed, dict):
        return None
    return {str(k): str(v) for k, v in parsed.items()}


def validate_key(key: str) -> Optional[str]:
    if not key:
        return "Key is required"
    if not _KEY_START.match(key):
        return "Must start with a lowercase letter"
    if not _ALLOWED_CHARS.match(key):
        return "Only lowercase letters, numbers, hyphens, and underscores"
    if len(key) > _MAX_LENGTH:
        return f"Maximum length is {_MAX_LENGTH} characters"
    return None


def validate_value(value: str) -> Optional[str]:
    if not value:
        return None  # Values may be empty
    if not _ALLOWED_CHARS.match(value):
        return "Only lowercase letters, numbers, hyphens, and underscores"
    if len(value) > _MAX_LENGTH:
        return f"Maximum length is {_MAX_LENGTH} characters"
    return None


def validate_labels(labels: Mapping[str, str]) -> Dict[str, str]:
    """Return {key: problem} for every invalid key or value. Empty when valid."""
    problems = {}
    for key in sorted(labels):
        error = validate_key(key) or validate_value(labels[key])
        if error:
            problems[key] = error
    return problems


def label_changes(
    before: Mapping[str, str], after: Mapping[str, str]
) -> List[LabelChange]:
    """Key-level diff between two mappings, sorted by key."""
    changes = []
    for key in sorted(set(before) | set(after)):
        old = before.get(key)
        new = after.get(key)
        if old == new:
            continue
        if old is None:
            kind = "ADD"
        elif new is None:
            kind = "REMOVE"
        else:
            kind = "MODIFY"
        changes.append(LabelChange(key=key, old_value=old, new_value=new, kind=kind))
    return changes
