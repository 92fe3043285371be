"""
Document Semantics

Pure helpers shared by every DocumentStore adapter:
- matching documents against field matchers
- applying projections
- applying update documents (full replacement or "$set"/"$unset")

Field paths are dotted ("data.theme"). A path that crosses a list is
resolved against every element ("views.deviceClass").

Supported matcher operators: $eq, $ne, $lt, $lte, $gt, $gte, $in, $exists.
"""

import copy
from datetime import datetime
from typing import Any
from uuid import uuid4

from auth_sessions.storage.ports import Document, Matcher, Projection


ID_FIELD = "id"

_MISSING = object()


# =============================================================================
# Paths
# =============================================================================

def resolve_path(document: Any, path: str) -> list[Any]:
    """
    Resolve a dotted path to every value it reaches.

    Returns an empty list when the path is absent.
    """
    values = [document]
    for part in path.split("."):
        next_values: list[Any] = []
        for value in values:
            if isinstance(value, dict):
                if part in value:
                    next_values.append(value[part])
            elif isinstance(value, list):
                for item in value:
                    if isinstance(item, dict) and part in item:
                        next_values.append(item[part])
        values = next_values
        if not values:
            break
    return values


def set_path(document: Document, path: str, value: Any) -> None:
    """Set a dotted path, creating intermediate objects."""
    parts = path.split(".")
    target = document
    for part in parts[:-1]:
        child = target.get(part)
        if not isinstance(child, dict):
            child = {}
            target[part] = child
        target = child
    target[parts[-1]] = value


def unset_path(document: Document, path: str) -> None:
    """Remove a dotted path if present."""
    parts = path.split(".")
    target: Any = document
    for part in parts[:-1]:
        target = target.get(part) if isinstance(target, dict) else None
        if target is None:
            return
    if isinstance(target, dict):
        target.pop(parts[-1], None)


# =============================================================================
# Matching
# =============================================================================

def _comparable(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool)
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return True
    return type(left) is type(right) and isinstance(left, (str, datetime))


def _equals(values: list[Any], expected: Any) -> bool:
    for value in values:
        if value == expected:
            return True
        if isinstance(value, list) and expected in value:
            return True
    return False


def _compare(values: list[Any], operand: Any, op: str) -> bool:
    for value in values:
        candidates = value if isinstance(value, list) else [value]
        for candidate in candidates:
            if not _comparable(candidate, operand):
                continue
            if op == "$lt" and candidate < operand:
                return True
            if op == "$lte" and candidate <= operand:
                return True
            if op == "$gt" and candidate > operand:
                return True
            if op == "$gte" and candidate >= operand:
                return True
    return False


def _is_operator_dict(value: Any) -> bool:
    return isinstance(value, dict) and bool(value) and all(
        isinstance(key, str) and key.startswith("$") for key in value
    )


def _match_condition(values: list[Any], condition: Any) -> bool:
    if not _is_operator_dict(condition):
        return _equals(values, condition)

    for op, operand in condition.items():
        if op == "$eq":
            ok = _equals(values, operand)
        elif op == "$ne":
            ok = not _equals(values, operand)
        elif op in ("$lt", "$lte", "$gt", "$gte"):
            ok = _compare(values, operand, op)
        elif op == "$in":
            ok = any(_equals(values, item) for item in operand)
        elif op == "$exists":
            ok = bool(values) == bool(operand)
        else:
            raise ValueError(f"Unsupported matcher operator: {op}")
        if not ok:
            return False
    return True


def matches(document: Document, matcher: Matcher | None) -> bool:
    """Check if a document satisfies every condition of a matcher."""
    if not matcher:
        return True
    for path, condition in matcher.items():
        if not _match_condition(resolve_path(document, path), condition):
            return False
    return True


# =============================================================================
# Projection
# =============================================================================

def project(document: Document, projection: Projection | None) -> Document:
    """
    Apply a projection and return a deep copy.

    Inclusion projections ({"data.a": 1}) keep only the listed paths,
    exclusion projections ({"views": 0}) drop them.
    """
    if not projection:
        return copy.deepcopy(document)

    included = [path for path, flag in projection.items() if flag]
    excluded = [path for path, flag in projection.items() if not flag]

    if included:
        result: Document = {}
        for path in included:
            value = _get_exact(document, path)
            if value is not _MISSING:
                set_path(result, path, copy.deepcopy(value))
        return result

    result = copy.deepcopy(document)
    for path in excluded:
        unset_path(result, path)
    return result


def _get_exact(document: Document, path: str) -> Any:
    target: Any = document
    for part in path.split("."):
        if not isinstance(target, dict) or part not in target:
            return _MISSING
        target = target[part]
    return target


# =============================================================================
# Updates
# =============================================================================

def is_operator_update(update: Document) -> bool:
    """Check if an update document uses operators rather than replacement."""
    has_operators = any(key.startswith("$") for key in update)
    if has_operators and not all(key.startswith("$") for key in update):
        raise ValueError("Update document mixes operators and plain fields")
    return has_operators


def apply_update(document: Document, update: Document) -> Document:
    """
    Apply an update document and return the new document.

    The stored id survives full replacements.
    """
    if not is_operator_update(update):
        replaced = copy.deepcopy(update)
        if ID_FIELD in document:
            replaced[ID_FIELD] = document[ID_FIELD]
        return replaced

    result = copy.deepcopy(document)
    for op, fields in update.items():
        if op == "$set":
            for path, value in fields.items():
                set_path(result, path, copy.deepcopy(value))
        elif op == "$unset":
            for path in fields:
                unset_path(result, path)
        else:
            raise ValueError(f"Unsupported update operator: {op}")
    return result


def upsert_document(matcher: Matcher, update: Document) -> Document:
    """
    Build the document inserted by an upsert that matched nothing.

    Equality conditions of the matcher seed the new document.
    """
    seed: Document = {}
    for path, condition in (matcher or {}).items():
        if not _is_operator_dict(condition):
            set_path(seed, path, copy.deepcopy(condition))
    if is_operator_update(update):
        document = apply_update(seed, update)
    else:
        document = copy.deepcopy(update)
        for path, condition in seed.items():
            document.setdefault(path, condition)
    return ensure_id(document)


def ensure_id(document: Document) -> Document:
    """Give a document an id if it lacks one."""
    if not document.get(ID_FIELD):
        document[ID_FIELD] = str(uuid4())
    return document
