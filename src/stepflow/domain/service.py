import re
from collections.abc import Iterator
from typing import Any

import msgspec

from stepflow.domain.entity import Workflow, WorkflowStep
from stepflow.domain.exception import ReferenceResolutionError, WorkflowValidationError
from stepflow.domain.value_object import (
    MERGE_KEY,
    LiteralInput,
    MappingInput,
    MergeInput,
    ParsedReference,
    ReferenceInput,
    ReferenceKind,
    SequenceInput,
    WorkflowInput,
    join_path,
    parse_input,
)

_TEMPLATE_PATTERN = re.compile(r"^\{\{template:(.+)\}\}$")
_PREVIOUS_PATTERN = re.compile(r"^\{\{previous(?:\.(.+))?\}\}$")
_PREVIOUS_TOOL_PATTERN = re.compile(r"^\{\{previous:([^.}]+)(?:\.(.+))?\}\}$")
_STEP_PATTERN = re.compile(r"^([^.\[\]{}\s]+)((?:\.[^.\[\]]+|\[\d+\])*)$")
_PATH_TOKEN = re.compile(r"[^.\[\]]+|\[\d+\]")


def parse_reference(ref: str) -> ParsedReference:
    """
    Parses a `$ref` string.

    Supported forms: ``stepId``, ``stepId.dotted.path`` (``[n]`` index segments
    allowed), ``{{previous}}``, ``{{previous.path}}``, ``{{previous:toolType}}``,
    ``{{previous:toolType.path}}`` and ``{{template:reference}}``.

    :param ref: The reference string
    :type ref: str
    :returns: The parsed reference
    :rtype: ParsedReference
    :raises ValueError: If the reference is empty or malformed
    """
    text = ref.strip()
    if not text:
        raise ValueError("Empty reference")

    if text.startswith("{{"):
        m = _TEMPLATE_PATTERN.match(text)
        if m:
            return ParsedReference(kind=ReferenceKind.TEMPLATE, raw=ref, target=m.group(1).strip())
        m = _PREVIOUS_PATTERN.match(text)
        if m:
            return ParsedReference(kind=ReferenceKind.PREVIOUS, raw=ref, path=m.group(1))
        m = _PREVIOUS_TOOL_PATTERN.match(text)
        if m:
            return ParsedReference(kind=ReferenceKind.PREVIOUS_TOOL, raw=ref, target=m.group(1), path=m.group(2))
        raise ValueError(f"Unsupported reference '{ref}'")

    m = _STEP_PATTERN.match(text)
    if not m:
        raise ValueError(f"Malformed reference '{ref}'")
    path = m.group(2).lstrip(".") or None
    return ParsedReference(kind=ReferenceKind.STEP, raw=ref, target=m.group(1), path=path)


def split_path(path: str) -> list[str | int]:
    """Splits ``a.b[0].c`` into ``["a", "b", 0, "c"]``."""
    parts: list[str | int] = []
    for token in _PATH_TOKEN.findall(path):
        if token.startswith("["):
            parts.append(int(token[1:-1]))
        else:
            parts.append(token)
    return parts


def lookup_path(data: Any, path: str) -> Any:
    """
    Safe nested property lookup.

    Mapping keys, sequence indexes (``[0]`` or ``.0``) and msgspec Struct fields
    are supported.

    :param data: The value to walk
    :type data: Any
    :param path: Dotted property path
    :type path: str
    :returns: The value at ``path``
    :rtype: Any
    :raises KeyError: With the first segment that does not exist
    """
    current = msgspec.to_builtins(data) if isinstance(data, msgspec.Struct) else data
    walked: list[str] = []
    for part in split_path(path):
        walked.append(str(part))
        try:
            if isinstance(current, dict):
                current = current[str(part)]
            elif isinstance(current, (list, tuple)):
                current = current[int(part)]
            else:
                raise KeyError(part)
        except (KeyError, IndexError, ValueError, TypeError):
            raise KeyError(".".join(walked)) from None
        if isinstance(current, msgspec.Struct):
            current = msgspec.to_builtins(current)
    return current


def matches_tool_type(tool_id: str, tool_type: str) -> bool:
    """
    Whether ``tool_id`` names a tool of ``tool_type``.

    Conventions, checked in order: exact match, ``<type>-tool``, ``<type>-``
    prefix, ``-<type>`` suffix.
    """
    return (
        tool_id == tool_type
        or tool_id == f"{tool_type}-tool"
        or tool_id.startswith(f"{tool_type}-")
        or tool_id.endswith(f"-{tool_type}")
    )


def find_previous_step_by_tool_type(workflow: Workflow, index: int, tool_type: str) -> WorkflowStep | None:
    """Nearest step before ``index`` whose tool id matches ``tool_type``."""
    for i in range(index - 1, -1, -1):
        step = workflow.steps[i]
        if matches_tool_type(step.tool_id, tool_type):
            return step
    return None


def iter_references(node: WorkflowInput, path: str = "inputs") -> Iterator[tuple[str, ReferenceInput]]:
    """Yields every reference in a parsed input tree together with its path."""
    if isinstance(node, ReferenceInput):
        yield path, node
    elif isinstance(node, MergeInput):
        for i, item in enumerate(node.items):
            yield from iter_references(item, join_path(f"{path}.{MERGE_KEY}", i))
    elif isinstance(node, SequenceInput):
        for i, item in enumerate(node.items):
            yield from iter_references(item, join_path(path, i))
    elif isinstance(node, MappingInput):
        for key, value in node.entries:
            yield from iter_references(value, join_path(path, key))
    elif isinstance(node, LiteralInput):
        return
    else:
        raise TypeError(f"Unknown input node: {type(node).__name__}")


def check_reference(ref: ParsedReference, workflow: Workflow, index: int) -> str | None:
    """
    Structural check of one reference for the step at ``index``.

    :returns: An error message, or None if the reference is structurally valid
    :rtype: str | None
    """
    if ref.kind is ReferenceKind.PREVIOUS:
        if index == 0:
            return "No previous step available - this is the first step"
    elif ref.kind is ReferenceKind.PREVIOUS_TOOL:
        if find_previous_step_by_tool_type(workflow, index, ref.target) is None:
            return f'No previous step of type "{ref.target}" found'
    elif ref.kind is ReferenceKind.STEP:
        try:
            target_index = workflow.index_of(ref.target)
        except KeyError:
            return f'Referenced step "{ref.target}" does not exist'
        if target_index == index:
            return f'Step "{ref.target}" cannot reference itself'
        if target_index > index:
            return f'Step "{ref.target}" runs after the current step'
    elif ref.kind is ReferenceKind.TEMPLATE:
        if not ref.target:
            return "Empty template reference"
    return None


def check_inputs(inputs: Any, workflow: Workflow, index: int) -> list[str]:
    """
    Validation-mode walk over an input tree as if it belonged to the step at ``index``.

    Checks structure only; no step needs to have produced data.

    :param inputs: The raw input tree
    :type inputs: Any
    :param workflow: The workflow the inputs are checked against
    :type workflow: Workflow
    :param index: Position of the step the inputs belong to
    :type index: int
    :returns: One message per problem, prefixed with the input path
    :rtype: list[str]
    """
    try:
        tree = parse_input(inputs)
    except ReferenceResolutionError as e:
        return [e.message]

    errors = []
    for path, node in iter_references(tree):
        try:
            parsed = parse_reference(node.ref)
        except ValueError as e:
            errors.append(f"{path}: {e}")
            continue
        problem = check_reference(parsed, workflow, index)
        if problem is not None:
            errors.append(f"{path}: {problem}")
    return errors


def collect_reference_errors(workflow: Workflow, index: int) -> list[str]:
    """Reference problems of the step at ``index``, each prefixed with the step id."""
    step = workflow.steps[index]
    return [f"{step.id}: {problem}" for problem in check_inputs(step.inputs, workflow, index)]


def validate_workflow(data: Workflow, check_references: bool = True) -> bool:
    """
    Validates the workflow structure and contents.

    An empty step list is valid.

    :param data: The Workflow instance to validate
    :type data: Workflow
    :param check_references: Also check that every `$ref` is structurally resolvable
    :type check_references: bool
    :returns: True if the workflow is valid
    :rtype: bool
    :raises WorkflowValidationError: Listing every problem found
    """
    errors = []
    if not data.id:
        errors.append("Workflow id must not be empty")
    if not data.name:
        errors.append("Workflow name must not be empty")

    seen_ids = set()
    for step in data.steps:
        if step.id in seen_ids:
            errors.append(f"Duplicate step id found: {step.id}")
        seen_ids.add(step.id)
        try:
            step.validate()
        except ValueError as e:
            errors.append(str(e))

    if check_references and not errors:
        for index in range(len(data.steps)):
            errors.extend(collect_reference_errors(data, index))

    if errors:
        raise WorkflowValidationError(
            f"Invalid workflow '{data.id}': " + "; ".join(errors), workflow_id=data.id, errors=errors
        )
    return True
