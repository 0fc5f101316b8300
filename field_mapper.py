"""
Declarative mapping of directory records onto RT field sets.

A mapping is a dict of RT field name -> one of:

    Field("UWNetID")                       look up a single source field
    FieldList(["FirstName", "LastName"])   look up several, joined with a space
    Computed(fn)                           call fn(record, **context)

Source field names may be dotted paths into nested documents. Any value that
is itself a list contributes only its first element, so
``["a", ["b", "c"]]`` becomes ``"a b"``.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Pattern, Sequence, Union


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Field:
    name: str


@dataclass(frozen=True)
class Computed:
    fn: Callable[..., Any]


@dataclass(frozen=True)
class FieldList:
    names: Sequence[Union[str, Computed]]


MappingEntry = Union[Field, FieldList, Computed]
MappingSpec = Dict[str, MappingEntry]


def mapping_from_config(data: Mapping[str, Any]) -> MappingSpec:
    """Turn a JSON-style mapping (strings or lists of strings) into a MappingSpec."""
    mapping: MappingSpec = {}
    for target, source in data.items():
        if isinstance(source, str):
            mapping[target] = Field(source)
        elif isinstance(source, list) and all(isinstance(s, str) for s in source):
            mapping[target] = FieldList(list(source))
        else:
            raise TypeError(f"mapping for {target} must be a string or a list of strings, got {source!r}")
    return mapping


def lookup_field(record: Mapping[str, Any], name: str) -> Any:
    """Fetch a value by key, falling back to a dotted path through nested dicts."""
    if name in record:
        return record[name]
    value: Any = record
    for part in name.split('.'):
        if not isinstance(value, Mapping) or part not in value:
            return None
        value = value[part]
    return value


def _compile(pattern: Union[None, str, Pattern]) -> Optional[Pattern]:
    if pattern is None or isinstance(pattern, re.Pattern):
        return pattern
    return re.compile(pattern)


def _entry_sources(entry: MappingEntry) -> List[Union[str, Computed]]:
    if isinstance(entry, Field):
        return [entry.name] if entry.name else []
    if isinstance(entry, FieldList):
        return [n for n in entry.names if n]
    if isinstance(entry, Computed):
        return [entry]
    raise TypeError(f"unsupported mapping entry {entry!r}")


def parse_mapping(
    record: Mapping[str, Any],
    mapping: MappingSpec,
    only: Union[None, str, Pattern] = None,
    skip: Union[None, str, Pattern] = None,
    **context,
) -> Dict[str, List[Any]]:
    """
    Resolve every selected target field to its list of raw values.

    Values are left unflattened; see build_object for the final strings.
    """
    only_re = _compile(only)
    skip_re = _compile(skip)
    result: Dict[str, List[Any]] = {}

    for target in sorted(mapping):
        if skip_re and skip_re.search(target):
            continue
        if only_re and not only_re.search(target):
            continue

        entry = mapping[target]
        sources = _entry_sources(entry)
        if not sources:
            logger.error(f"Invalid mapping for {target}, no source fields defined")
            continue

        values: List[Any] = []
        for source in sources:
            if isinstance(source, Computed):
                computed = source.fn(
                    record,
                    target_field=target,
                    mapping_entry=entry,
                    result=result,
                    **context,
                )
                if isinstance(computed, (list, tuple)):
                    values.extend(computed)
                elif computed is not None:
                    values.append(computed)
            else:
                value = lookup_field(record, source)
                if value is not None:
                    values.append(value)
        result[target] = values

    return result


def _first(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def build_object(
    record: Mapping[str, Any],
    mapping: MappingSpec,
    only: Union[None, str, Pattern] = None,
    skip: Union[None, str, Pattern] = None,
    **context,
) -> Dict[str, str]:
    """
    Map a directory record to a flat dict of RT field -> string.

    Fields whose sources all come back empty are left out of the result.
    """
    parsed = parse_mapping(record, mapping, only=only, skip=skip, **context)
    flat: Dict[str, str] = {}
    for target, values in parsed.items():
        scalars = [_first(v) for v in values]
        parts = [str(v) for v in scalars if v is not None and str(v) != ""]
        if not parts:
            logger.warning(f"No value found for {target}, leaving it out")
            continue
        flat[target] = ' '.join(parts)
    return flat
