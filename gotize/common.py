"""
Common utility functions for gotize.
"""

import json
import os
import re
from typing import Dict, Optional, Tuple

import jinja2

from gotize.errors import InvalidTypeExpressionError

# tag keys the schema builder cares about
FIELD_TAG_KEYS = ['json', 'required', 'description']

_TAG_PAIR = re.compile(r'([^\s:"]+):"((?:[^"\\]|\\.)*)"')


def is_exported(name: str) -> bool:
    """Check whether a Go identifier is exported (starts with an upper-case letter)."""
    return bool(name) and name[0].isupper()


def unquote_go_string(literal: str) -> str:
    """
    Strip the quotes from a Go string literal.

    Raw strings (back-quoted) are returned verbatim, interpreted strings have
    their escape sequences decoded.
    """
    if len(literal) >= 2 and literal[0] == '`' and literal[-1] == '`':
        return literal[1:-1]
    if len(literal) >= 2 and literal[0] == '"' and literal[-1] == '"':
        return _decode_escapes(literal[1:-1])
    return literal


def _decode_escapes(value: str) -> str:
    try:
        return json.loads(f'"{value}"')
    except ValueError:
        # Go-only escapes (\x41, \a, octal) are kept as written
        return value


def struct_tag_lookup(tag: str, key: str) -> Optional[str]:
    """
    Look up the value associated with key in a Go struct tag.

    Mirrors reflect.StructTag.Lookup: the tag is a space separated list of
    key:"value" pairs. Returns None if the key is absent.
    """
    if not tag:
        return None
    for match in _TAG_PAIR.finditer(tag):
        if match.group(1) == key:
            return _decode_escapes(match.group(2))
    return None


def parse_field_tags(tag: str) -> Dict[str, str]:
    """Extract the json, required and description tag values ('' when absent)."""
    tags = {}
    for k in FIELD_TAG_KEYS:
        value = struct_tag_lookup(tag, k)
        tags[k] = value if value is not None else ''
    return tags


def json_tag_name(json_tag: str) -> str:
    """Return the property name part of a json tag ('name,omitempty' -> 'name')."""
    return json_tag.split(',')[0].strip()


def split_type_expression(type_str: str) -> Tuple[Optional[str], str]:
    """
    Split a type expression string into (package name, type name).

    'Foo' yields (None, 'Foo'), 'pkg.Foo' yields ('pkg', 'Foo').
    """
    parts = type_str.strip().split('.')
    if len(parts) > 2 or not all(parts):
        raise InvalidTypeExpressionError(f"invalid type expression '{type_str}'")
    if len(parts) == 1:
        return None, parts[0]
    return parts[0], parts[1]


def has_decorator(doc: str, decorator: str) -> bool:
    """Check whether any doc comment line starts with the decorator token."""
    for line in doc.split('\n'):
        fields = line.strip().split()
        if fields and fields[0] == decorator:
            return True
    return False


def process_template(file_path: str, **kvargs) -> str:
    """
    Process a file as a Jinja2 template with the given keyword arguments as input.

    Args:
        file_path (str): The path of the template, relative to the gotize package.

    Returns:
        str: The processed template as a string.
    """
    file_dir = os.path.dirname(__file__)
    template_loader = jinja2.FileSystemLoader(searchpath=file_dir)
    template_env = jinja2.Environment(loader=template_loader)
    template = template_env.get_template(file_path)
    return template.render(**kvargs)
