"""
Renders JSON schema definitions as proto3 messages.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from gotize.common import process_template
from gotize.errors import DanglingReferenceError, UnsupportedSchemaKindError
from gotize.proto3parser import Enum, Field, Message, Oneof, Option, Reserved

logger = logging.getLogger(__name__)

JsonSchema = Dict[str, Any]

PROTO_SYNTAX = 'proto3'
INDENT = '  '

# schema type string ("type" or "type:format") -> proto3 scalar type
JSON_PROTO_TYPES = {
    'integer': 'int64',
    'integer:int32': 'int32',
    'integer:int64': 'int64',
    'number': 'double',
    'number:float': 'float',
    'number:double': 'double',
    'string': 'string',
    'string:byte': 'bytes',
    'string:binary': 'bytes',
    'boolean': 'bool',
    'string:date': 'string',
    'string:date-time': 'string',
}
PROTO_SCALAR_TYPES = set(JSON_PROTO_TYPES.values())

EMPTY_TYPE = 'empty'


def ref_name(ref: str, ref_prefix: str) -> str:
    """Strip the reference prefix from a $ref value."""
    if ref_prefix and ref.startswith(ref_prefix):
        return ref[len(ref_prefix):]
    return ref.rsplit('/', 1)[-1]


def schema_type_str(schema: JsonSchema, ref_prefix: str) -> str:
    """Return 'type', 'type:format', the referenced name, or 'empty' for an untyped schema."""
    if not schema.get('type') and not schema.get('$ref'):
        return EMPTY_TYPE
    parts = [schema['type'] if schema.get('type') else ref_name(schema['$ref'], ref_prefix)]
    if schema.get('format'):
        parts.append(schema['format'])
    return ':'.join(parts)


def is_map_schema(schema: JsonSchema) -> bool:
    return schema.get('type') == 'object' and 'additionalProperties' in schema


def schema_all_properties(schema: JsonSchema, definitions: Dict[str, JsonSchema], ref_prefix: str,
                          visiting: Tuple[str, ...] = ()) -> Dict[str, JsonSchema]:
    """
    Flatten allOf composition into a single property map.

    Entries are merged in order, referenced definitions are followed, and the
    schema's own properties are applied last.
    """
    props: Dict[str, JsonSchema] = {}
    for entry in schema.get('allOf', []):
        if '$ref' in entry:
            name = ref_name(entry['$ref'], ref_prefix)
            if name in visiting:
                continue
            if name not in definitions:
                raise DanglingReferenceError(f"allOf references undefined {name}", schema.get('title'))
            props.update(schema_all_properties(definitions[name], definitions, ref_prefix, visiting + (name,)))
        else:
            props.update(schema_all_properties(entry, definitions, ref_prefix, visiting))
    props.update(schema.get('properties', {}))
    return props


def definition_field(name: str, schema: JsonSchema, number: int, ref_prefix: str, title: str = '') -> Optional[Field]:
    """Build a message field from a property schema, None if the property carries no type."""
    type_str = schema_type_str(schema, ref_prefix)
    label = ''
    key_type = ''
    if is_map_schema(schema):
        schema = schema['additionalProperties']
        key_type = 'string'
    elif type_str == 'array':
        schema = schema.get('items', {})
        label = 'repeated'
    if label or key_type:
        type_str = schema_type_str(schema, ref_prefix)
        if type_str == 'array' or is_map_schema(schema):
            raise UnsupportedSchemaKindError(f"nested collection in field {name}", title or None)

    if type_str == EMPTY_TYPE:
        logger.warning("ignored unsupported type %s", name)
        return None
    if type_str in JSON_PROTO_TYPES:
        proto_type = JSON_PROTO_TYPES[type_str]
    elif schema.get('$ref'):
        proto_type = type_str
    else:
        raise UnsupportedSchemaKindError(f"unsupported type {type_str}", f"{title}.{name}" if title else name)
    return Field(label, proto_type, key_type, name, number, [])


def definition_message(definition: JsonSchema, definitions: Dict[str, JsonSchema], ref_prefix: str) -> Message:
    """
    Build a message from an object definition.

    Fields are numbered by the alphabetical rank of their names; a field that
    is skipped still consumes its number.
    """
    title = definition.get('title', '')
    type_str = schema_type_str(definition, ref_prefix)
    if type_str != 'object' or is_map_schema(definition):
        raise UnsupportedSchemaKindError(f"unsupported type {type_str}", title or None)
    props = schema_all_properties(definition, definitions, ref_prefix, (title,))
    fields = []
    for number, name in enumerate(sorted(props), 1):
        field = definition_field(name, props[name], number, ref_prefix, title)
        if field is not None:
            fields.append(field)
    return Message(title, fields, [], [], [], [], [])


def check_references(messages: Iterable[Message], known: Iterable[str]) -> None:
    """Ensure every message-typed field of the given messages names a known message."""
    known = set(known)
    for message in messages:
        for field in message.fields:
            if field.type not in PROTO_SCALAR_TYPES and field.type not in known:
                raise DanglingReferenceError(f"field {field.name} references undefined message {field.type}",
                                             message.name)


def format_options(options: List[Option]) -> str:
    if not options:
        return ''
    return ' [' + ', '.join(f"{o.name} = {o.value}" for o in options) + ']'


def format_field(field: Field) -> str:
    if field.key_type:
        type_str = f"map<{field.key_type}, {field.type}>"
    elif field.label:
        type_str = f"{field.label} {field.type}"
    else:
        type_str = field.type
    return f"{type_str} {field.name} = {field.number}{format_options(field.options)};"


def format_reserved(reserved: Reserved) -> str:
    items = []
    for start, end in reserved.ranges:
        items.append(str(start) if end is None else f"{start} to {end}")
    items.extend(f'"{name}"' for name in reserved.names)
    return f"reserved {', '.join(items)};"


def format_oneof(oneof: Oneof, indent: str) -> List[str]:
    lines = [f"{indent}oneof {oneof.name} {{"]
    lines.extend(f"{indent}{INDENT}option {o.name} = {o.value};" for o in oneof.options)
    lines.extend(f"{indent}{INDENT}{format_field(f)}" for f in oneof.fields)
    lines.append(f"{indent}}}")
    return lines


def format_enum(enum: Enum, indent: str = '') -> List[str]:
    lines = [f"{indent}enum {enum.name} {{"]
    lines.extend(f"{indent}{INDENT}option {o.name} = {o.value};" for o in enum.options)
    for value in enum.values:
        lines.append(f"{indent}{INDENT}{value.name} = {value.number}{format_options(value.options)};")
    lines.extend(f"{indent}{INDENT}{format_reserved(r)}" for r in enum.reserved)
    lines.append(f"{indent}}}")
    return lines


def format_message(message: Message, indent: str = '') -> List[str]:
    """Format a message; nested elements precede fields, which are ordered by number."""
    inner = indent + INDENT
    body: List[str] = []
    body.extend(f"{inner}option {o.name} = {o.value};" for o in message.options)
    for enum in message.enums:
        body.extend(format_enum(enum, inner))
    for nested in message.messages:
        body.extend(format_message(nested, inner))

    members: List[Tuple[int, List[str]]] = [(f.number, [inner + format_field(f)]) for f in message.fields]
    for oneof in message.oneofs:
        first = min((f.number for f in oneof.fields), default=0)
        members.append((first, format_oneof(oneof, inner)))
    for _, lines in sorted(members, key=lambda m: m[0]):
        body.extend(lines)
    body.extend(f"{inner}{format_reserved(r)}" for r in message.reserved)

    if not body:
        return [f"{indent}message {message.name} {{}}"]
    return [f"{indent}message {message.name} {{"] + body + [f"{indent}}}"]


def render_messages(messages: Dict[str, Message], package_name: str) -> str:
    """Render a proto3 document with the messages in alphabetical order."""
    formatted = ['\n'.join(format_message(messages[name])) for name in sorted(messages)]
    return process_template("jsonstoproto/document.proto.jinja",
                            syntax=PROTO_SYNTAX, package=package_name, messages=formatted)


def render_document(definitions: Dict[str, JsonSchema], package_name: str,
                    preseeded: Optional[Dict[str, Message]] = None, ref_prefix: str = '#/definitions/') -> str:
    """
    Render schema definitions as a proto3 document.

    Args:
        definitions: Definitions keyed by title.
        package_name (str): The proto package.
        preseeded: Messages that take precedence over definitions of the same name.
        ref_prefix (str): Prefix of $ref values in the definitions.

    Returns:
        str: The proto3 text.
    """
    messages = dict(preseeded or {})
    generated = [definition_message(definitions[title], definitions, ref_prefix)
                 for title in sorted(definitions) if title not in messages]
    messages.update((m.name, m) for m in generated)
    check_references(generated, messages)
    return render_messages(messages, package_name)
