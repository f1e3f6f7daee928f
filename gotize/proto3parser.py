"""
Parser for proto3 files.

Messages (with their fields, map fields, oneofs, nested messages and enums,
options and reserved ranges), top-level enums, imports, options and the
package name are extracted. Services and extensions are skipped.
"""

import logging
from typing import Dict, List, NamedTuple, Tuple, Union

from lark import Lark, Token, Transformer, v_args
from lark.exceptions import UnexpectedInput

from gotize.errors import MalformedExternalFileError

logger = logging.getLogger(__name__)

GRAMMAR = r'''
start: [syntax] _top*

syntax: _SYNTAX _EQ STRING _SEMI
_top: import_decl | package_decl | option_decl | message | enum | skipped | _SEMI

import_decl: _IMPORT [WEAK | PUBLIC] STRING _SEMI
package_decl: _PACKAGE full_ident _SEMI
option_decl: _OPTION option_name _EQ constant _SEMI

message: _MESSAGE IDENT _LBRACE _message_item* _RBRACE
_message_item: field | map_field | oneof | message | enum | reserved | option_decl | skipped | _SEMI

field: [label] full_ident IDENT _EQ NUMBER [field_options] _SEMI
label: REPEATED | OPTIONAL | REQUIRED
map_field: _MAP _LANGLE IDENT _COMMA full_ident _RANGLE IDENT _EQ NUMBER [field_options] _SEMI
oneof: _ONEOF IDENT _LBRACE (field | option_decl | _SEMI)* _RBRACE

field_options: _LSQB field_option (_COMMA field_option)* _RSQB
field_option: option_name _EQ constant
option_name: (IDENT | _LPAR full_ident _RPAR) (DOT IDENT)*
constant: full_ident | NUMBER | STRING+ | _LBRACE _any* _RBRACE

enum: _ENUM IDENT _LBRACE (enum_value | option_decl | reserved | _SEMI)* _RBRACE
enum_value: IDENT _EQ NUMBER [field_options] _SEMI

reserved: _RESERVED (range (_COMMA range)* | STRING (_COMMA STRING)*) _SEMI
range: NUMBER [_TO (NUMBER | MAX)]

skipped: (_SERVICE | _EXTEND) full_ident _LBRACE _any* _RBRACE
       | _EXTENSIONS range (_COMMA range)* [field_options] _SEMI

full_ident: [DOT] IDENT (DOT IDENT)*

_any: _tok | _LBRACE _any* _RBRACE
_tok: IDENT | NUMBER | STRING | DOT | COLON | _EQ | _SEMI | _COMMA
    | _LPAR | _RPAR | _LSQB | _RSQB | _LANGLE | _RANGLE
    | _SYNTAX | _IMPORT | WEAK | PUBLIC | _PACKAGE | _OPTION | _MESSAGE | _ENUM | _ONEOF | _MAP
    | _RESERVED | _TO | MAX | _SERVICE | _EXTEND | _EXTENSIONS | REPEATED | OPTIONAL | REQUIRED

_SYNTAX: "syntax"
_IMPORT: "import"
WEAK: "weak"
PUBLIC: "public"
_PACKAGE: "package"
_OPTION: "option"
_MESSAGE: "message"
_ENUM: "enum"
_ONEOF: "oneof"
_MAP: "map"
_RESERVED: "reserved"
_TO: "to"
MAX: "max"
_SERVICE: "service"
_EXTEND: "extend"
_EXTENSIONS: "extensions"
REPEATED: "repeated"
OPTIONAL: "optional"
REQUIRED: "required"

_EQ: "="
_SEMI: ";"
_COMMA: ","
_LPAR: "("
_RPAR: ")"
_LSQB: "["
_RSQB: "]"
_LBRACE: "{"
_RBRACE: "}"
_LANGLE: "<"
_RANGLE: ">"
DOT: "."
COLON: ":"

IDENT: /[A-Za-z_]\w*/
NUMBER: /[-+]?(0[xX][0-9a-fA-F]+|(\d+(\.\d*)?|\.\d+)([eE][-+]?\d+)?)/
STRING: /"(?:[^"\\\n]|\\.)*"/ | /'(?:[^'\\\n]|\\.)*'/
COMMENT: /\/\/[^\n]*/ | /\/\*(?:.|\n)*?\*\//

%ignore /\s+/
%ignore COMMENT
'''

Option = NamedTuple('Option', [('name', str), ('value', str)])
Field = NamedTuple('Field', [('label', str), ('type', str), ('key_type', str), ('name', str), ('number', int),
                             ('options', List['Option'])])
Oneof = NamedTuple('Oneof', [('name', str), ('fields', List['Field']), ('options', List['Option'])])
EnumValue = NamedTuple('EnumValue', [('name', str), ('number', int), ('options', List['Option'])])
# a range end is a number, 'max', or None for a single number
Reserved = NamedTuple('Reserved', [('ranges', List[Tuple[int, Union[int, str, None]]]), ('names', List[str])])
Enum = NamedTuple('Enum', [('name', str), ('values', List['EnumValue']), ('options', List['Option']),
                           ('reserved', List['Reserved'])])
Message = NamedTuple('Message', [('name', str), ('fields', List['Field']), ('oneofs', List['Oneof']),
                                 ('messages', List['Message']), ('enums', List['Enum']),
                                 ('options', List['Option']), ('reserved', List['Reserved'])])
Import = NamedTuple('Import', [('path', str), ('modifier', str)])
Package = NamedTuple('Package', [('name', str)])
ProtoFile = NamedTuple('ProtoFile', [('syntax', str), ('package', str), ('imports', List['Import']),
                                     ('options', List['Option']), ('messages', Dict[str, 'Message']),
                                     ('enums', Dict[str, 'Enum'])])


def parse_int(literal: str) -> int:
    """Parse a proto integer literal (decimal, octal or hex, optionally signed)."""
    sign = -1 if literal.startswith('-') else 1
    digits = literal.lstrip('+-')
    if digits[:2] in ('0x', '0X'):
        return sign * int(digits[2:], 16)
    if len(digits) > 1 and digits.startswith('0'):
        return sign * int(digits[1:], 8)
    return sign * int(digits)


def _unquote(literal: str) -> str:
    return literal[1:-1]


class Proto3Transformer(Transformer):
    '''Converts the syntax tree into message, enum and field namedtuples'''

    def __init__(self, text: str) -> None:
        super().__init__()
        self.text = text

    def full_ident(self, tokens):
        return ''.join(t.value for t in tokens if t is not None)

    def option_name(self, tokens):
        parts = []
        for token in tokens:
            if isinstance(token, Token):
                parts.append(token.value)
            else:
                parts.append(f"({token})")
        return ''.join(parts)

    @v_args(meta=True)
    def constant(self, meta, children):
        if meta.empty:
            return ''.join(str(c) for c in children)
        return self.text[meta.start_pos:meta.end_pos]

    def field_option(self, tokens):
        return Option(tokens[0], tokens[1])

    def field_options(self, tokens):
        return list(tokens)

    def option_decl(self, tokens):
        return Option(tokens[0], tokens[1])

    def label(self, tokens):
        return tokens[0].value

    def field(self, tokens):
        label, type_name, name, number, options = tokens
        return Field(label or '', type_name, '', name.value, parse_int(number.value), options or [])

    def map_field(self, tokens):
        key_type, value_type, name, number, options = tokens
        return Field('', value_type, key_type.value, name.value, parse_int(number.value), options or [])

    def oneof(self, tokens):
        name = tokens[0].value
        fields = [t for t in tokens[1:] if isinstance(t, Field)]
        options = [t for t in tokens[1:] if isinstance(t, Option)]
        return Oneof(name, fields, options)

    def range(self, tokens):
        start, end = tokens
        if end is None:
            return parse_int(start.value), None
        if end.type == 'MAX':
            return parse_int(start.value), 'max'
        return parse_int(start.value), parse_int(end.value)

    def reserved(self, tokens):
        ranges = [t for t in tokens if isinstance(t, tuple)]
        names = [_unquote(t.value) for t in tokens if isinstance(t, Token) and t.type == 'STRING']
        return Reserved(ranges, names)

    def enum_value(self, tokens):
        name, number, options = tokens
        return EnumValue(name.value, parse_int(number.value), options or [])

    def enum(self, tokens):
        name = tokens[0].value
        values = [t for t in tokens[1:] if isinstance(t, EnumValue)]
        options = [t for t in tokens[1:] if isinstance(t, Option)]
        reserved = [t for t in tokens[1:] if isinstance(t, Reserved)]
        return Enum(name, values, options, reserved)

    def message(self, tokens):
        name = tokens[0].value
        fields, oneofs, messages, enums, options, reserved = [], [], [], [], [], []
        for item in tokens[1:]:
            if isinstance(item, Field):
                fields.append(item)
            elif isinstance(item, Oneof):
                oneofs.append(item)
            elif isinstance(item, Message):
                messages.append(item)
            elif isinstance(item, Enum):
                enums.append(item)
            elif isinstance(item, Option):
                options.append(item)
            elif isinstance(item, Reserved):
                reserved.append(item)
        return Message(name, fields, oneofs, messages, enums, options, reserved)

    def skipped(self, tokens):
        return None

    def syntax(self, tokens):
        return _unquote(tokens[0].value)

    def import_decl(self, tokens):
        modifier, path = tokens
        return Import(_unquote(path.value), modifier.value if modifier is not None else '')

    def package_decl(self, tokens):
        return Package(tokens[0])

    def start(self, tokens):
        syntax = tokens[0] or 'proto2'
        package = ''
        imports: List[Import] = []
        options: List[Option] = []
        messages: Dict[str, Message] = {}
        enums: Dict[str, Enum] = {}
        for item in tokens[1:]:
            if isinstance(item, Package):
                package = item.name
            elif isinstance(item, Import):
                imports.append(item)
            elif isinstance(item, Option):
                options.append(item)
            elif isinstance(item, Message):
                messages[item.name] = item
            elif isinstance(item, Enum):
                enums[item.name] = item
        return ProtoFile(syntax, package, imports, options, messages, enums)


def parse(data: str, path: str = '<source>') -> ProtoFile:
    """Parse the text of a proto file."""
    parser = Lark(GRAMMAR, start='start', parser='lalr', propagate_positions=True)
    try:
        tree = parser.parse(data)
    except UnexpectedInput as e:
        raise MalformedExternalFileError(f"syntax error at line {e.line}, column {e.column}", path, e) from e
    proto_file = Proto3Transformer(data).transform(tree)
    logger.debug("parsed %s: %d messages", path, len(proto_file.messages))
    return proto_file


def parse_from_file(file: str, encoding: str = "utf-8") -> ProtoFile:
    with open(file, 'r', encoding=encoding) as f:
        data = f.read()
    return parse(data, file)
