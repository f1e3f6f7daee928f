"""
Parser for the declaration subset of Go source files.

Only what the schema builder needs is modelled: the package clause, imports
and type declarations. Function, variable and constant declarations are
skipped by balanced-bracket scanning.
"""

import logging
import re
from typing import Dict, List, NamedTuple, Optional, Tuple, Union

from lark import Lark, Token, Transformer, v_args
from lark.exceptions import UnexpectedInput
from lark.lark import PostLex

from gotize.common import is_exported, parse_field_tags, unquote_go_string
from gotize.errors import ImportFailureError

logger = logging.getLogger(__name__)

GRAMMAR = r'''
start: _SEMI* package_clause _SEMI+ (_decl _SEMI+)*

package_clause: _PACKAGE NAME

_decl: import_decl | type_decl | other_decl

import_decl: _IMPORT (import_spec | _LPAR (import_spec? _SEMI)* import_spec? _RPAR)
import_spec: [import_alias] STRING
import_alias: NAME | _DOT

type_decl: TYPE (type_spec | _LPAR (type_spec? _SEMI)* type_spec? _RPAR)
type_spec: NAME [EQUAL] type_expr

other_decl: (_FUNC | _VAR | _CONST) (_tok | _group)+

?type_expr: _STAR type_expr
          | NAME                                                    -> named_type
          | NAME _DOT NAME                                          -> selector_type
          | NAME array_len                                          -> generic_type
          | NAME _DOT NAME array_len                                -> generic_type
          | array_len type_expr                                     -> array_type
          | _MAP _LSQB type_expr _RSQB type_expr                    -> map_type
          | _STRUCT _LBRACE (field_decl? _SEMI)* field_decl? _RBRACE -> struct_type
          | _INTERFACE _LBRACE _any* _RBRACE                        -> interface_type
          | _CHAN type_expr                                         -> chan_type
          | _ARROW _CHAN type_expr                                  -> chan_type
          | _CHAN_SEND type_expr                                    -> chan_type
          | _FUNC _LPAR _any* _RPAR [_func_result]                  -> func_type

_func_result: _LPAR _any* _RPAR | type_expr
array_len: _LSQB _any* _RSQB

?field_decl: named_field | embedded_field
named_field: NAME (_COMMA NAME)* type_expr [STRING]
embedded_field: _STAR? NAME [STRING]
              | _STAR? NAME _DOT NAME [STRING]
              | _STAR? NAME array_len [STRING]                 -> embedded_generic_field
              | _STAR? NAME _DOT NAME array_len [STRING]       -> embedded_generic_field

_group: _LPAR _any* _RPAR | _LSQB _any* _RSQB | _LBRACE _any* _RBRACE
_any: _tok | _group | _SEMI
_tok: NAME | NUMBER | STRING | RUNE | OP | ELLIPSIS | EQUAL | TYPE
    | _STAR | _DOT | _COMMA | _ARROW | _CHAN_SEND
    | _PACKAGE | _IMPORT | _STRUCT | _MAP | _INTERFACE | _CHAN | _FUNC | _VAR | _CONST

TYPE: "type"
EQUAL: "="
_PACKAGE: "package"
_IMPORT: "import"
_STRUCT: "struct"
_MAP: "map"
_INTERFACE: "interface"
_CHAN: "chan"
_FUNC: "func"
_VAR: "var"
_CONST: "const"
_LPAR: "("
_RPAR: ")"
_LSQB: "["
_RSQB: "]"
_LBRACE: "{"
_RBRACE: "}"
_SEMI: ";"
_COMMA: ","
_DOT: "."
_STAR: "*"
_ARROW: "<-"
_CHAN_SEND.2: /chan[ \t]*<-/
ELLIPSIS: "..."
OP: /[-+\/%&|^<>!:~]/

NAME: /(?!\d)\w+/
NUMBER: /\d[\w.]*/
STRING: /"(?:[^"\\\n]|\\.)*"/ | /`[^`]*`/
RUNE: /'(?:[^'\\\n]|\\.)+'/
COMMENT: /\/\/[^\n]*/ | /\/\*(?:.|\n)*?\*\//
_NL: /\n/

%ignore /[ \t\f\r]+/
%ignore COMMENT
'''

# predeclared identifiers that denote basic types
BASIC_TYPES = {
    'bool', 'string', 'error',
    'int', 'int8', 'int16', 'int32', 'int64',
    'uint', 'uint8', 'uint16', 'uint32', 'uint64', 'uintptr',
    'float32', 'float64', 'complex64', 'complex128',
    'byte', 'rune',
}

# TypeExpr variants
NamedType = NamedTuple('NamedType', [('name', str)])
SelectorType = NamedTuple('SelectorType', [('package', str), ('name', str)])
BasicType = NamedTuple('BasicType', [('name', str)])
StructType = NamedTuple('StructType', [('fields', List['FieldDecl'])])
ArrayType = NamedTuple('ArrayType', [('element', 'TypeExpr')])
MapType = NamedTuple('MapType', [('key', 'TypeExpr'), ('value', 'TypeExpr')])
InterfaceType = NamedTuple('InterfaceType', [])
UnsupportedType = NamedTuple('UnsupportedType', [('kind', str)])

TypeExpr = Union[NamedType, SelectorType, BasicType, StructType, ArrayType, MapType, InterfaceType, UnsupportedType]

FieldDecl = NamedTuple('FieldDecl', [('name', Optional[str]), ('type', 'TypeExpr'), ('tag', str),
                                     ('tags', Dict[str, str]), ('exported', bool)])
TypeDeclaration = NamedTuple('TypeDeclaration', [('name', str), ('kind', str), ('underlying', 'TypeExpr'),
                                                 ('doc', str), ('alias', bool), ('file', str)])
Import = NamedTuple('Import', [('path', str), ('alias', Optional[str])])
GoFile = NamedTuple('GoFile', [('path', str), ('package', str), ('imports', List['Import']),
                               ('types', Dict[str, 'TypeDeclaration'])])

# intermediate result of a type spec before its doc comment is attached
_TypeSpec = NamedTuple('_TypeSpec', [('name', Token), ('alias', bool), ('type', 'TypeExpr'),
                                     ('keyword_line', int), ('group_size', int)])
# raw text of a bracketed array length or type argument/parameter list
_Brackets = NamedTuple('_Brackets', [('text', str)])

# an identifier followed by a constraint: '[T any]', '[T ~int]', '[T []int]'
_TYPE_PARAM_HEAD = re.compile(r'\s*[A-Za-z_]\w*(\s+[A-Za-z_\[]|\s*~)')


def is_type_parameter_list(text: str) -> bool:
    """
    Tell a type parameter list from an array length.

    A top-level comma or a name followed by a constraint makes a parameter
    list. Like the Go parser, '[P *C]' is read as an array length.
    """
    inner = text.strip()
    if inner.startswith('['):
        inner = inner[1:]
    if inner.endswith(']'):
        inner = inner[:-1]
    depth = 0
    for ch in inner:
        if ch in '([{':
            depth += 1
        elif ch in ')]}':
            depth -= 1
        elif ch == ',' and depth == 0:
            return True
    return bool(_TYPE_PARAM_HEAD.match(inner))


def declaration_kind(underlying: TypeExpr) -> str:
    """Classify a declaration by its underlying type expression."""
    if isinstance(underlying, StructType):
        return 'struct'
    if isinstance(underlying, InterfaceType):
        return 'interface'
    return 'alias'


class GoSemicolons(PostLex):
    """Applies Go's automatic semicolon insertion to the token stream."""

    always_accept = ('_NL',)
    triggers = frozenset(['NAME', 'NUMBER', 'STRING', 'RUNE', '_RPAR', '_RSQB', '_RBRACE'])

    def __init__(self) -> None:
        self.code_lines: set = set()

    def process(self, stream):
        last = None
        for token in stream:
            if token.type == '_NL':
                if last is not None and last.type in self.triggers:
                    last = Token.new_borrow_pos('_SEMI', ';', token)
                    yield last
                continue
            self.code_lines.add(token.line)
            last = token
            yield token
        if last is not None and last.type in self.triggers:
            yield Token('_SEMI', ';')


class GoTransformer(Transformer):
    '''Converts the syntax tree into TypeExpr and declaration namedtuples'''

    def __init__(self, text: str) -> None:
        super().__init__()
        self.text = text

    def package_clause(self, tokens):
        return tokens[0].value

    def import_alias(self, tokens):
        return tokens[0].value if tokens else '.'

    def import_spec(self, tokens):
        alias, path = tokens
        return Import(unquote_go_string(path.value), alias)

    def import_decl(self, tokens):
        return list(tokens)

    def type_spec(self, tokens):
        name, equal, type_expr = tokens
        return name, equal is not None, type_expr

    def type_decl(self, tokens):
        keyword, specs = tokens[0], tokens[1:]
        return [_TypeSpec(name, alias, type_expr, keyword.line, len(specs)) for name, alias, type_expr in specs]

    def other_decl(self, tokens):
        return None

    def named_type(self, tokens):
        name = tokens[0].value
        if name == 'any':
            return InterfaceType()
        if name in BASIC_TYPES:
            return BasicType(name)
        return NamedType(name)

    def selector_type(self, tokens):
        return SelectorType(tokens[0].value, tokens[1].value)

    @v_args(meta=True)
    def array_len(self, meta, children):
        if meta.empty:
            return _Brackets('')
        return _Brackets(self.text[meta.start_pos:meta.end_pos])

    def generic_type(self, tokens):
        return UnsupportedType('generic')

    def array_type(self, tokens):
        brackets, element = tokens
        if is_type_parameter_list(brackets.text):
            # 'type Set[T comparable] ...' declares a generic type
            return UnsupportedType('generic')
        return ArrayType(element)

    def map_type(self, tokens):
        return MapType(tokens[0], tokens[1])

    def struct_type(self, tokens):
        fields = []
        for field_list in tokens:
            fields.extend(field_list)
        return StructType(fields)

    def interface_type(self, tokens):
        return InterfaceType()

    def chan_type(self, tokens):
        return UnsupportedType('chan')

    def func_type(self, tokens):
        return UnsupportedType('func')

    def named_field(self, tokens):
        tag_token = tokens[-1]
        names = [t.value for t in tokens[:-1] if isinstance(t, Token) and t.type == 'NAME']
        type_expr = next(t for t in tokens[:-1] if not isinstance(t, Token))
        tag = unquote_go_string(tag_token.value) if tag_token is not None else ''
        tags = parse_field_tags(tag)
        return [FieldDecl(name, type_expr, tag, tags, is_exported(name)) for name in names]

    def embedded_field(self, tokens):
        tag_token = tokens[-1]
        names = [t.value for t in tokens[:-1]]
        if len(names) == 2:
            type_expr = SelectorType(names[0], names[1])
        else:
            type_expr = self.named_type([tokens[0]])
        tag = unquote_go_string(tag_token.value) if tag_token is not None else ''
        return [FieldDecl(None, type_expr, tag, parse_field_tags(tag), is_exported(names[-1]))]

    def embedded_generic_field(self, tokens):
        tag_token = tokens[-1]
        names = [t.value for t in tokens[:-1] if isinstance(t, Token)]
        tag = unquote_go_string(tag_token.value) if tag_token is not None else ''
        return [FieldDecl(None, UnsupportedType('generic'), tag, parse_field_tags(tag), is_exported(names[-1]))]

    def start(self, tokens):
        package = tokens[0]
        imports: List[Import] = []
        specs: List[_TypeSpec] = []
        for item in tokens[1:]:
            if not item:
                continue
            if isinstance(item[0], Import):
                imports.extend(item)
            else:
                specs.extend(item)
        return package, imports, specs


def _clean_comment(text: str) -> str:
    if text.startswith('//'):
        return text[2:].strip()
    return '\n'.join(line.strip().lstrip('*').strip() for line in text[2:-2].split('\n')).strip()


def build_doc_comments(comments: List[Token], code_lines: set) -> Dict[int, str]:
    """
    Group consecutive comments and key them by the line that follows the group.

    Comments trailing code on the same line never start a doc comment.
    """
    docs: Dict[int, str] = {}
    group: List[Token] = []
    for comment in comments:
        if group and comment.line == group[-1].end_line + 1 and comment.line not in code_lines:
            group.append(comment)
            continue
        if group:
            docs[group[-1].end_line + 1] = '\n'.join(_clean_comment(c.value) for c in group)
        group = [] if comment.line in code_lines else [comment]
    if group:
        docs[group[-1].end_line + 1] = '\n'.join(_clean_comment(c.value) for c in group)
    return docs


def parse(data: str, path: str = '<source>') -> GoFile:
    """Parse the declarations of a single Go source file."""
    comments: List[Token] = []
    postlex = GoSemicolons()
    parser = Lark(GRAMMAR, start='start', parser='lalr', postlex=postlex, propagate_positions=True,
                  lexer_callbacks={'COMMENT': comments.append})
    try:
        tree = parser.parse(data)
    except UnexpectedInput as e:
        raise ImportFailureError(f"syntax error at line {e.line}, column {e.column}", path, e) from e
    package, imports, specs = GoTransformer(data).transform(tree)

    docs = build_doc_comments(comments, postlex.code_lines)
    types: Dict[str, TypeDeclaration] = {}
    for spec in specs:
        doc = docs.get(spec.name.line, '')
        if not doc and spec.group_size == 1:
            doc = docs.get(spec.keyword_line, '')
        types[spec.name.value] = TypeDeclaration(spec.name.value, declaration_kind(spec.type), spec.type,
                                                 doc, spec.alias, path)
    logger.debug("parsed %s: package %s, %d types", path, package, len(types))
    return GoFile(path, package, imports, types)


def parse_from_file(file: str, encoding: str = "utf-8") -> GoFile:
    try:
        with open(file, 'r', encoding=encoding) as f:
            data = f.read()
    except OSError as e:
        raise ImportFailureError(f"cannot read {file}", file, e) from e
    return parse(data, file)
