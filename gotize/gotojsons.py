"""
Module to convert Go type declarations to JSON schema definitions.
"""

import copy
import json
import logging
import threading
from typing import Any, Dict, List, NamedTuple, Optional, Tuple, Union

from gotize.common import json_tag_name, split_type_expression
from gotize.errors import (InvalidMapKeyError, NotFoundError, UnresolvedReferenceError,
                           UnsupportedTypeExprError)
from gotize.goindex import DeclarationIndex, GoPackage, discover_decorated_types
from gotize.goparser import (ArrayType, BasicType, InterfaceType, MapType, NamedType, SelectorType,
                             StructType, TypeDeclaration, TypeExpr, UnsupportedType)

logger = logging.getLogger(__name__)

JsonSchema = Dict[str, Any]

DEFAULT_REF_PREFIX = '#/definitions/'

ParserOptions = NamedTuple('ParserOptions', [('ignore_json_tag', bool), ('ref_prefix', str)])
ParserOptions.__new__.__defaults__ = (False, DEFAULT_REF_PREFIX)
DEFAULT_PARSER_OPTIONS = ParserOptions(ignore_json_tag=False, ref_prefix=DEFAULT_REF_PREFIX)

# Go basic type -> (JSON schema type, format)
BASIC_TYPES: Dict[str, Tuple[str, str]] = {
    'bool': ('boolean', ''),
    'uint': ('integer', 'int64'), 'uint8': ('integer', 'int32'), 'uint16': ('integer', 'int32'),
    'uint32': ('integer', 'int32'), 'uint64': ('integer', 'int64'),
    'int': ('integer', 'int64'), 'int8': ('integer', 'int32'), 'int16': ('integer', 'int32'),
    'int32': ('integer', 'int32'), 'int64': ('integer', 'int64'),
    'uintptr': ('integer', 'int64'),
    'float32': ('number', 'float'), 'float64': ('number', 'double'),
    'string': ('string', ''),
    'complex64': ('number', 'float'), 'complex128': ('number', 'double'),
    'byte': ('string', 'byte'), 'rune': ('string', 'byte'),
    'time': ('string', 'date-time'),
}

TIME_IMPORT_PATH = 'time'

# declarations visited while inlining non-struct named types: (package dir, name)
_Chain = Tuple[Tuple[str, str], ...]


def basic_type_schema(name: str, title: str = '') -> JsonSchema:
    """Build the scalar schema of a Go basic type."""
    if name not in BASIC_TYPES:
        raise UnsupportedTypeExprError(f"invalid basic type {name}", title or None)
    json_type, json_format = BASIC_TYPES[name]
    schema: JsonSchema = {'title': title} if title else {}
    schema['type'] = json_type
    if json_format:
        schema['format'] = json_format
    return schema


class GoToJsonSchema:
    """Resolves Go type declarations into a registry of JSON schema definitions."""

    def __init__(self, index: Optional[DeclarationIndex] = None) -> None:
        self.index = index if index is not None else DeclarationIndex()
        self.type_map: Dict[str, Optional[JsonSchema]] = {}
        self.opts = DEFAULT_PARSER_OPTIONS
        self.lock = threading.Lock()

    def options(self, opts: Optional[ParserOptions] = None) -> ParserOptions:
        """Get or set the parser options."""
        if opts is not None:
            self.opts = opts
        return self.opts

    def import_package(self, package_path: str) -> GoPackage:
        return self.index.import_package(package_path)

    def parse(self, package: Union[GoPackage, str], type_str: str) -> JsonSchema:
        """
        Parse a type expression and return its JSON schema.

        Everything the type transitively references is registered as well and
        can be retrieved with definitions().

        Args:
            package: The package (or package path) the expression is evaluated in.
            type_str (str): 'Name' or 'pkg.Name'.

        Returns:
            JsonSchema: The schema of the root type.
        """
        if isinstance(package, str):
            package = self.index.import_package(package)
        decl_package, decl = self.index.lookup(package, type_str)
        with self.lock:
            if self.type_map.get(decl.name, None) is not None:
                logger.debug("discarding previous definition of %s", decl.name)
                del self.type_map[decl.name]
        schema = self.resolve_type(decl_package, decl.underlying, decl.name)
        if schema is None:
            # the title is reserved by a resolution still running in another thread
            logger.debug("building %s while it is reserved", decl.name)
            schema = self.build_schema(decl_package, decl.underlying, decl.name, ())
            with self.lock:
                if self.type_map.get(decl.name, None) is None:
                    self.type_map[decl.name] = schema
        return copy.deepcopy(schema)

    def parse_with_definitions(self, package: Union[GoPackage, str], type_str: str) -> Tuple[JsonSchema, Dict[str, JsonSchema]]:
        """Parse a type expression and return its schema and all registered definitions."""
        schema = self.parse(package, type_str)
        return schema, self.definitions()

    def definitions(self) -> Dict[str, JsonSchema]:
        """Return all registered definitions, sorted by title."""
        with self.lock:
            titles = sorted(k for k, v in self.type_map.items() if v is not None)
            return {title: copy.deepcopy(self.type_map[title]) for title in titles}

    def definitions_json(self) -> str:
        return json.dumps(self.definitions(), indent=2)

    def reset(self) -> None:
        """Discard all definitions. Parsed packages stay cached."""
        with self.lock:
            self.type_map = {}

    def ref(self, title: str) -> JsonSchema:
        return {'$ref': self.opts.ref_prefix + title}

    def resolve_type(self, package: GoPackage, expr: TypeExpr, title: str, chain: _Chain = ()) -> Optional[JsonSchema]:
        """
        Build and register the schema of a type under its title.

        The title is reserved before descending into the type, so a type that
        references itself finds the reservation and is referenced instead of
        being expanded again. A reservation is withdrawn if building fails.
        """
        if title:
            with self.lock:
                if title in self.type_map:
                    return self.type_map[title]
                self.type_map[title] = None
        try:
            schema = self.build_schema(package, expr, title, chain)
        except Exception:
            if title:
                with self.lock:
                    if title in self.type_map and self.type_map[title] is None:
                        del self.type_map[title]
            raise
        if title:
            with self.lock:
                self.type_map[title] = schema
            logger.debug("registered definition %s", title)
        return schema

    def build_schema(self, package: GoPackage, expr: TypeExpr, title: str, chain: _Chain) -> JsonSchema:
        """Build the schema of a type expression without touching the registry."""
        if isinstance(expr, StructType):
            return self.build_struct(package, expr, title)
        if isinstance(expr, BasicType):
            return basic_type_schema(expr.name, title)
        if isinstance(expr, InterfaceType):
            return {'title': title} if title else {}
        if isinstance(expr, UnsupportedType):
            raise UnsupportedTypeExprError(f"unsupported {expr.kind} type", title or None)
        if isinstance(expr, SelectorType) and self.is_time_type(package, expr):
            return basic_type_schema('time', title)
        if isinstance(expr, (NamedType, SelectorType)):
            decl_package, decl = self.lookup(package, expr, title)
            chain = self.extend_chain(chain, decl_package, decl, title)
            return self.build_schema(decl_package, decl.underlying, title, chain)
        if isinstance(expr, (ArrayType, MapType)):
            schema = self.resolve_type_ref(package, expr, title, chain)
            return {'title': title, **schema} if title else schema
        raise UnsupportedTypeExprError(f"invalid type expression {expr!r}", title or None)

    def resolve_type_ref(self, package: GoPackage, expr: TypeExpr, title: str, chain: _Chain = ()) -> JsonSchema:
        """
        Build the schema used where a type is referenced: a property, an item,
        a map value or an allOf entry.

        Struct types are registered and referenced through $ref; anonymous
        structs are registered under the given (synthesized) title. Everything
        else is inlined: named types whose underlying type is not a struct,
        including ones selected from other packages such as shared.Level, are
        never registered under their own name.
        """
        if isinstance(expr, SelectorType) and self.is_time_type(package, expr):
            return basic_type_schema('time')
        if isinstance(expr, (NamedType, SelectorType)):
            decl_package, decl = self.lookup(package, expr, title)
            target_package, target = self.underlying_type(decl_package, decl, title)
            if isinstance(target, StructType):
                self.resolve_type(decl_package, decl.underlying, decl.name)
                return self.ref(decl.name)
            chain = self.extend_chain(chain, decl_package, decl, title)
            return self.resolve_type_ref(target_package, target, decl.name, chain)
        if isinstance(expr, StructType):
            if not title:
                return self.build_struct(package, expr, '')
            self.resolve_type(package, expr, title)
            return self.ref(title)
        if isinstance(expr, ArrayType):
            items = self.resolve_type_ref(package, expr.element, self.element_title(title, expr.element), chain)
            return {'type': 'array', 'items': items}
        if isinstance(expr, MapType):
            if not self.is_string_key(package, expr.key):
                raise InvalidMapKeyError(f"the type of map key must be string, got {self.describe(expr.key)}", title or None)
            values = self.resolve_type_ref(package, expr.value, self.element_title(title, expr.value), chain)
            return {'type': 'object', 'additionalProperties': values}
        return self.build_schema(package, expr, '', chain)

    def build_struct(self, package: GoPackage, expr: StructType, title: str) -> JsonSchema:
        """
        Build an object schema from a struct type.

        Properties are assigned in alphabetical order of their names. Embedded
        fields become allOf entries; if the struct also declares fields of its
        own, those are wrapped into one more allOf entry.
        """
        honour_tags = not self.opts.ignore_json_tag
        named: List[Tuple[str, Any]] = []
        embedded = []
        for field in expr.fields:
            if honour_tags and field.tags['json'] == '-':
                continue
            json_name = json_tag_name(field.tags['json']) if honour_tags else ''
            if field.name is not None:
                if not field.exported and honour_tags:
                    continue
                named.append((json_name or field.name, field))
            elif json_name:
                named.append((json_name, field))
            else:
                embedded.append(field)
        named.sort(key=lambda item: item[0])

        all_of = [self.resolve_type_ref(package, field.type, '') for field in embedded]

        properties: Dict[str, JsonSchema] = {}
        required = set()
        for name, field in named:
            field_title = ''
            if title and field.name and isinstance(field.type, (StructType, ArrayType, MapType)):
                field_title = f"{title}_{field.name}"
            prop = dict(self.resolve_type_ref(package, field.type, field_title))
            if field.tags['description']:
                prop['description'] = field.tags['description']
            if field.tags['required'] == 'true':
                required.add(name)
            properties[name] = prop

        schema: JsonSchema = {'title': title} if title else {}
        schema['type'] = 'object'
        if all_of:
            if properties:
                own: JsonSchema = {'type': 'object', 'properties': properties}
                if required:
                    own['required'] = sorted(required)
                all_of.append(own)
            schema['allOf'] = all_of
        elif properties:
            schema['properties'] = properties
            if required:
                schema['required'] = sorted(required)
        return schema

    @staticmethod
    def element_title(title: str, element: TypeExpr) -> str:
        if title and isinstance(element, (StructType, ArrayType, MapType)):
            return f"{title}_Elt"
        return ''

    def lookup(self, package: GoPackage, expr: Union[NamedType, SelectorType], title: str) -> Tuple[GoPackage, TypeDeclaration]:
        type_str = expr.name if isinstance(expr, NamedType) else f"{expr.package}.{expr.name}"
        try:
            return self.index.lookup(package, type_str)
        except NotFoundError as e:
            raise UnresolvedReferenceError(f"cannot resolve type {type_str}", title or package.name, e) from e

    def underlying_type(self, package: GoPackage, decl: TypeDeclaration, title: str) -> Tuple[GoPackage, TypeExpr]:
        """Follow a chain of named types to the first type that is not a plain name."""
        seen = {(package.dir, decl.name)}
        expr = decl.underlying
        while isinstance(expr, (NamedType, SelectorType)) and not (
                isinstance(expr, SelectorType) and self.is_time_type(package, expr)):
            package, decl = self.lookup(package, expr, title)
            if (package.dir, decl.name) in seen:
                raise UnsupportedTypeExprError(f"invalid recursive type {decl.name}", title or None)
            seen.add((package.dir, decl.name))
            expr = decl.underlying
        return package, expr

    @staticmethod
    def extend_chain(chain: _Chain, package: GoPackage, decl: TypeDeclaration, title: str) -> _Chain:
        key = (package.dir, decl.name)
        if key in chain:
            raise UnsupportedTypeExprError(f"invalid recursive type {decl.name}", title or None)
        return chain + (key,)

    def is_time_type(self, package: GoPackage, expr: SelectorType) -> bool:
        if expr.name != 'Time':
            return False
        import_path = self.index.import_path_of(package, expr.package)
        if import_path is None:
            return expr.package == TIME_IMPORT_PATH
        return import_path == TIME_IMPORT_PATH

    def is_string_key(self, package: GoPackage, expr: TypeExpr) -> bool:
        if isinstance(expr, BasicType):
            return expr.name == 'string'
        if isinstance(expr, SelectorType) and self.is_time_type(package, expr):
            return False
        if isinstance(expr, (NamedType, SelectorType)):
            decl_package, decl = self.lookup(package, expr, '')
            target_package, target = self.underlying_type(decl_package, decl, '')
            return self.is_string_key(target_package, target)
        return False

    @staticmethod
    def describe(expr: TypeExpr) -> str:
        if isinstance(expr, (NamedType, BasicType)):
            return expr.name
        if isinstance(expr, SelectorType):
            return f"{expr.package}.{expr.name}"
        return type(expr).__name__


def collect_type_expressions(package: GoPackage, type_expressions: Union[str, List[str], None],
                             decorator: Optional[str]) -> List[str]:
    """Merge explicit (comma separated) type expressions with the decorated types of the package."""
    if isinstance(type_expressions, str):
        type_expressions = type_expressions.split(',')
    exprs = []
    for expr in type_expressions or []:
        exprs.extend(e.strip() for e in expr.split(',') if e.strip())
    if decorator:
        exprs.extend(name for name in discover_decorated_types(package, decorator) if name not in exprs)
    if not exprs:
        raise ValueError('No type expressions given and no decorated types found.')
    for expr in exprs:
        split_type_expression(expr)
    return exprs


def convert_go_to_json_schema(package_path: str, json_schema_path: Optional[str] = None,
                              type_expressions: Union[str, List[str], None] = None,
                              decorator: Optional[str] = None, ignore_json_tag: bool = False,
                              ref_prefix: str = DEFAULT_REF_PREFIX) -> Dict[str, JsonSchema]:
    """
    Convert Go type declarations to a JSON schema definitions file.

    Args:
        package_path (str): Directory or import path of the Go package.
        json_schema_path (str): Path of the definitions file to write, stdout if None.
        type_expressions: Type expressions to convert, as a list or comma separated.
        decorator (str): Also convert every type whose doc comment carries this marker.
        ignore_json_tag (bool): Include unexported fields and ignore json tags.
        ref_prefix (str): Prefix of $ref values.

    Returns:
        The definitions that were written.
    """
    converter = GoToJsonSchema()
    converter.options(ParserOptions(ignore_json_tag=ignore_json_tag, ref_prefix=ref_prefix or DEFAULT_REF_PREFIX))
    package = converter.import_package(package_path)
    for type_str in collect_type_expressions(package, type_expressions, decorator):
        converter.parse(package, type_str)
    if json_schema_path:
        with open(json_schema_path, 'w', encoding='utf-8') as json_file:
            json_file.write(converter.definitions_json())
    else:
        print(converter.definitions_json())
    return converter.definitions()
