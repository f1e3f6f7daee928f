"""
Declaration index over Go packages.

Resolves import paths to directories, parses each package directory once and
answers type-name lookups across a package and its imports.
"""

import glob
import logging
import os
import re
from typing import Dict, List, NamedTuple, Optional, Tuple

from gotize import goparser
from gotize.common import has_decorator, split_type_expression
from gotize.errors import ImportFailureError, NotFoundError
from gotize.goparser import Import, TypeDeclaration

logger = logging.getLogger(__name__)

GoPackage = NamedTuple('GoPackage', [('name', str), ('dir', str), ('files', List['goparser.GoFile']),
                                     ('imports', List['Import']), ('types', Dict[str, 'TypeDeclaration'])])

_MODULE_LINE = re.compile(r'^\s*module\s+"?([^\s"]+)"?', re.MULTILINE)


def find_go_module(start_dir: str) -> Optional[Tuple[str, str]]:
    """Find the nearest go.mod at or above start_dir and return (module path, module root)."""
    current = os.path.abspath(start_dir)
    while True:
        go_mod = os.path.join(current, 'go.mod')
        if os.path.isfile(go_mod):
            with open(go_mod, 'r', encoding='utf-8') as f:
                match = _MODULE_LINE.search(f.read())
            if match:
                return match.group(1), current
            return None
        parent = os.path.dirname(current)
        if parent == current:
            return None
        current = parent


def go_source_roots() -> List[str]:
    """Return the $GOPATH/src and $GOROOT/src directories to search for packages."""
    roots = []
    gopath = os.environ.get('GOPATH') or os.path.join(os.path.expanduser('~'), 'go')
    for entry in gopath.split(os.pathsep):
        if entry:
            roots.append(os.path.join(entry, 'src'))
    goroot = os.environ.get('GOROOT')
    if goroot:
        roots.append(os.path.join(goroot, 'src'))
    return roots


class DeclarationIndex:
    """Parses and caches Go packages and looks up their type declarations."""

    def __init__(self) -> None:
        self.dir_packages: Dict[str, GoPackage] = {}

    def resolve_package_dir(self, import_path: str, relative_to: Optional[str] = None) -> str:
        """
        Map an import path or a directory path to a package directory.

        Args:
            import_path (str): Directory path, or Go import path.
            relative_to (str): Directory of the importing package, if any.

        Returns:
            str: Absolute directory of the package.
        """
        candidates = []
        if os.path.isabs(import_path):
            candidates.append(import_path)
        else:
            if relative_to and import_path.startswith('.'):
                candidates.append(os.path.join(relative_to, import_path))
            candidates.append(os.path.join(os.getcwd(), import_path))
        for candidate in candidates:
            if os.path.isdir(candidate):
                return os.path.abspath(candidate)

        module = find_go_module(relative_to or os.getcwd())
        if module:
            module_path, module_root = module
            if import_path == module_path or import_path.startswith(module_path + '/'):
                candidate = os.path.join(module_root, *import_path[len(module_path):].split('/'))
                if os.path.isdir(candidate):
                    return os.path.abspath(candidate)
            candidate = os.path.join(module_root, 'vendor', *import_path.split('/'))
            if os.path.isdir(candidate):
                return os.path.abspath(candidate)

        for root in go_source_roots():
            candidate = os.path.join(root, *import_path.split('/'))
            if os.path.isdir(candidate):
                return os.path.abspath(candidate)
        raise ImportFailureError(f"cannot find package '{import_path}'", relative_to)

    def import_package(self, import_path: str, relative_to: Optional[str] = None) -> GoPackage:
        """Resolve an import path and return the parsed package."""
        package_dir = self.resolve_package_dir(import_path, relative_to)
        return self.parse_dir(package_dir)

    def parse_dir(self, dir_path: str) -> GoPackage:
        """Parse all non-test Go files of a directory into a package and cache it."""
        dir_path = os.path.abspath(dir_path)
        if dir_path in self.dir_packages:
            logger.debug("package cache hit for %s", dir_path)
            return self.dir_packages[dir_path]

        file_names = sorted(f for f in glob.glob(os.path.join(dir_path, '*.go')) if not f.endswith('_test.go'))
        if not file_names:
            raise ImportFailureError(f"no Go files in {dir_path}")
        go_files = [goparser.parse_from_file(f) for f in file_names]

        package_names = sorted({f.package for f in go_files if not f.package.endswith('_test')})
        if len(package_names) != 1:
            raise ImportFailureError(f"expected exactly one package in {dir_path}, found {package_names}")
        package_name = package_names[0]

        imports: List[Import] = []
        types: Dict[str, TypeDeclaration] = {}
        files = [f for f in go_files if f.package == package_name]
        for go_file in files:
            for imp in go_file.imports:
                if imp not in imports:
                    imports.append(imp)
            for name, decl in go_file.types.items():
                types.setdefault(name, decl)

        package = GoPackage(package_name, dir_path, files, imports, types)
        self.dir_packages[dir_path] = package
        logger.debug("imported package %s from %s (%d types)", package_name, dir_path, len(types))
        return package

    def index(self, package_path: str) -> Dict[str, TypeDeclaration]:
        """Return the type declarations of a package, keyed by name."""
        return self.import_package(package_path).types

    def lookup(self, package: GoPackage, type_str: str) -> Tuple[GoPackage, TypeDeclaration]:
        """
        Find the declaration a type expression string refers to.

        The package's own names take priority. A qualified name is searched in
        the imports whose alias or declared package name matches, in import
        order; the first package declaring the name wins.

        Returns:
            (GoPackage, TypeDeclaration): The declaring package and the declaration.
        """
        pkg_name, type_name = split_type_expression(type_str)
        if pkg_name is None or pkg_name == package.name:
            if type_name in package.types:
                return package, package.types[type_name]
            if pkg_name is None:
                for imp in package.imports:
                    if imp.alias != '.':
                        continue
                    dot_package = self.import_package(imp.path, package.dir)
                    if type_name in dot_package.types:
                        return dot_package, dot_package.types[type_name]
            raise NotFoundError(f"{type_name} not found in package {package.name}", package.dir)

        for imp in package.imports:
            if imp.alias in ('_', '.'):
                continue
            if imp.alias is not None and imp.alias != pkg_name:
                continue
            try:
                imported = self.import_package(imp.path, package.dir)
            except ImportFailureError:
                if imp.alias is not None or imp.path.rsplit('/', 1)[-1] == pkg_name:
                    raise
                logger.debug("skipping import %s while looking for %s", imp.path, type_str)
                continue
            if imp.alias is None and imported.name != pkg_name:
                continue
            if type_name in imported.types:
                return imported, imported.types[type_name]
        raise NotFoundError(f"{pkg_name}.{type_name} not found", package.dir)

    def import_path_of(self, package: GoPackage, pkg_name: str) -> Optional[str]:
        """Return the import path bound to a package name in the package's imports."""
        for imp in package.imports:
            if imp.alias == pkg_name:
                return imp.path
        for imp in package.imports:
            if imp.alias is None and imp.path.rsplit('/', 1)[-1] == pkg_name:
                return imp.path
        return None


def discover_decorated_types(package: GoPackage, decorator: str) -> List[str]:
    """
    Return the names of all types whose doc comment carries the decorator.

    A type qualifies if a line of its doc comment starts with the decorator
    as its first whitespace-delimited token.
    """
    return sorted(name for name, decl in package.types.items() if has_decorator(decl.doc, decorator))
