""" Test the declaration index over Go packages """

import os
import sys
import tempfile
import unittest
from unittest.mock import patch

current_script_path = os.path.abspath(__file__)
project_root = os.path.dirname(os.path.dirname(current_script_path))
sys.path.append(project_root)

from gotize.errors import ImportFailureError, InvalidTypeExpressionError, NotFoundError
from gotize.goindex import DeclarationIndex, discover_decorated_types, find_go_module

go_root = os.path.join(project_root, 'test', 'go')
samples_dir = os.path.join(go_root, 'samples')
shared_dir = os.path.join(go_root, 'shared')


class TestDeclarationIndex(unittest.TestCase):
    """ Test the declaration index over Go packages """

    def setUp(self):
        self.index = DeclarationIndex()

    def test_import_directory(self):
        """ Test importing a package by directory """
        package = self.index.import_package(samples_dir)
        self.assertEqual(package.name, 'samples')
        self.assertEqual(package.dir, os.path.abspath(samples_dir))
        self.assertIn('BasicTypes', package.types)
        self.assertIn('Shipment', package.types)
        # test files are not part of the package
        self.assertEqual(sorted(os.path.basename(f.path) for f in package.files), ['aliases.go', 'types.go'])

    def test_import_is_memoized(self):
        """ Test that a package is parsed once """
        first = self.index.import_package(samples_dir)
        second = self.index.import_package(samples_dir)
        self.assertIs(first, second)
        self.assertIs(self.index.index(samples_dir), first.types)

    def test_import_by_module_path(self):
        """ Test resolving an import path through go.mod """
        package = self.index.import_package('example.com/fixtures/shared', relative_to=samples_dir)
        self.assertEqual(package.name, 'shared')
        self.assertEqual(package.dir, os.path.abspath(shared_dir))

    def test_import_relative_path(self):
        """ Test resolving a relative import path """
        package = self.index.import_package('../shared', relative_to=samples_dir)
        self.assertEqual(package.name, 'shared')

    def test_import_from_gopath(self):
        """ Test resolving an import path below $GOPATH/src """
        with tempfile.TemporaryDirectory() as gopath:
            lib_dir = os.path.join(gopath, 'src', 'example.org', 'lib')
            os.makedirs(lib_dir)
            with open(os.path.join(lib_dir, 'lib.go'), 'w', encoding='utf-8') as f:
                f.write('package lib\n\ntype Thing struct {\n\tName string\n}\n')
            with patch.dict(os.environ, {'GOPATH': gopath}):
                package = self.index.import_package('example.org/lib')
        self.assertEqual(package.name, 'lib')
        self.assertIn('Thing', package.types)

    def test_import_unknown_package(self):
        """ Test that an unknown import path fails """
        with self.assertRaises(ImportFailureError):
            self.index.import_package('example.com/does/not/exist', relative_to=samples_dir)

    def test_import_directory_without_go_files(self):
        """ Test that a directory without Go files fails """
        with tempfile.TemporaryDirectory() as empty:
            with self.assertRaises(ImportFailureError):
                self.index.import_package(empty)

    def test_import_directory_with_two_packages(self):
        """ Test that a directory mixing packages fails """
        with tempfile.TemporaryDirectory() as mixed:
            for name, package in (('a.go', 'one'), ('b.go', 'two')):
                with open(os.path.join(mixed, name), 'w', encoding='utf-8') as f:
                    f.write(f'package {package}\n')
            with self.assertRaises(ImportFailureError):
                self.index.import_package(mixed)

    def test_find_go_module(self):
        """ Test locating the enclosing go.mod """
        self.assertEqual(find_go_module(samples_dir), ('example.com/fixtures', os.path.abspath(go_root)))

    def test_lookup_own_type(self):
        """ Test looking up a type of the package itself """
        package = self.index.import_package(samples_dir)
        owner, decl = self.index.lookup(package, 'NormalStruct')
        self.assertIs(owner, package)
        self.assertEqual(decl.name, 'NormalStruct')
        self.assertEqual(decl.kind, 'struct')
        owner, decl = self.index.lookup(package, 'samples.IntType')
        self.assertIs(owner, package)
        self.assertEqual(decl.kind, 'alias')

    def test_lookup_imported_type(self):
        """ Test looking up types through plain and aliased imports """
        package = self.index.import_package(samples_dir)
        owner, decl = self.index.lookup(package, 'shared.Address')
        self.assertEqual(owner.name, 'shared')
        self.assertEqual(decl.name, 'Address')
        aliased_owner, aliased = self.index.lookup(package, 'sh.Tag')
        self.assertIs(aliased_owner, owner)
        self.assertEqual(aliased.name, 'Tag')

    def test_lookup_not_found(self):
        """ Test looking up types that do not exist """
        package = self.index.import_package(samples_dir)
        with self.assertRaises(NotFoundError):
            self.index.lookup(package, 'Phantom')
        with self.assertRaises(NotFoundError):
            self.index.lookup(package, 'shared.Phantom')
        with self.assertRaises(NotFoundError):
            self.index.lookup(package, 'nowhere.Thing')

    def test_lookup_invalid_expression(self):
        """ Test malformed type expressions """
        package = self.index.import_package(samples_dir)
        for expr in ('a.b.C', '.C', 'a.', ''):
            with self.assertRaises(InvalidTypeExpressionError):
                self.index.lookup(package, expr)

    def test_import_path_of(self):
        """ Test mapping package names back to import paths """
        package = self.index.import_package(samples_dir)
        self.assertEqual(self.index.import_path_of(package, 'time'), 'time')
        self.assertEqual(self.index.import_path_of(package, 'sh'), 'example.com/fixtures/shared')
        self.assertEqual(self.index.import_path_of(package, 'shared'), 'example.com/fixtures/shared')
        self.assertIsNone(self.index.import_path_of(package, 'json'))

    def test_discover_decorated_types(self):
        """ Test finding types by doc comment marker """
        package = self.index.import_package(samples_dir)
        self.assertEqual(discover_decorated_types(package, '+gotize'), ['P', 'Point', 'Tagged'])
        self.assertEqual(discover_decorated_types(package, '+nothing'), [])


if __name__ == '__main__':
    unittest.main()
