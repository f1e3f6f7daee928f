""" Test parsing of Go declarations """

import os
import sys
import unittest

current_script_path = os.path.abspath(__file__)
project_root = os.path.dirname(os.path.dirname(current_script_path))
sys.path.append(project_root)

from gotize import goparser
from gotize.errors import ImportFailureError
from gotize.goparser import (ArrayType, BasicType, InterfaceType, MapType, NamedType, SelectorType, StructType,
                             UnsupportedType)

SOURCE = '''// Package demo is a parser fixture.
package demo

import (
	"fmt"
	t "time"
	. "example.com/dot"
	_ "example.com/sideeffect"
)

import "strings"

// Person is a person
// +gen
type Person struct {
	Name, Nick string `json:"name" required:"true"`
	Age        int    "json:\\"age\\""
	*Base
	other.Embedded `json:"embedded"`
	birth      t.Time
	Tags       []string
	Grid       [3][4]float64
	Index      map[string]*Person
	Any        interface{}
	Stringer   interface {
		String() string
	}
	Events     chan int
	Done       <-chan struct{}
	Callback   func(a, b int) (string, error)
	Anything   any
}

type (
	// ID identifies things
	ID int64

	Alias = Person
)

func (p *Person) String() string {
	return fmt.Sprintf("%s {%d}", strings.ToUpper(p.Name), p.Age)
}

var lookup = map[string]int{
	"a": 1,
}

const (
	A = iota
	B
)
'''


class TestGoParser(unittest.TestCase):
    """ Test parsing of Go declarations """

    def test_parse_package_and_imports(self):
        """ Test the package clause and all import forms """
        go_file = goparser.parse(SOURCE, 'demo.go')
        self.assertEqual(go_file.package, 'demo')
        self.assertEqual(go_file.path, 'demo.go')
        self.assertEqual([(i.path, i.alias) for i in go_file.imports], [
            ('fmt', None),
            ('time', 't'),
            ('example.com/dot', '.'),
            ('example.com/sideeffect', '_'),
            ('strings', None),
        ])

    def test_parse_struct_fields(self):
        """ Test struct field shapes and tags """
        go_file = goparser.parse(SOURCE)
        person = go_file.types['Person']
        self.assertEqual(person.kind, 'struct')
        fields = person.underlying.fields
        names = [f.name for f in fields]
        self.assertEqual(names, ['Name', 'Nick', 'Age', None, None, 'birth', 'Tags', 'Grid', 'Index', 'Any',
                                 'Stringer', 'Events', 'Done', 'Callback', 'Anything'])
        by_name = {f.name: f for f in fields if f.name}
        self.assertEqual(by_name['Name'].type, BasicType('string'))
        self.assertEqual(by_name['Nick'].tags, {'json': 'name', 'required': 'true', 'description': ''})
        self.assertEqual(by_name['Age'].tag, 'json:"age"')
        self.assertEqual(by_name['Age'].tags['json'], 'age')
        self.assertFalse(by_name['birth'].exported)
        self.assertEqual(by_name['birth'].type, SelectorType('t', 'Time'))
        self.assertEqual(by_name['Tags'].type, ArrayType(BasicType('string')))
        self.assertEqual(by_name['Grid'].type, ArrayType(ArrayType(BasicType('float64'))))
        self.assertEqual(by_name['Index'].type, MapType(BasicType('string'), NamedType('Person')))
        self.assertEqual(by_name['Any'].type, InterfaceType())
        self.assertEqual(by_name['Stringer'].type, InterfaceType())
        self.assertEqual(by_name['Anything'].type, InterfaceType())
        self.assertEqual(by_name['Events'].type, UnsupportedType('chan'))
        self.assertEqual(by_name['Done'].type, UnsupportedType('chan'))
        self.assertEqual(by_name['Callback'].type, UnsupportedType('func'))

        base, embedded = fields[3], fields[4]
        self.assertEqual(base.type, NamedType('Base'))
        self.assertEqual(base.tag, '')
        self.assertEqual(embedded.type, SelectorType('other', 'Embedded'))
        self.assertEqual(embedded.tags['json'], 'embedded')

    def test_parse_grouped_types_and_docs(self):
        """ Test grouped type declarations, aliases and doc comments """
        go_file = goparser.parse(SOURCE)
        self.assertEqual(sorted(go_file.types), ['Alias', 'ID', 'Person'])
        self.assertEqual(go_file.types['Person'].doc, 'Person is a person\n+gen')
        self.assertEqual(go_file.types['ID'].doc, 'ID identifies things')
        self.assertEqual(go_file.types['ID'].kind, 'alias')
        self.assertEqual(go_file.types['ID'].underlying, BasicType('int64'))
        self.assertFalse(go_file.types['ID'].alias)
        self.assertTrue(go_file.types['Alias'].alias)
        self.assertEqual(go_file.types['Alias'].underlying, NamedType('Person'))
        self.assertEqual(go_file.types['Alias'].doc, '')

    def test_parse_channel_directions(self):
        """ Test bidirectional, receive-only and send-only channels """
        go_file = goparser.parse('package x\n\ntype C struct {\n\tIn <-chan int\n\tOut chan<- int\n'
                                 '\tSpaced chan <- string\n\tBoth chan int\n}\n\ntype S chan<- []byte\n')
        fields = go_file.types['C'].underlying.fields
        self.assertEqual([f.name for f in fields], ['In', 'Out', 'Spaced', 'Both'])
        for field in fields:
            self.assertEqual(field.type, UnsupportedType('chan'))
        self.assertEqual(go_file.types['S'].underlying, UnsupportedType('chan'))

    def test_parse_generic_declarations(self):
        """ Test type parameter lists and instantiated generic types """
        go_file = goparser.parse('''package x

type Pair[K comparable, V any] struct {
	Key   K
	Value V
}

type Set[T comparable] map[T]struct{}

type Number[T ~int | ~float64] []T

type Holder struct {
	Items   List[int]
	Lookup  other.Map[string, int] `json:"lookup"`
	Pairs   []Pair[string, int]
	List[string]
	Fixed   [size]int
	Product [rows * cols]float32
	Scoped  [other.Size]string
}
''')
        for name in ('Pair', 'Set', 'Number'):
            self.assertEqual(go_file.types[name].underlying, UnsupportedType('generic'))
            self.assertEqual(go_file.types[name].kind, 'alias')
        fields = go_file.types['Holder'].underlying.fields
        self.assertEqual([f.name for f in fields], ['Items', 'Lookup', 'Pairs', None, 'Fixed', 'Product', 'Scoped'])
        self.assertEqual(fields[0].type, UnsupportedType('generic'))
        self.assertEqual(fields[1].type, UnsupportedType('generic'))
        self.assertEqual(fields[1].tags['json'], 'lookup')
        self.assertEqual(fields[2].type, ArrayType(UnsupportedType('generic')))
        self.assertEqual(fields[3].type, UnsupportedType('generic'))
        self.assertTrue(fields[3].exported)
        self.assertEqual(fields[4].type, ArrayType(BasicType('int')))
        self.assertEqual(fields[5].type, ArrayType(BasicType('float32')))
        self.assertEqual(fields[6].type, ArrayType(BasicType('string')))

    def test_type_parameter_list_detection(self):
        """ Test telling type parameter lists from array lengths """
        for text in ('[T any]', '[K, V any]', '[T ~int]', '[T interface{ String() string }]', '[S []E, E any]'):
            self.assertTrue(goparser.is_type_parameter_list(text), text)
        for text in ('[]', '[3]', '[N]', '[N*M]', '[rows * cols]', '[pkg.N]', '[...]', '[len(x)]'):
            self.assertFalse(goparser.is_type_parameter_list(text), text)

    def test_parse_empty_struct_and_interface(self):
        """ Test declarations without members """
        go_file = goparser.parse('package x\n\ntype E struct{}\ntype I interface{}\n')
        self.assertEqual(go_file.types['E'].underlying, StructType([]))
        self.assertEqual(go_file.types['E'].kind, 'struct')
        self.assertEqual(go_file.types['I'].kind, 'interface')

    def test_parse_without_trailing_newline(self):
        """ Test a file that ends directly after a declaration """
        go_file = goparser.parse('package x\ntype N int')
        self.assertEqual(go_file.types['N'].underlying, BasicType('int'))

    def test_parse_block_comment_doc(self):
        """ Test a block comment used as doc comment """
        go_file = goparser.parse('package x\n\n/*\n * Block documents B\n */\ntype B struct {\n\tX int\n}\n')
        self.assertEqual(go_file.types['B'].doc, 'Block documents B')

    def test_trailing_comment_is_not_doc(self):
        """ Test that a comment after code does not document the next type """
        go_file = goparser.parse('package x\n\ntype A int // trailing\ntype B int\n')
        self.assertEqual(go_file.types['B'].doc, '')

    def test_syntax_error(self):
        """ Test that a syntax error is reported as an import failure """
        with self.assertRaises(ImportFailureError) as ctx:
            goparser.parse('package x\n\ntype A struct {\n', 'broken.go')
        self.assertIn('broken.go', str(ctx.exception))

    def test_parse_from_file(self):
        """ Test parsing a fixture file """
        go_file = goparser.parse_from_file(os.path.join(project_root, 'test', 'go', 'shared', 'shared.go'))
        self.assertEqual(go_file.package, 'shared')
        self.assertEqual(sorted(go_file.types), ['Address', 'Level', 'Tag'])

    def test_parse_missing_file(self):
        """ Test reading a file that does not exist """
        with self.assertRaises(ImportFailureError):
            goparser.parse_from_file(os.path.join(project_root, 'test', 'go', 'missing.go'))


if __name__ == '__main__':
    unittest.main()
