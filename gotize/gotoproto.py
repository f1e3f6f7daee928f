"""
Module to convert Go type declarations to proto3 messages.
"""

import logging
import threading
from typing import Dict, List, Optional, Set, Union

from gotize import proto3parser
from gotize.goindex import DeclarationIndex, GoPackage
from gotize.gotojsons import DEFAULT_PARSER_OPTIONS, GoToJsonSchema, ParserOptions, collect_type_expressions
from gotize.jsonstoproto import check_references, definition_message, render_messages
from gotize.proto3parser import Message

logger = logging.getLogger(__name__)


class GoToProto:
    """
    Converts Go types into proto3 messages.

    Messages loaded from a proto file (or set with set_messages) are kept as
    they are: a Go type of the same name never replaces them.
    """

    def __init__(self, index: Optional[DeclarationIndex] = None) -> None:
        self.index = index if index is not None else DeclarationIndex()
        self.message_map: Dict[str, Message] = {}
        self.preseeded: Set[str] = set()
        self.opts = DEFAULT_PARSER_OPTIONS
        self.lock = threading.Lock()

    def options(self, opts: Optional[ParserOptions] = None) -> ParserOptions:
        """Get or set the parser options."""
        if opts is not None:
            self.opts = opts
        return self.opts

    def messages(self) -> Dict[str, Message]:
        """Return all messages, sorted by name."""
        with self.lock:
            return {name: self.message_map[name] for name in sorted(self.message_map)}

    def set_messages(self, messages: Dict[str, Message]) -> None:
        """Replace all messages. The given messages take precedence over generated ones."""
        with self.lock:
            self.message_map = dict(messages)
            self.preseeded = set(messages)

    def load_proto_file(self, path: str) -> None:
        """Add the top-level messages of a proto file to the messages that take precedence."""
        proto_file = proto3parser.parse_from_file(path)
        with self.lock:
            for name, message in proto_file.messages.items():
                self.message_map[name] = message
                self.preseeded.add(name)
        logger.debug("loaded %d messages from %s", len(proto_file.messages), path)

    def reset(self) -> None:
        """Discard all messages. Parsed packages stay cached."""
        with self.lock:
            self.message_map = {}
            self.preseeded = set()

    def parse(self, package: Union[GoPackage, str], type_str: str) -> str:
        """
        Convert a Go type, and everything it references, into messages.

        Args:
            package: The package (or package path) the expression is evaluated in.
            type_str (str): 'Name' or 'pkg.Name'.

        Returns:
            str: The name of the root message.
        """
        converter = GoToJsonSchema(self.index)
        converter.options(self.opts)
        root = converter.parse(package, type_str)
        definitions = converter.definitions()
        with self.lock:
            preseeded = set(self.preseeded)
        messages = {title: definition_message(definitions[title], definitions, self.opts.ref_prefix)
                    for title in definitions if title not in preseeded}
        with self.lock:
            for title, message in messages.items():
                # a file loaded meanwhile still wins
                if title in self.preseeded:
                    logger.debug("keeping loaded message %s", title)
                    continue
                self.message_map[title] = message
        return root['title']

    def render_proto(self, proto_package: str) -> str:
        """Render all messages as a proto3 document."""
        with self.lock:
            messages = dict(self.message_map)
            generated = [m for name, m in messages.items() if name not in self.preseeded]
        check_references(generated, messages)
        return render_messages(messages, proto_package)


def convert_go_to_proto(package_path: str, proto_path: Optional[str] = None,
                        type_expressions: Union[str, List[str], None] = None,
                        proto_package: Optional[str] = None, decorator: Optional[str] = None,
                        proto_file: Optional[str] = None, ignore_json_tag: bool = False) -> str:
    """
    Convert Go type declarations to a proto3 file.

    Args:
        package_path (str): Directory or import path of the Go package.
        proto_path (str): Path of the proto file to write, stdout if None.
        type_expressions: Type expressions to convert, as a list or comma separated.
        proto_package (str): Package of the proto file, defaults to the Go package name.
        decorator (str): Also convert every type whose doc comment carries this marker.
        proto_file (str): Proto file whose messages take precedence over generated ones.
        ignore_json_tag (bool): Include unexported fields and ignore json tags.

    Returns:
        str: The proto3 text.
    """
    converter = GoToProto()
    converter.options(ParserOptions(ignore_json_tag=ignore_json_tag))
    if proto_file:
        converter.load_proto_file(proto_file)
    package = converter.index.import_package(package_path)
    for type_str in collect_type_expressions(package, type_expressions, decorator):
        converter.parse(package, type_str)
    proto = converter.render_proto(proto_package or package.name)
    if proto_path:
        with open(proto_path, 'w', encoding='utf-8') as proto_out:
            proto_out.write(proto)
    else:
        print(proto, end='')
    return proto
