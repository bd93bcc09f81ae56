#!/usr/bin/env python3
"""
proto_schema.py - Message descriptor tree for region decoding

Builds a read-only descriptor tree (message types, enums, field descriptors)
from either .proto source or a YAML/JSON descriptor file, then binds it:
every field type name is resolved once, against the enclosing scopes, into
a nested MessageType, an EnumType, or a ScalarKind with a direct reader
function. The decoder never dispatches on type name strings.

Supported .proto subset:
    - syntax / edition, package, import, option
    - nested message and enum blocks
    - optional / required / repeated labels, oneof (members flattened)
    - map<K, V> fields (descriptor only; values are not decoded)
    - [packed = true|false] field option
    - reserved, extensions, extend and service blocks are skipped

YAML descriptor format (syntax defaults to proto3):
    package: example
    syntax: proto3
    messages:
      Person:
        fields:
          - {name: name, id: 1, type: string}
          - {name: phones, id: 4, type: PhoneNumber, repeated: true}
        messages:
          PhoneNumber:
            fields:
              - {name: number, id: 1, type: string}
    enums:
      PhoneType: {MOBILE: 0, HOME: 1, WORK: 2}

Usage:
    from proto_schema import load_schema

    schema = load_schema("person.proto")
    print(schema.message_type_names())
    person = schema.lookup_type("Person")
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

import yaml

from wire_reader import SCALAR_READERS, ScalarKind, WireReader, read_enum


MAX_FIELD_NUMBER = (1 << 29) - 1


class SchemaError(ValueError):
    """Invalid schema source or unresolvable type lookup."""


@dataclass(eq=False)
class EnumType:
    """Enum descriptor: value name -> number."""
    name: str
    full_name: str
    values: Dict[str, int] = field(default_factory=dict)

    def name_of(self, number: int) -> Optional[str]:
        for name, value in self.values.items():
            if value == number:
                return name
        return None


@dataclass(eq=False)
class FieldDescriptor:
    """
    Field descriptor.

    kind/read are filled in by ProtoSchema.bind(): kind for scalar type
    names, read for scalars and enums. A field whose type name resolves to
    nothing keeps read=None and is skipped by the decoder.
    """
    id: int
    name: str
    type_name: str
    repeated: bool = False
    packed: Optional[bool] = None  # None = syntax default, set by bind()
    is_map: bool = False
    key_type: Optional[str] = None
    resolved: Optional[Union['MessageType', EnumType]] = None
    kind: Optional[ScalarKind] = None
    read: Optional[Callable[[WireReader], Any]] = None

    @property
    def message_type(self) -> Optional['MessageType']:
        return self.resolved if isinstance(self.resolved, MessageType) else None

    @property
    def enum_type(self) -> Optional[EnumType]:
        return self.resolved if isinstance(self.resolved, EnumType) else None

    @property
    def packable(self) -> bool:
        if self.is_map:
            return False
        if self.kind is not None:
            return self.kind.packable
        return self.enum_type is not None


@dataclass(eq=False)
class MessageType:
    """Message descriptor with field lookup by number."""
    name: str
    full_name: str
    fields: List[FieldDescriptor] = field(default_factory=list)
    messages: List['MessageType'] = field(default_factory=list)
    enums: List[EnumType] = field(default_factory=list)

    def __post_init__(self):
        self._by_id: Dict[int, FieldDescriptor] = {}
        self._by_name: Dict[str, FieldDescriptor] = {}
        fields, self.fields = self.fields, []
        for fd in fields:
            self.add_field(fd)

    def add_field(self, fd: FieldDescriptor) -> FieldDescriptor:
        if not 1 <= fd.id <= MAX_FIELD_NUMBER:
            raise SchemaError(f"{self.full_name}.{fd.name}: field number {fd.id} out of range")
        if fd.id in self._by_id:
            raise SchemaError(
                f"{self.full_name}: field number {fd.id} used by both "
                f"'{self._by_id[fd.id].name}' and '{fd.name}'"
            )
        if fd.name in self._by_name:
            raise SchemaError(f"{self.full_name}: duplicate field name '{fd.name}'")
        self.fields.append(fd)
        self._by_id[fd.id] = fd
        self._by_name[fd.name] = fd
        return fd

    def field_by_id(self, number: int) -> Optional[FieldDescriptor]:
        return self._by_id.get(number)

    def field_by_name(self, name: str) -> Optional[FieldDescriptor]:
        return self._by_name.get(name)


def _join(scope: str, name: str) -> str:
    return f"{scope}.{name}" if scope else name


class ProtoSchema:
    """
    Root of a descriptor tree.

    Holds top-level messages and enums plus a registry of every type by
    fully qualified name (without the leading dot).
    """

    def __init__(self, package: str = '', syntax: str = 'proto3'):
        self.package = package
        self.syntax = syntax
        self.messages: List[MessageType] = []
        self.enums: List[EnumType] = []
        self._types: Dict[str, Union[MessageType, EnumType]] = {}
        self._bound = False

    def _register(self, t: Union[MessageType, EnumType]) -> None:
        if t.full_name in self._types:
            raise SchemaError(f"Duplicate type name: {t.full_name}")
        self._types[t.full_name] = t
        if isinstance(t, MessageType):
            for e in t.enums:
                self._register(e)
            for m in t.messages:
                self._register(m)

    def add_message(self, msg: MessageType) -> MessageType:
        self._register(msg)
        self.messages.append(msg)
        self._bound = False
        return msg

    def add_enum(self, enum: EnumType) -> EnumType:
        self._register(enum)
        self.enums.append(enum)
        self._bound = False
        return enum

    def iter_messages(self) -> Iterator[MessageType]:
        """Depth-first over all message types in declaration order."""
        def walk(msgs: List[MessageType]) -> Iterator[MessageType]:
            for m in msgs:
                yield m
                yield from walk(m.messages)
        yield from walk(self.messages)

    def message_type_names(self) -> List[str]:
        """All reachable message type names, fully qualified."""
        return [m.full_name for m in self.iter_messages()]

    def lookup_type(self, name: str) -> MessageType:
        """
        Find a message type by fully qualified or unique short name.

        Binds the schema first if types were added since the last bind().

        Raises:
            SchemaError if the name is unknown, ambiguous, or not a message
        """
        if not self._bound:
            self.bind()
        name = name.lstrip('.')
        found = self._types.get(name)
        if found is None:
            matches = [t for full, t in self._types.items()
                       if full.endswith('.' + name)]
            if len(matches) > 1:
                names = ', '.join(sorted(t.full_name for t in matches))
                raise SchemaError(f"Ambiguous type name '{name}': {names}")
            if matches:
                found = matches[0]
        if found is None:
            raise SchemaError(f"No such type: {name}")
        if not isinstance(found, MessageType):
            raise SchemaError(f"{found.full_name} is an enum, not a message")
        return found

    def resolve_name(self, type_name: str, scope: str) -> Optional[Union[MessageType, EnumType]]:
        """Resolve a type reference from within `scope` using protobuf scoping rules."""
        if type_name.startswith('.'):
            return self._types.get(type_name[1:])
        parts = scope.split('.') if scope else []
        while True:
            candidate = _join('.'.join(parts), type_name)
            if candidate in self._types:
                return self._types[candidate]
            if not parts:
                return None
            parts.pop()

    def bind(self) -> 'ProtoSchema':
        """Resolve every field's type once and attach its reader."""
        for msg in self.iter_messages():
            for fd in msg.fields:
                self._bind_field(fd, msg.full_name)
        self._bound = True
        return self

    def _bind_field(self, fd: FieldDescriptor, scope: str) -> None:
        fd.kind = None
        fd.read = None
        fd.resolved = None
        if fd.is_map:
            fd.repeated = True
            fd.packed = False
            return
        try:
            fd.kind = ScalarKind.from_name(fd.type_name)
            fd.read = SCALAR_READERS[fd.kind]
        except KeyError:
            fd.resolved = self.resolve_name(fd.type_name, scope)
            if isinstance(fd.resolved, EnumType):
                fd.read = read_enum
        if fd.packed is None:
            fd.packed = fd.repeated and fd.packable and self.syntax != 'proto2'
        elif fd.packed and not (fd.repeated and fd.packable):
            fd.packed = False


# =============================================================================
# .proto source parser
# =============================================================================

_TOKEN_RE = re.compile(
    r'(?P<skip>\s+|//[^\n]*|/\*.*?\*/)'
    r'|(?P<str>"(?:[^"\\]|\\.)*"|\'(?:[^\'\\]|\\.)*\')'
    r'|(?P<num>[-+]?(?:0[xX][0-9a-fA-F]+|\d+(?:\.\d*)?(?:[eE][-+]?\d+)?))'
    r'|(?P<ident>\.?[A-Za-z_][\w]*(?:\.[A-Za-z_][\w]*)*)'
    r'|(?P<sym>[{}\[\]()<>;,=:])',
    re.DOTALL,
)

_LABELS = ('optional', 'required', 'repeated')


def _tokenize(text: str) -> List[tuple]:
    """Split source into (kind, value, line) tokens."""
    tokens = []
    pos = 0
    line = 1
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m:
            raise SchemaError(f"line {line}: unexpected character {text[pos]!r}")
        kind = m.lastgroup
        value = m.group(kind)
        if kind != 'skip':
            tokens.append((kind, value, line))
        line += value.count('\n')
        pos = m.end()
    return tokens


def _parse_int(text: str) -> int:
    sign = -1 if text.startswith('-') else 1
    digits = text.lstrip('+-')
    if digits.lower().startswith('0x'):
        return sign * int(digits, 16)
    if len(digits) > 1 and digits.startswith('0'):
        return sign * int(digits, 8)
    return sign * int(digits)


class _ProtoParser:
    """Recursive-descent parser over the token list."""

    def __init__(self, text: str):
        self.tokens = _tokenize(text)
        self.pos = 0
        # protoc treats a file without a syntax statement as proto2
        self.schema = ProtoSchema(syntax='proto2')

    def _peek(self, offset: int = 0) -> Optional[str]:
        i = self.pos + offset
        return self.tokens[i][1] if i < len(self.tokens) else None

    def _line(self) -> int:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos][2]
        return self.tokens[-1][2] if self.tokens else 1

    def _error(self, msg: str) -> SchemaError:
        return SchemaError(f"line {self._line()}: {msg}")

    def _next(self) -> str:
        if self.pos >= len(self.tokens):
            raise self._error("unexpected end of input")
        value = self.tokens[self.pos][1]
        self.pos += 1
        return value

    def _expect(self, value: str) -> None:
        got = self._next()
        if got != value:
            self.pos -= 1
            raise self._error(f"expected '{value}', got '{got}'")

    def _ident(self) -> str:
        if self.pos >= len(self.tokens) or self.tokens[self.pos][0] != 'ident':
            raise self._error(f"expected identifier, got '{self._peek()}'")
        return self._next()

    def _int(self) -> int:
        if self.pos >= len(self.tokens) or self.tokens[self.pos][0] != 'num':
            raise self._error(f"expected number, got '{self._peek()}'")
        try:
            return _parse_int(self._next())
        except ValueError:
            self.pos -= 1
            raise self._error(f"invalid integer '{self._peek()}'")

    def _string(self) -> str:
        if self.pos >= len(self.tokens) or self.tokens[self.pos][0] != 'str':
            raise self._error(f"expected string, got '{self._peek()}'")
        return self._next()[1:-1]

    def _skip_statement(self) -> None:
        """Skip to the terminating ';', stepping over any {...} aggregate."""
        depth = 0
        while True:
            tok = self._next()
            if tok == '{':
                depth += 1
            elif tok == '}':
                depth -= 1
            elif tok == ';' and depth == 0:
                return

    def _skip_block(self) -> None:
        while self._peek() != '{':
            self._next()
        depth = 0
        while True:
            tok = self._next()
            if tok == '{':
                depth += 1
            elif tok == '}':
                depth -= 1
                if depth == 0:
                    break
        if self._peek() == ';':
            self._next()

    def parse(self) -> ProtoSchema:
        schema = self.schema
        while self.pos < len(self.tokens):
            tok = self._next()
            if tok in ('syntax', 'edition'):
                self._expect('=')
                schema.syntax = self._string() if tok == 'syntax' else 'editions'
                self._expect(';')
            elif tok == 'package':
                schema.package = self._ident()
                self._expect(';')
            elif tok in ('import', 'option'):
                self._skip_statement()
            elif tok == 'message':
                schema.add_message(self._message(schema.package))
            elif tok == 'enum':
                schema.add_enum(self._enum(schema.package))
            elif tok in ('service', 'extend'):
                self._skip_block()
            elif tok == ';':
                continue
            else:
                self.pos -= 1
                raise self._error(f"unexpected '{tok}' at top level")
        return schema

    def _message(self, scope: str) -> MessageType:
        name = self._ident()
        msg = MessageType(name=name, full_name=_join(scope, name))
        self._expect('{')
        while True:
            tok = self._peek()
            if tok is None:
                raise self._error(f"unterminated message {name}")
            if tok == '}':
                self._next()
                break
            if tok == 'message':
                self._next()
                msg.messages.append(self._message(msg.full_name))
            elif tok == 'enum':
                self._next()
                msg.enums.append(self._enum(msg.full_name))
            elif tok in ('option', 'reserved', 'extensions'):
                self._skip_statement()
            elif tok == 'extend':
                self._skip_block()
            elif tok == 'oneof':
                self._next()
                self._oneof(msg)
            elif tok == ';':
                self._next()
            else:
                msg.add_field(self._field())
        return msg

    def _oneof(self, msg: MessageType) -> None:
        self._ident()
        self._expect('{')
        while self._peek() != '}':
            if self._peek() == 'option':
                self._skip_statement()
            elif self._peek() == ';':
                self._next()
            else:
                msg.add_field(self._field())
        self._next()

    def _field(self) -> FieldDescriptor:
        repeated = False
        if (self._peek() in _LABELS and self.pos + 1 < len(self.tokens)
                and self.tokens[self.pos + 1][0] == 'ident'):
            repeated = self._next() == 'repeated'
        if self._peek() == 'group':
            raise self._error("group fields are not supported")
        if self._peek() == 'map' and self._peek(1) == '<':
            self._next()
            self._expect('<')
            key_type = self._ident()
            self._expect(',')
            value_type = self._ident()
            self._expect('>')
            fd = FieldDescriptor(id=0, name='', type_name=value_type,
                                 repeated=True, is_map=True, key_type=key_type)
        else:
            fd = FieldDescriptor(id=0, name='', type_name=self._ident(), repeated=repeated)
        fd.name = self._ident()
        self._expect('=')
        fd.id = self._int()
        if self._peek() == '[':
            self._field_options(fd)
        self._expect(';')
        return fd

    def _field_options(self, fd: FieldDescriptor) -> None:
        self._expect('[')
        while True:
            name_parts = []
            while self._peek() != '=':
                name_parts.append(self._next())
            self._next()
            value = self._next()
            if value == '{':
                self.pos -= 1
                self._skip_block()
            if ''.join(name_parts) == 'packed':
                if value not in ('true', 'false'):
                    raise self._error(f"packed option must be true or false, got '{value}'")
                fd.packed = value == 'true'
            sep = self._next()
            if sep == ']':
                return
            if sep != ',':
                raise self._error(f"expected ',' or ']' in field options, got '{sep}'")

    def _enum(self, scope: str) -> EnumType:
        name = self._ident()
        enum = EnumType(name=name, full_name=_join(scope, name))
        self._expect('{')
        while True:
            tok = self._peek()
            if tok is None:
                raise self._error(f"unterminated enum {name}")
            if tok == '}':
                self._next()
                break
            if tok in ('option', 'reserved'):
                self._skip_statement()
            elif tok == ';':
                self._next()
            else:
                value_name = self._ident()
                self._expect('=')
                enum.values[value_name] = self._int()
                if self._peek() == '[':
                    self._skip_statement()
                else:
                    self._expect(';')
        return enum


def parse_proto(text: str) -> ProtoSchema:
    """Parse .proto source into a bound ProtoSchema."""
    return _ProtoParser(text).parse().bind()


# =============================================================================
# YAML / dict descriptors
# =============================================================================

def _enum_from_dict(name: str, body: Dict[str, Any], scope: str) -> EnumType:
    if not isinstance(body, dict):
        raise SchemaError(f"Enum {name}: expected mapping of value names to numbers")
    values = body.get('values', body)
    enum = EnumType(name=name, full_name=_join(scope, name))
    for value_name, number in values.items():
        if not isinstance(number, int):
            raise SchemaError(f"Enum {name}.{value_name}: number must be an integer")
        enum.values[str(value_name)] = number
    return enum


def _field_from_dict(msg_name: str, fdef: Dict[str, Any]) -> FieldDescriptor:
    if not isinstance(fdef, dict):
        raise SchemaError(f"Message {msg_name}: field entries must be mappings")
    name = fdef.get('name')
    number = fdef.get('id', fdef.get('number'))
    if not name or number is None:
        raise SchemaError(f"Message {msg_name}: field requires 'name' and 'id'")
    if 'map' in fdef:
        entry = fdef['map'] or {}
        if 'key' not in entry or 'value' not in entry:
            raise SchemaError(f"{msg_name}.{name}: map requires 'key' and 'value'")
        return FieldDescriptor(id=int(number), name=str(name), type_name=str(entry['value']),
                               repeated=True, is_map=True, key_type=str(entry['key']))
    if 'type' not in fdef:
        raise SchemaError(f"{msg_name}.{name}: missing 'type'")
    repeated = bool(fdef.get('repeated', fdef.get('label') == 'repeated'))
    packed = fdef.get('packed')
    return FieldDescriptor(
        id=int(number),
        name=str(name),
        type_name=str(fdef['type']),
        repeated=repeated,
        packed=None if packed is None else bool(packed),
    )


def _message_from_dict(name: str, body: Dict[str, Any], scope: str) -> MessageType:
    if body is None:
        body = {}
    if not isinstance(body, dict):
        raise SchemaError(f"Message {name}: expected mapping")
    msg = MessageType(name=name, full_name=_join(scope, name))
    for ename, ebody in (body.get('enums') or {}).items():
        msg.enums.append(_enum_from_dict(ename, ebody, msg.full_name))
    for mname, mbody in (body.get('messages') or {}).items():
        msg.messages.append(_message_from_dict(mname, mbody, msg.full_name))
    for fdef in body.get('fields') or []:
        msg.add_field(_field_from_dict(msg.full_name, fdef))
    return msg


def schema_from_dict(data: Dict[str, Any]) -> ProtoSchema:
    """Build a bound ProtoSchema from a YAML/JSON descriptor mapping."""
    if not isinstance(data, dict):
        raise SchemaError("Schema descriptor must be a mapping")
    schema = ProtoSchema(package=data.get('package') or '',
                         syntax=data.get('syntax', 'proto3'))
    for name, body in (data.get('enums') or {}).items():
        schema.add_enum(_enum_from_dict(name, body, schema.package))
    for name, body in (data.get('messages') or {}).items():
        schema.add_message(_message_from_dict(name, body, schema.package))
    return schema.bind()


def load_schema(path: Union[str, Path]) -> ProtoSchema:
    """
    Load a schema from disk.

    .proto files are parsed as source; .yaml, .yml and .json files are read
    as descriptor mappings.
    """
    p = Path(path)
    text = p.read_text()
    if p.suffix == '.proto':
        return parse_proto(text)
    if p.suffix in ('.yaml', '.yml', '.json'):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise SchemaError(f"{p.name}: {e}") from e
        return schema_from_dict(data)
    raise SchemaError(f"Unsupported schema file type: {p.suffix or p.name}")
