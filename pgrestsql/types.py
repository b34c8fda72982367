"""
### Column types

The schema describes every column with a string tag:

* A primitive PostgreSQL type: `integer`, `character varying(255)`, `timestamp without time zone`, `jsonb`, `bit(8)`
* An array: `text[]`, `integer[][]`, or the catalog spelling `_int4`
* A custom type: `postgres_enum:status_enum`, `postgres_composite:address`

Tags are parsed once, when a `ColumnInfo` is created, into a closed family of `ColumnType` objects:

* `PrimitiveType(kind)`
* `ArrayType(element)`
* `EnumType(type_name)`
* `CompositeType(type_name)`
* `NetworkType(kind)`

The rest of the library dispatches on these objects and never looks at the tag strings again.
"""

from functools import lru_cache
from typing import Optional

ENUM_PREFIX = 'postgres_enum:'
COMPOSITE_PREFIX = 'postgres_composite:'

# Primitive kinds
INTEGER = 'integer'
NUMERIC = 'numeric'
FLOAT = 'float'
BOOLEAN = 'boolean'
TEXT = 'text'
JSON = 'json'
JSONB = 'jsonb'
UUID = 'uuid'
BIT = 'bit'
BYTEA = 'bytea'
XML = 'xml'
TIMESTAMP = 'timestamp'
DATE = 'date'
TIME = 'time'
INTERVAL = 'interval'
OTHER = 'other'

TEMPORAL_KINDS = frozenset((TIMESTAMP, DATE, TIME, INTERVAL))

# Network kinds
NETWORK_KINDS = frozenset(('inet', 'cidr', 'macaddr', 'macaddr8'))

_PRIMITIVE_KINDS_BY_NAME = {
    **dict.fromkeys(('smallint', 'integer', 'bigint', 'int', 'int2', 'int4', 'int8',
                     'smallserial', 'serial', 'bigserial', 'serial2', 'serial4', 'serial8'), INTEGER),
    **dict.fromkeys(('numeric', 'decimal'), NUMERIC),
    **dict.fromkeys(('real', 'double precision', 'float', 'float4', 'float8'), FLOAT),
    **dict.fromkeys(('boolean', 'bool'), BOOLEAN),
    **dict.fromkeys(('text', 'character varying', 'varchar', 'character', 'char', 'bpchar', 'name', 'citext'), TEXT),
    **dict.fromkeys(('bit', 'bit varying', 'varbit'), BIT),
    'json': JSON,
    'jsonb': JSONB,
    'uuid': UUID,
    'bytea': BYTEA,
    'xml': XML,
}


class ColumnType:
    """ A parsed column type tag """
    __slots__ = ('tag',)

    #: Category name: 'primitive', 'array', 'enum', 'composite', 'network'
    category = None

    def __init__(self, tag: str):
        self.tag = tag

    @property
    def cast_type_name(self) -> Optional[str]:
        """ The name of the type a bound value has to be CAST to, if any """
        return None

    @property
    def kind(self) -> str:
        return OTHER

    @property
    def is_array(self) -> bool:
        return False

    @property
    def is_json(self) -> bool:
        return False

    def __eq__(self, other):
        return type(self) is type(other) and self.tag == other.tag

    def __hash__(self):
        return hash((type(self), self.tag))

    def __repr__(self):
        return '{}({!r})'.format(self.__class__.__name__, self.tag)


class PrimitiveType(ColumnType):
    """ A built-in scalar type """
    __slots__ = ('_kind',)
    category = 'primitive'

    def __init__(self, tag: str, kind: str):
        super(PrimitiveType, self).__init__(tag)
        self._kind = kind

    @property
    def kind(self) -> str:
        return self._kind

    @property
    def is_json(self) -> bool:
        return self._kind in (JSON, JSONB)

    @property
    def cast_type_name(self) -> Optional[str]:
        if self._kind in (JSON, JSONB, UUID):
            return self._kind
        if self._kind == BIT:
            return self.tag  # bit(n), varbit
        return None


class ArrayType(ColumnType):
    """ An array of some other type """
    __slots__ = ('element', 'dimensions')
    category = 'array'

    def __init__(self, element: ColumnType, dimensions: int = 1):
        super(ArrayType, self).__init__(element.tag + '[]' * dimensions)
        self.element = element
        self.dimensions = dimensions

    @property
    def kind(self) -> str:
        return self.element.kind

    @property
    def is_array(self) -> bool:
        return True

    @property
    def base_type_name(self) -> str:
        """ Name of the element type: for `ARRAY[...]::<base>[]` """
        if isinstance(self.element, (EnumType, CompositeType)):
            return self.element.type_name
        return self.element.tag

    @property
    def cast_type_name(self) -> str:
        return self.base_type_name + '[]' * self.dimensions


class EnumType(ColumnType):
    """ A user-defined ENUM type """
    __slots__ = ('type_name',)
    category = 'enum'

    def __init__(self, type_name: str):
        super(EnumType, self).__init__(ENUM_PREFIX + type_name)
        self.type_name = type_name

    @property
    def cast_type_name(self) -> str:
        return self.type_name


class CompositeType(ColumnType):
    """ A user-defined composite (row) type """
    __slots__ = ('type_name',)
    category = 'composite'

    def __init__(self, type_name: str):
        super(CompositeType, self).__init__(COMPOSITE_PREFIX + type_name)
        self.type_name = type_name


class NetworkType(ColumnType):
    """ inet, cidr, macaddr, macaddr8 """
    __slots__ = ()
    category = 'network'

    @property
    def kind(self) -> str:
        return self.tag

    @property
    def cast_type_name(self) -> str:
        return self.tag

    @property
    def is_mac_address(self) -> bool:
        return self.tag.startswith('macaddr')


@lru_cache(maxsize=None)
def parse_type_tag(tag: Optional[str]) -> ColumnType:
    """ Parse a column type tag into a ColumnType

    :param tag: The type tag, as reported by the schema. Empty tags are treated as `text`.
    :rtype: ColumnType
    """
    tag = (tag or TEXT).strip()

    # Arrays: `text[]`, `integer[][]`, `postgres_enum:status[]`
    if tag.endswith('[]'):
        dimensions = 0
        while tag.endswith('[]'):
            tag = tag[:-2].rstrip()
            dimensions += 1
        return ArrayType(parse_type_tag(tag), dimensions)

    # Custom types: the type name keeps its case
    if tag.startswith(ENUM_PREFIX):
        return EnumType(tag[len(ENUM_PREFIX):].strip())
    if tag.startswith(COMPOSITE_PREFIX):
        return CompositeType(tag[len(COMPOSITE_PREFIX):].strip())

    tag = tag.lower()

    # Arrays: `_int4`
    if tag.startswith('_'):
        return ArrayType(parse_type_tag(tag[1:]), 1)

    if tag in NETWORK_KINDS:
        return NetworkType(tag)

    return PrimitiveType(tag, _primitive_kind(tag))


def _primitive_kind(tag: str) -> str:
    """ Classify a primitive type name """
    # Type modifiers do not matter: `numeric(10,2)`, `character varying(255)`
    name = tag.split('(', 1)[0].strip()

    try:
        return _PRIMITIVE_KINDS_BY_NAME[name]
    except KeyError:
        pass

    # Temporal types come with lots of spellings: `timestamp(3) with time zone`, `timetz`
    if name.startswith('timestamp'):
        return TIMESTAMP
    if name == 'date':
        return DATE
    if name.startswith('time'):
        return TIME
    if name.startswith('interval'):
        return INTERVAL
    return OTHER
