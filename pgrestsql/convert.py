"""
### Type conversion

PostgreSQL has many types that JSON does not: arrays, enums, composites, network addresses, bit strings, etc.
The `TypeConverter` maps values between the two worlds, in both directions:

* `to_json()`: a value loaded from the database -> a JSON-friendly value
* `to_sql_param()`: a value from the request (a query string or a JSON body) -> a value to bind

| Type          | Read (to_json)                                          | Write (to_sql_param)                          |
|---------------|---------------------------------------------------------|-----------------------------------------------|
| arrays        | list; `{a,b,"c"}` literals are parsed                   | PostgreSQL array literal `{"a","b"}`          |
| json, jsonb   | parsed object; invalid JSON text is kept                | compact JSON text                             |
| uuid          | `{value, type: UUID, version}`                          | canonical string                              |
| bit, varbit   | string                                                  | string                                        |
| timestamp etc | `{value, type: TIMESTAMP/DATE/TIME/INTERVAL}`           | datetime / date; unparsable text is kept      |
| bytea         | `{value: base64, length, type: BYTEA}`                  | bytes; `\\x...` hex is decoded                |
| xml           | `{value, type: XML, length}`                            | string                                        |
| enums         | string                                                  | string, checked against the enum labels       |
| composites    | `{type, category: COMPOSITE, raw, fields}`              | string                                        |
| network       | string                                                  | string, validated                             |

Tagged objects produced by `to_json()` are accepted back by `to_sql_param()`.
"""

import base64
import json
import re
import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, InvalidOperation
from logging import getLogger
from typing import Any, Union, Optional, Mapping, Iterable, List

from . import types
from .exc import InvalidQueryError
from .schema import SchemaProvider, TableInfo
from .types import ColumnType, parse_type_tag
from .validation import validate_enum_value, validate_network_address, validate_mac_address

logger = getLogger(__name__)

_RE_INTEGER = re.compile(r'^-?\d+$')
_RE_DECIMAL = re.compile(r'^-?\d*\.\d+$')


class TypeConverter:
    """ Converts values between PostgreSQL and JSON

    :param schema: Schema provider, used to look up enum labels on write.
        Without it, enum values are not checked.
    """

    def __init__(self, schema: SchemaProvider = None):
        self.schema = schema

    # region Read: to JSON

    def to_json(self, value: Any, column_type: Union[ColumnType, str]) -> Any:
        """ Convert a value loaded from the database into a JSON-friendly value

        :param value: Value, as returned by the driver
        :param column_type: The type of its column
        """
        if value is None:
            return None
        column_type = _column_type(column_type)

        if column_type.is_array:
            return self._array_to_json(value)
        if column_type.category in ('enum', 'network'):
            return str(value)
        if column_type.category == 'composite':
            return self._composite_to_json(value, column_type)

        kind = column_type.kind
        if column_type.is_json:
            return self._json_to_json(value)
        if kind == types.BIT:
            return str(value)
        if kind == types.UUID:
            return self._uuid_to_json(value)
        if kind in types.TEMPORAL_KINDS:
            return self._temporal_to_json(value, kind)
        if kind == types.BYTEA:
            return self._bytea_to_json(value)
        if kind == types.XML:
            value = str(value)
            return {'value': value, 'type': 'XML', 'length': len(value)}
        return value

    def convert_record(self, record: Mapping[str, Any], table_info: TableInfo) -> dict:
        """ Convert every column of a record loaded from the table

        Keys that are not columns (e.g. expanded relationships) are left alone.
        When a column fails to convert, its original value is kept.
        """
        result = {}
        for name, value in record.items():
            column_type = table_info.get_column_type(name)
            if column_type is None or value is None:
                result[name] = value
                continue

            try:
                result[name] = self.to_json(value, column_type)
            except (ValueError, TypeError) as e:
                logger.warning('Failed to convert %s.%s (%s): %s', table_info.name, name, column_type.tag, e)
                result[name] = value
        return result

    def convert_records(self, records: Iterable[Mapping[str, Any]], table_info: TableInfo) -> List[dict]:
        return [self.convert_record(record, table_info) for record in records]

    def _array_to_json(self, value):
        if isinstance(value, str):
            try:
                return parse_array_literal(value)
            except ValueError:
                return value
        if isinstance(value, (list, tuple)):
            return [self._array_to_json(v) if isinstance(v, (list, tuple)) else v
                    for v in value]
        return value

    def _json_to_json(self, value):
        if isinstance(value, (bytes, bytearray)):
            value = value.decode('utf-8')
        if isinstance(value, str):
            try:
                return json.loads(value)
            except ValueError:
                return value
        return value

    def _uuid_to_json(self, value):
        text = str(value)
        try:
            u = value if isinstance(value, uuid.UUID) else uuid.UUID(text)
        except ValueError:
            return {'value': text, 'type': 'UUID', 'version': -1}
        return {'value': str(u), 'type': 'UUID', 'version': (u.int >> 76) & 0xF}

    def _temporal_to_json(self, value, kind):
        if isinstance(value, (datetime, date, time)):
            text = value.isoformat()
        elif isinstance(value, str):
            # Make sure that it's actually a timestamp
            try:
                if kind == types.TIMESTAMP:
                    parse_timestamp(value)
                elif kind == types.DATE:
                    date.fromisoformat(value)
            except ValueError:
                return value
            text = value
        elif isinstance(value, timedelta):
            text = str(value)
        else:
            text = str(value)
        return {'value': text, 'type': kind.upper()}

    def _bytea_to_json(self, value):
        if isinstance(value, memoryview):
            data = value.tobytes()
        elif isinstance(value, (bytes, bytearray)):
            data = bytes(value)
        elif isinstance(value, str) and value.startswith('\\x'):
            data = bytes.fromhex(value[2:])
        else:
            data = str(value).encode('utf-8')
        return {'value': base64.b64encode(data).decode('ascii'), 'length': len(data), 'type': 'BYTEA'}

    def _composite_to_json(self, value, column_type):
        if isinstance(value, tuple):
            fields = list(value)
            raw = None
        else:
            raw = str(value).strip()
            if not (raw.startswith('(') and raw.endswith(')')):
                return value
            fields = [f.strip().strip('"') for f in raw[1:-1].split(',')]
        return {'type': column_type.type_name, 'category': 'COMPOSITE', 'raw': raw, 'fields': fields}

    # endregion

    # region Write: to SQL

    def to_sql_param(self, value: Any, column_type: Optional[Union[ColumnType, str]]) -> Any:
        """ Convert a value from the request into a value to bind

        :param value: The value: a string from the query string, or anything from a JSON body
        :param column_type: The type of the column. `None` means that the type is unknown,
            and the value's type is guessed from its looks.
        :raises InvalidQueryError: invalid network address
        """
        if value is None:
            return None
        if column_type is None:
            return guess_sql_param(value)
        column_type = _column_type(column_type)

        if column_type.is_array:
            if isinstance(value, (list, tuple)):
                return to_array_literal(value)
            return str(value)
        if column_type.is_json:
            if isinstance(value, str):
                return value
            return json.dumps(value, separators=(',', ':'))

        # Values that went through to_json()
        if isinstance(value, dict):
            return self._unwrap_tagged_value(value, column_type)

        category = column_type.category
        if category == 'enum':
            value = str(value)
            self._check_enum_value(column_type.type_name, value)
            return value
        if category == 'composite':
            return value if isinstance(value, str) else str(value)
        if category == 'network':
            value = str(value).strip()
            if column_type.is_mac_address:
                validate_mac_address(value)
            else:
                validate_network_address(value)
            return value

        kind = column_type.kind
        if kind == types.INTEGER:
            return _convert_str(value, int)
        if kind == types.NUMERIC:
            return _convert_str(value, Decimal)
        if kind == types.FLOAT:
            return _convert_str(value, float)
        if kind == types.BOOLEAN:
            if isinstance(value, str):
                return value.strip().lower() == 'true'
            return bool(value)
        if kind == types.TIMESTAMP:
            return _convert_str(value, parse_timestamp)
        if kind == types.DATE:
            return _convert_str(value, date.fromisoformat)
        if kind == types.BYTEA:
            if isinstance(value, str) and value.startswith('\\x'):
                return bytes.fromhex(value[2:])
            return value
        if kind in (types.UUID, types.BIT, types.TIME, types.INTERVAL):
            return str(value)
        return value

    def _unwrap_tagged_value(self, value: dict, column_type: ColumnType):
        """ Take a value back from a tagged object made by to_json() """
        if column_type.category == 'composite' and value.get('raw'):
            return value['raw']
        if 'value' not in value:
            raise InvalidQueryError('Invalid value for a column of type {}'.format(column_type.tag))
        if value.get('type') == 'BYTEA':
            return base64.b64decode(value['value'])
        return self.to_sql_param(value['value'], column_type)

    def _check_enum_value(self, type_name: str, value: str):
        """ Check an enum value; unknown values are accepted with a warning """
        if self.schema is None:
            return

        valid_values = self.schema.get_enum_values(type_name)
        if not valid_values:
            logger.warning('No values known for enum type %s; accepting %r', type_name, value)
            return

        try:
            validate_enum_value(type_name, value, valid_values)
        except InvalidQueryError as e:
            logger.warning('%s; accepting it anyway', e)

    # endregion


def _column_type(column_type: Union[ColumnType, str]) -> ColumnType:
    if isinstance(column_type, ColumnType):
        return column_type
    return parse_type_tag(column_type)


def _convert_str(value, converter):
    """ Convert a string with `converter`; keep the string when it does not parse """
    if not isinstance(value, str):
        return value
    try:
        return converter(value.strip())
    except (ValueError, InvalidOperation):
        return value


def guess_sql_param(value):
    """ Convert a value of a column with an unknown type: judging by the looks """
    if not isinstance(value, str):
        return value
    if _RE_INTEGER.match(value):
        return int(value)
    if _RE_DECIMAL.match(value):
        return float(value)
    if value.lower() in ('true', 'false'):
        return value.lower() == 'true'
    return value


def parse_timestamp(value: str) -> datetime:
    """ Parse a timestamp: `YYYY-MM-DD`, or an ISO datetime, with or without the trailing `Z`

    :raises ValueError
    """
    value = value.strip()
    if len(value) == 10:
        return datetime.combine(date.fromisoformat(value), time())
    if value.endswith('Z'):
        return datetime.fromisoformat(value[:-1]).replace(tzinfo=timezone.utc)
    return datetime.fromisoformat(value)


def to_array_literal(values: Iterable) -> str:
    """ Build a PostgreSQL array literal: `{1,2}`, `{"a","b"}`, `{{1,2},{3,4}}` """
    items = []
    for v in values:
        if v is None:
            items.append('NULL')
        elif isinstance(v, (list, tuple)):
            items.append(to_array_literal(v))
        elif isinstance(v, bool):
            items.append('true' if v else 'false')
        elif isinstance(v, (int, float, Decimal)):
            items.append(str(v))
        else:
            items.append('"' + str(v).replace('\\', '\\\\').replace('"', '\\"') + '"')
    return '{' + ','.join(items) + '}'


def parse_array_literal(literal: str) -> list:
    """ Parse a PostgreSQL array literal

    Elements come out as strings (or None for NULL); nested arrays become nested lists.

    :raises ValueError: not an array literal
    """
    literal = literal.strip()
    if not literal.startswith('{'):
        raise ValueError('Not an array literal: {!r}'.format(literal))
    try:
        items, end = _parse_array(literal, 0)
    except IndexError:
        raise ValueError('Malformed array literal: {!r}'.format(literal))
    if literal[end:].strip():
        raise ValueError('Malformed array literal: {!r}'.format(literal))
    return items


def _parse_array(s: str, i: int) -> (list, int):
    """ Parse an array that starts at s[i] == '{'; return it with the position after its closing brace """
    i += 1
    items = []
    while s[i] == ' ':
        i += 1
    if s[i] == '}':
        return items, i + 1

    while True:
        while s[i] == ' ':
            i += 1

        if s[i] == '{':
            item, i = _parse_array(s, i)
            items.append(item)
        elif s[i] == '"':
            i += 1
            chars = []
            while s[i] != '"':
                if s[i] == '\\':
                    i += 1
                chars.append(s[i])
                i += 1
            i += 1
            items.append(''.join(chars))
        else:
            start = i
            while s[i] not in ',}':
                i += 1
            token = s[start:i].strip()
            items.append(None if token.upper() == 'NULL' else token)

        while s[i] == ' ':
            i += 1
        if s[i] == ',':
            i += 1
        elif s[i] == '}':
            return items, i + 1
        else:
            raise ValueError('Unexpected character {!r} at position {}'.format(s[i], i))
