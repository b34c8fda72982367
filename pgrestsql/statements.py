"""
### Statements

`QueryBuilder` assembles complete SQL statements for one table:
SELECT, COUNT, INSERT (single and bulk), UPDATE, DELETE, and UPSERT (`INSERT .. ON CONFLICT`).

Every statement is an SqlAlchemy Core expression: identifiers come from the table's `TablePropertyBags`,
and every value is a bound parameter. Some PostgreSQL types will not accept a bound string as is,
so the parameter is wrapped into a CAST:

| Column type                          | Bound as                  |
|--------------------------------------|---------------------------|
| `json`, `jsonb`, `uuid`              | `CAST(:p AS jsonb)`, ...  |
| `bit(n)`, `varbit`                   | `CAST(:p AS bit(n))`      |
| `postgres_enum:status`               | `CAST(:p AS status)`      |
| `text[]`, `integer[]`, ...           | `CAST(:p AS text[])`      |
| `inet`, `cidr`, `macaddr`, `macaddr8`| `CAST(:p AS inet)`, ...   |
| anything else                        | `:p`                      |

This module also knows how to encode and decode composite keys and pagination cursors.
"""

import base64
from datetime import date, time, datetime
from typing import Any, Iterable, List, Mapping, Sequence, Optional

from sqlalchemy import select, insert, update, delete, func, literal, literal_column, cast, and_
from sqlalchemy.dialects import postgresql as pg
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.types import UserDefinedType

from .bag import TablePropertyBags
from .convert import TypeConverter
from .exc import InvalidQueryError, InvalidColumnError, InvalidCursorError
from .schema import TableInfo
from .types import ColumnType


class PgTypeName(UserDefinedType):
    """ A type that is only known by its name: used in CAST(.. AS name) """
    cache_ok = True

    def __init__(self, name: str):
        self.name = name

    def get_col_spec(self, **kw):
        return self.name


def pg_cast(expression: Any, type_name: str) -> ColumnElement:
    """ CAST(expression AS type_name) """
    return cast(expression, PgTypeName(type_name))


def bind_value(value: Any, column_type: Optional[ColumnType]) -> ColumnElement:
    """ Bind a value for a column, with a cast if the column's type needs one """
    param = literal(value)
    cast_type_name = column_type.cast_type_name if column_type is not None else None
    if cast_type_name:
        return pg_cast(param, cast_type_name)
    return param


class QueryBuilder:
    """ Builds SQL statements for a table

    :param table_info: The table
    :param converter: Type converter for the values
    """

    def __init__(self, table_info: TableInfo, converter: TypeConverter = None, bags: TablePropertyBags = None):
        self.table_info = table_info
        self.converter = converter or TypeConverter()
        self.bags = bags or TablePropertyBags.for_table(table_info)

    @property
    def table(self):
        return self.bags.table

    # region Values

    def bind(self, column_name: str, value: Any) -> ColumnElement:
        """ Convert and bind a value for a column """
        column_type = self.table_info.get_column_type(column_name)
        return bind_value(self.converter.to_sql_param(value, column_type), column_type)

    def _values(self, data: Mapping[str, Any], where: str) -> dict:
        """ Validate column names and bind the values """
        invalid = self.bags.columns.get_invalid_names(data.keys())
        if invalid:
            raise InvalidColumnError(self.table_info.name, sorted(invalid)[0], where)
        return {name: self.bind(name, value)
                for name, value in data.items()}

    # endregion

    # region SELECT

    def select_columns(self, column_names: Iterable[str] = None) -> List[ColumnElement]:
        """ Columns for the SELECT clause; `*` when no columns are given """
        column_names = list(column_names or ())
        if not column_names or '*' in column_names:
            return [literal_column('*')]

        invalid = self.bags.columns.get_invalid_names(column_names)
        if invalid:
            raise InvalidColumnError(self.table_info.name, sorted(invalid)[0], 'select')
        return [self.bags.columns[name] for name in column_names]

    def build_select(self, column_names: Iterable[str] = None, where: ColumnElement = None, order_by: Sequence = (), limit: int = None, offset: int = None):
        """ SELECT <columns> FROM <table> [WHERE ..] [ORDER BY ..] [LIMIT ..] [OFFSET ..] """
        stmt = select(*self.select_columns(column_names)).select_from(self.table)
        if where is not None:
            stmt = stmt.where(where)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        return stmt

    def build_count(self, where: ColumnElement = None):
        """ SELECT count(*) AS count FROM <table> [WHERE ..] """
        stmt = select(func.count().label('count')).select_from(self.table)
        if where is not None:
            stmt = stmt.where(where)
        return stmt

    def build_select_by_key(self, key_parts: Sequence[str], column_names: Iterable[str] = None):
        """ SELECT a single row by its primary key """
        return self.build_select(column_names, where=self.key_condition(key_parts))

    # endregion

    # region Primary keys

    def primary_key_names(self) -> List[str]:
        """ Primary key column names

        :raises InvalidQueryError: the table has no primary key
        """
        names = self.bags.pk.ordered_names
        if not names:
            raise InvalidQueryError('Table {} has no primary key defined'.format(self.table_info.name))
        return names

    def parse_key(self, key: str) -> List[str]:
        """ Parse a key from the URL for this table """
        return parse_composite_key(key, len(self.primary_key_names()))

    def key_condition(self, key_parts: Sequence[str]) -> ColumnElement:
        """ WHERE condition that matches a row by its primary key: `pk1 = :p1 AND pk2 = :p2` """
        names = self.primary_key_names()
        if len(key_parts) != len(names):
            raise InvalidQueryError('Composite key requires {} parts, got {}'.format(len(names), len(key_parts)))
        return and_(*[self.bags.columns[name] == self.bind(name, value)
                      for name, value in zip(names, key_parts)])

    # endregion

    # region INSERT, UPDATE, DELETE

    def build_insert(self, data: Mapping[str, Any], returning: bool = True):
        """ INSERT INTO <table> (..) VALUES (..) RETURNING * """
        if not data:
            raise InvalidQueryError('Data cannot be empty')
        stmt = insert(self.table).values(self._values(data, 'insert'))
        if returning:
            stmt = stmt.returning(literal_column('*'))
        return stmt

    def build_bulk_insert(self, records: Sequence[Mapping[str, Any]]):
        """ INSERT INTO <table> (..) VALUES (..), (..), .. RETURNING *

        The column list is the union of columns of all records; missing values are NULLs.
        """
        return insert(self.table).values(self._bulk_values(records, 'insert')).returning(literal_column('*'))

    def build_update(self, data: Mapping[str, Any], where: ColumnElement, returning: bool = True):
        """ UPDATE <table> SET .. WHERE .. RETURNING * """
        if not data:
            raise InvalidQueryError('No valid columns to update')
        stmt = update(self.table).where(where).values(self._values(data, 'update'))
        if returning:
            stmt = stmt.returning(literal_column('*'))
        return stmt

    def build_delete(self, where: ColumnElement):
        """ DELETE FROM <table> WHERE .. """
        return delete(self.table).where(where)

    def build_upsert(self, data: Mapping[str, Any]):
        """ INSERT .. ON CONFLICT (<pk>) DO UPDATE SET col=EXCLUDED.col .. RETURNING *

        When there is nothing but the primary key, it's `ON CONFLICT DO NOTHING`.
        """
        if not data:
            raise InvalidQueryError('Data cannot be empty')
        return self._upsert(pg.insert(self.table).values(self._values(data, 'upsert')),
                            data.keys())

    def build_bulk_upsert(self, records: Sequence[Mapping[str, Any]]):
        """ Multi-row INSERT .. ON CONFLICT """
        values = self._bulk_values(records, 'upsert')
        return self._upsert(pg.insert(self.table).values(values),
                            values[0].keys())

    def _upsert(self, stmt, column_names: Iterable[str]):
        pk_names = self.bags.pk.ordered_names
        if not pk_names:
            raise InvalidQueryError('Table {} has no primary key - cannot perform upsert'.format(self.table_info.name))

        update_names = [name for name in column_names if name not in self.bags.pk]
        if update_names:
            stmt = stmt.on_conflict_do_update(
                index_elements=pk_names,
                set_={name: stmt.excluded[name] for name in update_names},
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=pk_names)
        return stmt.returning(literal_column('*'))

    def _bulk_values(self, records: Sequence[Mapping[str, Any]], where: str) -> List[dict]:
        if not records:
            raise InvalidQueryError('Data cannot be empty')

        # Union of all columns, in the order of appearance
        column_names = []
        for record in records:
            for name in record:
                if name not in column_names:
                    column_names.append(name)
        if not column_names:
            raise InvalidQueryError('Data cannot be empty')

        return [self._values({name: record.get(name) for name in column_names}, where)
                for record in records]

    # endregion


def parse_composite_key(key: str, expected_parts: int) -> List[str]:
    """ Parse a primary key from the URL

    A composite key is a comma-joined list of values, in primary key column order: `1,2`.
    A single-column key is taken as is.

    :param key: The key
    :param expected_parts: The number of columns in the primary key
    :raises InvalidQueryError: wrong number of parts, empty parts
    """
    if key is None or not str(key).strip():
        raise InvalidQueryError('Key cannot be empty')
    key = str(key)

    if expected_parts == 1:
        return [key.strip()]

    parts = [part.strip() for part in key.split(',')]
    if len(parts) != expected_parts:
        raise InvalidQueryError('Composite key requires {} parts, got {}'.format(expected_parts, len(parts)))
    for i, part in enumerate(parts):
        if not part:
            raise InvalidQueryError('Invalid composite key format: empty key part at position {}'.format(i))
    return parts


def encode_composite_key(values: Iterable[Any]) -> str:
    """ Encode a primary key for the URL """
    return ','.join(str(v) for v in values)


def encode_cursor(value: Any) -> str:
    """ Make an opaque pagination cursor from an order column value """
    if isinstance(value, (datetime, date, time)):
        text = value.isoformat()
    else:
        text = str(value)
    return base64.b64encode(text.encode('utf-8')).decode('ascii')


def decode_cursor(cursor: str) -> str:
    """ Get the order column value back from a cursor

    :raises InvalidCursorError
    """
    if not cursor:
        raise InvalidCursorError(cursor)
    try:
        return base64.b64decode(cursor.encode('ascii'), validate=True).decode('utf-8')
    except ValueError:  # binascii.Error, UnicodeError
        raise InvalidCursorError(cursor)
