"""
### Schema

Tables are described by immutable snapshots: `TableInfo`, `ColumnInfo`, `ForeignKeyInfo`.
They are produced by a `SchemaProvider` and are never modified by the library.

A `SchemaProvider` is an injectable capability: the library only ever calls its methods,
and it is up to the provider to decide how long its snapshot stays valid.
`clear_cache()` is the only way to make a provider forget what it knows.
"""

from typing import Iterable, Mapping, Optional, Sequence, List, Dict

from .types import ColumnType, parse_type_tag


class ColumnInfo:
    """ A column of a table

    Attributes:
        name: column name
        type: the type tag, as reported by the catalog
        column_type: the parsed ColumnType
        nullable: whether the column accepts NULLs
        primary_key: whether the column is a part of the primary key
    """
    __slots__ = ('name', 'type', 'column_type', 'nullable', 'primary_key')

    def __init__(self, name: str, type: str = 'text', nullable: bool = True, primary_key: bool = False):
        self.name = name
        self.type = type
        self.column_type = parse_type_tag(type)  # type: ColumnType
        self.nullable = nullable
        self.primary_key = primary_key

    def __repr__(self):
        return '{}({!r}, {!r}{})'.format(self.__class__.__name__, self.name, self.type,
                                         ', primary_key=True' if self.primary_key else '')


class ForeignKeyInfo:
    """ A foreign key: `column_name` -> `referenced_table`.`referenced_column` """
    __slots__ = ('column_name', 'referenced_table', 'referenced_column')

    def __init__(self, column_name: str, referenced_table: str, referenced_column: str):
        self.column_name = column_name
        self.referenced_table = referenced_table
        self.referenced_column = referenced_column

    def __repr__(self):
        return '{}({!r} -> {}.{})'.format(self.__class__.__name__,
                                          self.column_name, self.referenced_table, self.referenced_column)


class TableInfo:
    """ A table (or a view), with its columns and foreign keys """
    __slots__ = ('name', 'columns', 'foreign_keys', 'is_view', '_columns_by_name', '__weakref__')

    def __init__(self, name: str, columns: Iterable[ColumnInfo], foreign_keys: Iterable[ForeignKeyInfo] = (), is_view: bool = False):
        self.name = name
        self.columns = tuple(columns)  # type: Sequence[ColumnInfo]
        self.foreign_keys = tuple(foreign_keys)  # type: Sequence[ForeignKeyInfo]
        self.is_view = is_view
        self._columns_by_name = {c.name: c for c in self.columns}

    @property
    def column_names(self) -> List[str]:
        """ Column names, in declaration order """
        return [c.name for c in self.columns]

    @property
    def primary_key_columns(self) -> List[ColumnInfo]:
        """ Primary key columns, in declaration order """
        return [c for c in self.columns if c.primary_key]

    def has_column(self, name: str) -> bool:
        return name in self._columns_by_name

    def get_column(self, name: str) -> Optional[ColumnInfo]:
        return self._columns_by_name.get(name)

    def get_column_type(self, name: str) -> Optional[ColumnType]:
        """ Get the parsed type of a column, or None for unknown columns """
        column = self._columns_by_name.get(name)
        return column.column_type if column is not None else None

    def find_foreign_key_to(self, table_name: str) -> Optional[ForeignKeyInfo]:
        """ Find a foreign key of this table that references `table_name` (case-insensitive) """
        table_name = table_name.lower()
        for fk in self.foreign_keys:
            if fk.referenced_table.lower() == table_name:
                return fk
        return None

    def __repr__(self):
        return '{}({!r}, columns={!r})'.format(self.__class__.__name__, self.name, self.column_names)


class SchemaProvider:
    """ Source of schema metadata

    Implementations may cache the metadata for as long as they see fit.
    """

    def get_table_schema(self) -> Mapping[str, TableInfo]:
        """ Get all tables, by name """
        raise NotImplementedError

    def get_table(self, table_name: str) -> Optional[TableInfo]:
        """ Get one table by name, or None """
        return self.get_table_schema().get(table_name)

    def get_enum_values(self, type_name: str) -> List[str]:
        """ Get the labels of an ENUM type, in their sort order """
        raise NotImplementedError

    def get_composite_type_definition(self, type_name: str) -> Dict[str, str]:
        """ Get the fields of a composite type: {field name: type name} """
        raise NotImplementedError

    def clear_cache(self):
        """ Forget everything that was cached """
        raise NotImplementedError


class StaticSchemaProvider(SchemaProvider):
    """ A schema provider that holds a fixed snapshot

    Handy when the schema is known in advance, and for tests.
    """

    def __init__(self, tables: Iterable[TableInfo], enums: Mapping[str, Sequence[str]] = None, composites: Mapping[str, Mapping[str, str]] = None):
        self._tables = {t.name: t for t in tables}
        self._enums = {name: list(values) for name, values in (enums or {}).items()}
        self._composites = {name: dict(fields) for name, fields in (composites or {}).items()}

    def get_table_schema(self) -> Mapping[str, TableInfo]:
        return self._tables

    def get_enum_values(self, type_name: str) -> List[str]:
        return self._enums.get(type_name, [])

    def get_composite_type_definition(self, type_name: str) -> Dict[str, str]:
        return self._composites.get(type_name, {})

    def clear_cache(self):
        pass  # nothing is cached
