from typing import Iterable, Set, FrozenSet, Tuple, Iterator, List
from weakref import WeakKeyDictionary

from sqlalchemy.sql import table as sql_table, column as sql_column
from sqlalchemy.sql.expression import ColumnClause, TableClause

from .schema import TableInfo
from .types import ColumnType


class TablePropertyBags:
    """ Table Property Bags is the class that binds a TableInfo to SqlAlchemy.

    This is the only place where identifiers are turned into SQL: a `TableClause` is built
    from the names that the schema knows about, and every handler picks columns from it.
    Whatever name the user provides, it can only reach the query through one of these bags.

    - Columns
    - Primary key
    - Foreign keys
    """
    __bags_per_table_cache = WeakKeyDictionary()

    @classmethod
    def for_table(cls, table_info: TableInfo) -> 'TablePropertyBags':
        """ Get bags for a table.

        Please use this method over __init__(), because it initializes those bags only once
        per schema snapshot.
        """
        try:
            return cls.__bags_per_table_cache[table_info]
        except KeyError:
            cls.__bags_per_table_cache[table_info] = bags = cls(table_info)
            return bags

    def __init__(self, table_info: TableInfo):
        #: The schema snapshot
        self.table_info = table_info
        #: Table name
        self.table_name = table_info.name
        #: Lightweight SqlAlchemy table
        self.table = sql_table(table_info.name, *[sql_column(c.name) for c in table_info.columns])  # type: TableClause

        self.columns = ColumnsBag(table_info, self.table)
        self.pk = ColumnsBag(table_info, self.table, [c.name for c in table_info.primary_key_columns])

    def __repr__(self):
        return '{}({!r})'.format(self.__class__.__name__, self.table_name)


class ColumnsBag:
    """ Columns of a table, as SqlAlchemy column clauses

    Supports the mapping interface: `name in bag`, `bag[name]`, iteration.
    """

    def __init__(self, table_info: TableInfo, table: TableClause, names: Iterable[str] = None):
        self._table_info = table_info
        self._table = table
        #: Ordered column names
        self._names = list(names if names is not None else table_info.column_names)
        self._names_set = frozenset(self._names)

    @property
    def names(self) -> FrozenSet[str]:
        """ Get the set of names """
        return self._names_set

    @property
    def ordered_names(self) -> List[str]:
        """ Get the names, in schema declaration order """
        return list(self._names)

    def __contains__(self, name: str) -> bool:
        return name in self._names_set

    def __getitem__(self, name: str) -> ColumnClause:
        if name not in self._names_set:
            raise KeyError(name)
        return self._table.c[name]

    def __iter__(self) -> Iterator[Tuple[str, ColumnClause]]:
        return iter([(name, self._table.c[name]) for name in self._names])

    def __len__(self):
        return len(self._names)

    def get_invalid_names(self, names: Iterable[str]) -> Set[str]:
        """ Get the names of invalid items

        Use this for validation.
        """
        return set(names) - self._names_set

    def column_type(self, name: str) -> ColumnType:
        return self._table_info.get_column_type(name)
