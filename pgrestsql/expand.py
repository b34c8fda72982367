"""
### Relationship Expansion

Related resources are loaded with one extra query per relationship, never one query per row:
all keys are collected from the loaded rows, and the related rows are fetched with a single `IN (...)`.

Two syntaxes are supported:

* Embedded resources in `select`, nested to any depth, with filters:

    ```
    GET /api/authors?select=id,name,posts(title,comments(*))&posts.views=gt.100
    ```

* Legacy `expand`, with a per-parent limit and a single column:

    ```
    GET /api/authors?expand=posts(limit:5,select:title)
    ```

A relationship is resolved by name:

* Forward (many-to-one): the queried table has a foreign key to a table with this name.
  A single object is attached, or `null`.
* Reverse (one-to-many): a table with this name has a foreign key to the queried table.
  A list is attached, possibly empty.

Expansion never fails the request: errors are logged, and the relationship is skipped.
"""

from logging import getLogger
from typing import List, Mapping, Optional, Sequence, Tuple, Any, Dict

from sqlalchemy import select, literal, literal_column

from .bag import TablePropertyBags
from .convert import TypeConverter
from .exc import InvalidColumnError
from .handlers import RestEmbeddedFilter, RestLimit
from .handlers.select import SelectField, split_top_level
from .schema import SchemaProvider, TableInfo

logger = getLogger(__name__)


class Relationship:
    """ A relationship between two tables, resolved by name

    Attributes:
        name: relationship name; the key to attach related rows under
        direction: FORWARD or REVERSE
        target: the related table
        local_column: the column of the queried table to match on
        remote_column: the column of the related table to match on
    """
    __slots__ = ('name', 'direction', 'target', 'local_column', 'remote_column')

    FORWARD = 'forward'
    REVERSE = 'reverse'

    def __init__(self, name: str, direction: str, target: TableInfo, local_column: str, remote_column: str):
        self.name = name
        self.direction = direction
        self.target = target
        self.local_column = local_column
        self.remote_column = remote_column

    @property
    def uselist(self) -> bool:
        """ Does this relationship attach a list? """
        return self.direction == self.REVERSE

    def __repr__(self):
        return '{}({!r}, {}, {}.{})'.format(self.__class__.__name__, self.name, self.direction,
                                            self.target.name, self.remote_column)


def find_relationship(schema: SchemaProvider, table_info: TableInfo, name: str) -> Optional[Relationship]:
    """ Resolve a relationship by name

    Forward relationships take precedence over reverse ones. Names are case-insensitive.
    """
    tables = schema.get_table_schema()

    # Forward: we have a foreign key to `name`
    fk = table_info.find_foreign_key_to(name)
    if fk is not None:
        target = _find_table(tables, fk.referenced_table)
        if target is not None:
            return Relationship(name, Relationship.FORWARD, target, fk.column_name, fk.referenced_column)

    # Reverse: `name` has a foreign key to us
    target = _find_table(tables, name)
    if target is not None:
        fk = target.find_foreign_key_to(table_info.name)
        if fk is not None:
            return Relationship(name, Relationship.REVERSE, target, fk.referenced_column, fk.column_name)

    return None


def _find_table(tables: Mapping[str, TableInfo], name: str) -> Optional[TableInfo]:
    if name in tables:
        return tables[name]
    name = name.lower()
    for table_name, table_info in tables.items():
        if table_name.lower() == name:
            return table_info
    return None


def parse_expand(expand: str) -> List[Tuple[str, Dict[str, str]]]:
    """ Parse the legacy `expand` parameter

    `author,comments(limit:5,select:body)` -> [('author', {}), ('comments', {'limit': '5', 'select': 'body'})]

    :raises InvalidQueryError: unbalanced parentheses
    """
    expansions = []
    if not expand or not expand.strip():
        return expansions

    for token in split_top_level(expand):
        token = token.strip()
        if not token:
            continue

        params = {}
        paren = token.find('(')
        if paren > 0 and token.endswith(')'):
            for pair in token[paren + 1:-1].split(','):
                key, sep, value = pair.partition(':')
                if sep and key.strip():
                    params[key.strip()] = value.strip()
            token = token[:paren].strip()
        expansions.append((token, params))
    return expansions


class RelationshipExpander:
    """ Loads related rows and attaches them to the loaded rows

    Works with raw rows, as returned by the executor: keys have to be compared as the database gives them.
    Related rows are converted with their own table's column types before being attached.

    :param schema: Schema provider, to resolve relationships
    :param executor: SQL executor
    :param converter: Type converter for the related rows
    :param max_limit: The cap for per-parent limits of the legacy syntax
    """

    def __init__(self, schema: SchemaProvider, executor, converter: TypeConverter, max_limit: int = 1000):
        self.schema = schema
        self.executor = executor
        self.converter = converter
        self.max_limit = max_limit

    def find_relationship(self, table_info: TableInfo, name: str) -> Optional[Relationship]:
        return find_relationship(self.schema, table_info, name)

    def key_columns(self, table_info: TableInfo, names: Sequence[str]) -> List[str]:
        """ Columns of `table_info` that are needed to expand the named relationships

        Use it to make sure that these columns are loaded, even when the user has not selected them.
        """
        columns = []
        for name in names:
            relationship = self.find_relationship(table_info, name)
            if relationship is not None and relationship.local_column not in columns:
                columns.append(relationship.local_column)
        return columns

    # region Embedded resources

    def expand_relationships(self, records: List[dict], table_info: TableInfo, embedded_fields: Sequence[SelectField]) -> List[dict]:
        """ Attach embedded resources from `select`

        :param records: Raw rows of `table_info`. Modified in-place.
        :param table_info: The table the rows come from
        :param embedded_fields: Embedded SelectFields
        :return: the same records
        """
        if not records or not embedded_fields:
            return records

        for field in embedded_fields:
            try:
                self._expand_embedded(records, table_info, field)
            except Exception:
                logger.exception('Error expanding relationship %r for table %s', field.name, table_info.name)
        return records

    def _expand_embedded(self, records: List[dict], table_info: TableInfo, field: SelectField):
        relationship = self.find_relationship(table_info, field.name)
        if relationship is None:
            logger.warning('Relationship %r not found for table %s', field.name, table_info.name)
            return

        keys = self._collect_keys(records, relationship.local_column)
        if not keys:
            self._attach(records, relationship, {}, attach_missing=True)
            return

        target = relationship.target
        target_bags = TablePropertyBags.for_table(target)
        nested_fields = field.get_embedded_fields()

        # Columns
        selected = [] if field.selects_all_columns() else field.get_simple_column_names()
        required = [relationship.remote_column] + self.key_columns(target, [f.name for f in nested_fields])
        columns, quiet = self._select_columns(target_bags, selected, required)

        # Statement
        stmt = select(*columns).select_from(target_bags.table)
        stmt = stmt.where(self._key_condition(target_bags, relationship.remote_column, keys))
        if field.filters:
            stmt = RestEmbeddedFilter(target, target_bags, self.converter).input(field.filters).alter_query(stmt)

        # Load
        related = self.executor.query_for_list(stmt)

        # Go deeper
        if nested_fields:
            self.expand_relationships(related, target, nested_fields)

        self._attach(records, relationship, self._group(related, relationship, quiet), attach_missing=True)
        logger.debug('Expanded %s relationship %s -> %s: %d related rows for %d rows',
                     relationship.direction, table_info.name, target.name, len(related), len(records))

    # endregion

    # region Legacy `expand`

    def expand_legacy(self, records: List[dict], table_info: TableInfo, expansions: Sequence[Tuple[str, Mapping[str, str]]]) -> List[dict]:
        """ Attach relationships from the legacy `expand` parameter

        :param records: Raw rows of `table_info`. Modified in-place.
        :param table_info: The table the rows come from
        :param expansions: Parsed `expand`: see parse_expand()
        :return: the same records
        """
        if not records:
            return records

        for name, params in expansions:
            try:
                self._expand_legacy_one(records, table_info, name, params)
            except Exception:
                logger.exception('Error expanding relationship %r for table %s', name, table_info.name)
        return records

    def _expand_legacy_one(self, records: List[dict], table_info: TableInfo, name: str, params: Mapping[str, str]):
        relationship = self.find_relationship(table_info, name)
        if relationship is None:
            logger.warning('Relationship %r not found for table %s', name, table_info.name)
            return

        keys = self._collect_keys(records, relationship.local_column)
        if not keys:
            return

        target = relationship.target
        target_bags = TablePropertyBags.for_table(target)

        # Columns
        select_param = params.get('select', '*').strip()
        selected = [] if select_param in ('', '*') else [select_param]
        columns, quiet = self._select_columns(target_bags, selected, [relationship.remote_column])

        # Statement
        stmt = select(*columns).select_from(target_bags.table)
        stmt = stmt.where(self._key_condition(target_bags, relationship.remote_column, keys))

        # Limit per parent row
        limit = self._legacy_limit(params.get('limit')) if relationship.uselist else None
        if limit:
            handler_limit = RestLimit(target, target_bags, max_limit=self.max_limit).input(limit=limit)
            handler_limit.limit_groups_over_columns([target_bags.columns[relationship.remote_column]])
            stmt = handler_limit.alter_query(stmt)
            quiet = quiet + ['group_row_n']

        # Load
        related = self.executor.query_for_list(stmt)

        # Forward relationships only attach what was found
        self._attach(records, relationship, self._group(related, relationship, quiet),
                     attach_missing=relationship.uselist)
        logger.debug('Expanded %s relationship %s -> %s: %d related rows for %d rows',
                     relationship.direction, table_info.name, target.name, len(related), len(records))

    def _legacy_limit(self, value: Optional[str]) -> Optional[int]:
        """ Parse `limit:N`; capped at max_limit """
        if value is None:
            return None
        try:
            limit = int(value)
        except ValueError:
            logger.warning('Invalid limit parameter: %s', value)
            return None
        if limit < 1:
            return None
        return min(limit, self.max_limit)

    # endregion

    # region Helpers

    @staticmethod
    def _collect_keys(records: Sequence[Mapping[str, Any]], column_name: str) -> List[Any]:
        """ Distinct non-null values of a column, in the order of appearance """
        return list(dict.fromkeys(
            record[column_name]
            for record in records
            if record.get(column_name) is not None
        ))

    @staticmethod
    def _select_columns(bags: TablePropertyBags, selected: Sequence[str], required: Sequence[str]) -> Tuple[list, List[str]]:
        """ Columns to load from a related table

        :param selected: Columns the user has selected; empty for all columns
        :param required: Columns that have to be loaded anyway
        :return: (column clauses, quiet column names to remove afterwards)
        :raises InvalidColumnError
        """
        if not selected:
            return [literal_column('*')], []

        invalid = bags.columns.get_invalid_names(selected)
        if invalid:
            raise InvalidColumnError(bags.table_name, sorted(invalid)[0], 'select')

        quiet = [name for name in dict.fromkeys(required) if name not in selected]
        return [bags.columns[name] for name in list(selected) + quiet], quiet

    @staticmethod
    def _key_condition(bags: TablePropertyBags, column_name: str, keys: Sequence[Any]):
        return bags.columns[column_name].in_([literal(key) for key in keys])

    def _group(self, related: List[dict], relationship: Relationship, quiet: Sequence[str]) -> Dict[Any, List[dict]]:
        """ Group related rows by the raw key, then clean them up and convert """
        groups = {}
        for row in related:
            groups.setdefault(row.get(relationship.remote_column), []).append(row)

        for key, rows in groups.items():
            for row in rows:
                for name in quiet:
                    row.pop(name, None)
            groups[key] = self.converter.convert_records(rows, relationship.target)
        return groups

    @staticmethod
    def _attach(records: List[dict], relationship: Relationship, groups: Mapping[Any, List[dict]], attach_missing: bool):
        """ Attach the related rows to every record

        :param attach_missing: Attach None (forward) or [] (reverse) when nothing was found
        """
        for record in records:
            key = record.get(relationship.local_column)
            found = groups.get(key) if key is not None else None

            if relationship.uselist:
                if found or attach_missing:
                    record[relationship.name] = list(found or [])
            else:
                if found:
                    record[relationship.name] = found[0]
                elif attach_missing:
                    record[relationship.name] = None

    # endregion
