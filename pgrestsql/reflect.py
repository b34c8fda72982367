"""
### Schema Reflection

`ReflectedSchemaProvider` reads the schema from the PostgreSQL catalog:

* tables and views that the current user may read
* columns, with their types as `format_type()` spells them
* primary keys and foreign keys
* labels of ENUM types, fields of composite types

Every result is cached for `ttl` seconds; `clear_cache()` drops everything.
"""

import time
from logging import getLogger
from typing import Any, Dict, List, Mapping, Tuple, Callable

from sqlalchemy import text
from sqlalchemy.engine import Engine

from .schema import SchemaProvider, TableInfo, ColumnInfo, ForeignKeyInfo
from .types import ENUM_PREFIX, COMPOSITE_PREFIX

logger = getLogger(__name__)


# region Catalog queries

TABLES_QUERY = text("""
    SELECT t.table_name, t.table_type = 'VIEW' AS is_view
    FROM information_schema.tables t
    WHERE t.table_schema = :schema
      AND t.table_type IN ('BASE TABLE', 'VIEW')
      AND has_table_privilege(current_user, quote_ident(t.table_schema) || '.' || quote_ident(t.table_name), 'SELECT')
    ORDER BY t.table_name
""")

COLUMNS_QUERY = text("""
    SELECT
        c.relname AS table_name,
        a.attname AS column_name,
        pg_catalog.format_type(a.atttypid, a.atttypmod) AS full_type,
        t.typname AS type_name,
        t.typtype AS type_type,
        et.typname AS element_type_name,
        et.typtype AS element_type_type,
        NOT a.attnotnull AS is_nullable,
        COALESCE(a.attnum = ANY(pk.conkey), false) AS is_primary_key
    FROM pg_catalog.pg_attribute a
    JOIN pg_catalog.pg_class c ON a.attrelid = c.oid
    JOIN pg_catalog.pg_namespace n ON c.relnamespace = n.oid
    JOIN pg_catalog.pg_type t ON a.atttypid = t.oid
    LEFT JOIN pg_catalog.pg_type et ON t.typelem = et.oid AND t.typcategory = 'A'
    LEFT JOIN pg_catalog.pg_constraint pk ON pk.conrelid = c.oid AND pk.contype = 'p'
    WHERE n.nspname = :schema
      AND c.relkind IN ('r', 'v', 'm', 'p')
      AND a.attnum > 0
      AND NOT a.attisdropped
    ORDER BY c.relname, a.attnum
""")

FOREIGN_KEYS_QUERY = text("""
    SELECT
        c.relname AS table_name,
        a.attname AS column_name,
        rc.relname AS referenced_table,
        ra.attname AS referenced_column
    FROM pg_catalog.pg_constraint con
    JOIN pg_catalog.pg_class c ON con.conrelid = c.oid
    JOIN pg_catalog.pg_namespace n ON c.relnamespace = n.oid
    JOIN pg_catalog.pg_class rc ON con.confrelid = rc.oid
    CROSS JOIN LATERAL unnest(con.conkey, con.confkey) WITH ORDINALITY AS k(attnum, ref_attnum, position)
    JOIN pg_catalog.pg_attribute a ON a.attrelid = con.conrelid AND a.attnum = k.attnum
    JOIN pg_catalog.pg_attribute ra ON ra.attrelid = con.confrelid AND ra.attnum = k.ref_attnum
    WHERE con.contype = 'f'
      AND n.nspname = :schema
    ORDER BY c.relname, con.conname, k.position
""")

ENUM_VALUES_QUERY = text("""
    SELECT e.enumlabel
    FROM pg_catalog.pg_type t
    JOIN pg_catalog.pg_enum e ON t.oid = e.enumtypid
    WHERE t.typname = :type_name
    ORDER BY e.enumsortorder
""")

COMPOSITE_FIELDS_QUERY = text("""
    SELECT a.attname AS field_name, pg_catalog.format_type(a.atttypid, a.atttypmod) AS field_type
    FROM pg_catalog.pg_type pt
    JOIN pg_catalog.pg_class c ON pt.typrelid = c.oid
    JOIN pg_catalog.pg_attribute a ON c.oid = a.attrelid
    WHERE pt.typname = :type_name
      AND pt.typtype = 'c'
      AND a.attnum > 0
      AND NOT a.attisdropped
    ORDER BY a.attnum
""")

# endregion


def column_type_tag(full_type: str, type_name: str = None, type_type: str = None,
                    element_type_name: str = None, element_type_type: str = None) -> str:
    """ Make a column type tag from a catalog row

    :param full_type: format_type() output: `integer`, `text[]`, `bit(8)`
    :param type_name: pg_type.typname
    :param type_type: pg_type.typtype: 'e' for enums, 'c' for composite types
    :param element_type_name: For arrays: pg_type.typname of the element type
    :param element_type_type: For arrays: pg_type.typtype of the element type
    """
    if full_type.endswith('[]'):
        # Arrays of custom types: `postgres_enum:status[]`
        if element_type_type in ('e', 'c'):
            return (column_type_tag(element_type_name, element_type_name, element_type_type) +
                    '[]' * full_type.count('[]'))
        return full_type
    if type_type == 'e':
        return ENUM_PREFIX + (type_name or full_type)
    if type_type == 'c':
        return COMPOSITE_PREFIX + (type_name or full_type)
    return full_type


class ReflectedSchemaProvider(SchemaProvider):
    """ Schema provider that reads the PostgreSQL catalog

    :param engine: Engine to read the catalog with
    :param schema: Database schema to expose
    :param ttl: For how long to keep the results, seconds
    """

    def __init__(self, engine: Engine, schema: str = 'public', ttl: float = 300):
        self.engine = engine
        self.schema = schema
        self.ttl = ttl
        self._cache = {}  # type: Dict[Any, Tuple[float, Any]]

    def get_table_schema(self) -> Mapping[str, TableInfo]:
        return self._cached('tables', self._load_tables)

    def get_enum_values(self, type_name: str) -> List[str]:
        return self._cached(('enum', type_name), lambda: [
            row['enumlabel'] for row in self._query(ENUM_VALUES_QUERY, type_name=type_name)
        ])

    def get_composite_type_definition(self, type_name: str) -> Dict[str, str]:
        return self._cached(('composite', type_name), lambda: {
            row['field_name']: row['field_type'] for row in self._query(COMPOSITE_FIELDS_QUERY, type_name=type_name)
        })

    def clear_cache(self):
        self._cache.clear()
        logger.info('Schema cache cleared')

    def _cached(self, key, loader: Callable[[], Any]):
        now = time.monotonic()
        entry = self._cache.get(key)
        if entry is not None and entry[0] > now:
            return entry[1]

        value = loader()
        self._cache[key] = (now + self.ttl, value)
        return value

    def _query(self, statement, **params) -> List[Mapping[str, Any]]:
        with self.engine.connect() as connection:
            return list(connection.execute(statement, params).mappings())

    def _load_tables(self) -> Dict[str, TableInfo]:
        tables = self._query(TABLES_QUERY, schema=self.schema)
        columns = self._query(COLUMNS_QUERY, schema=self.schema)
        foreign_keys = self._query(FOREIGN_KEYS_QUERY, schema=self.schema)

        columns_by_table = {}
        for row in columns:
            columns_by_table.setdefault(row['table_name'], []).append(ColumnInfo(
                row['column_name'],
                column_type_tag(row['full_type'], row['type_name'], row['type_type'],
                                row.get('element_type_name'), row.get('element_type_type')),
                nullable=bool(row['is_nullable']),
                primary_key=bool(row['is_primary_key']),
            ))

        fks_by_table = {}
        for row in foreign_keys:
            fks_by_table.setdefault(row['table_name'], []).append(ForeignKeyInfo(
                row['column_name'], row['referenced_table'], row['referenced_column'],
            ))

        result = {
            row['table_name']: TableInfo(
                row['table_name'],
                columns_by_table.get(row['table_name'], ()),
                fks_by_table.get(row['table_name'], ()),
                is_view=bool(row['is_view']),
            )
            for row in tables
        }
        logger.debug('Loaded %d tables from schema %s', len(result), self.schema)
        return result
