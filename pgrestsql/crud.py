"""
### CRUD

`CrudHelper` puts everything together: it validates the request, checks table privileges,
estimates query complexity, builds statements, runs them with the executor,
expands relationships, and converts the results into JSON-friendly values.

```python
from sqlalchemy import create_engine
from pgrestsql import CrudHelper, ReflectedSchemaProvider, SqlAlchemyExecutor

engine = create_engine('postgresql://...')
crud = CrudHelper(ReflectedSchemaProvider(engine), SqlAlchemyExecutor(engine), max_limit=100)

crud.get_records('users', {'age': 'gte.18', 'select': 'id,name,posts(title)'}, limit=10)
crud.get_record('order_items', '1,2')
crud.create_record('users', {'name': 'John'})
```

Every method takes the name of a table, and raises:

* `InvalidQueryError` (and subclasses) for invalid input
* `PermissionDeniedError` when the database user may not perform the operation
* `ConstraintViolationError` when the database rejects the data
"""

from logging import getLogger
from typing import Any, List, Mapping, Optional, Sequence

from sqlalchemy import exc as sa_exc

from .complexity import QueryComplexityAnalyzer
from .convert import TypeConverter
from .exc import InvalidQueryError, InvalidTableError, InvalidColumnError, RecordNotFoundError
from .expand import RelationshipExpander, parse_expand
from .handlers.limit import parse_int
from .query import RestQuery, normalize_params, first_value
from .schema import SchemaProvider, TableInfo
from .statements import QueryBuilder
from .util import QuerySettings
from .validation import Validator, handle_constraint_violation

logger = getLogger(__name__)


class CrudHelper:
    """ CRUD operations over the tables of a schema

    :param schema: Schema provider
    :param executor: SQL executor
    :param converter: Type converter. By default, one that looks enum values up in `schema`
    :param settings: Settings. See RestQuerySettingsDict
    :raises KeyError: unknown settings
    """

    # Classes used by this helper
    _RESTQUERY_CLS = RestQuery
    _VALIDATOR_CLS = Validator
    _COMPLEXITY_CLS = QueryComplexityAnalyzer
    _EXPANDER_CLS = RelationshipExpander

    def __init__(self, schema: SchemaProvider, executor, converter: TypeConverter = None, **settings):
        self.schema = schema
        self.executor = executor
        self.converter = converter or TypeConverter(schema)

        # Settings
        self.settings = QuerySettings(settings)
        self.validator = self._VALIDATOR_CLS(
            schema, executor,
            **self.settings.get_settings('validation', self._VALIDATOR_CLS))
        self.complexity = self._COMPLEXITY_CLS(
            **self.settings.get_settings('complexity', self._COMPLEXITY_CLS))
        self.expander = self._EXPANDER_CLS(
            schema, executor, self.converter,
            **self.settings.get_settings('expand', self._EXPANDER_CLS))
        for name in self._RESTQUERY_CLS.HANDLER_NAMES:
            self.settings.get_settings(name, getattr(self._RESTQUERY_CLS, '_HANDLER_' + name.upper()))
        self.settings.raise_if_invalid_handler_settings('returning_supported')

        #: Does the database support UPDATE .. RETURNING ?
        self.returning_supported = self.settings.get('returning_supported', True)

    # region Read

    def get_records(self, table_name: str, params: Any = None, offset: int = None, limit: int = None,
                    order_by: str = None, order_direction: str = None, select: str = None, expand: str = None) -> dict:
        """ Load a page of records

        :param table_name: The table
        :param params: Query string parameters: filters, `select`, `order`, embedded filters
        :param offset: OFFSET. Default: `offset` from the query string, or 0
        :param limit: LIMIT. Default: `limit` from the query string, or 100
        :param order_by: Column to order by. Takes precedence over `order`
        :param order_direction: 'asc' or 'desc', for `order_by`. Default: `orderDirection` from the query string
        :param select: Columns and embedded resources
        :param expand: Legacy relationship expansion
        :return: {data: [...], pagination: {offset, limit, total, hasMore}}
        """
        params = normalize_params(params)
        offset = self._pagination_param(params, 'offset', offset, 0)
        limit = self._pagination_param(params, 'limit', limit, 100)
        self.validator.validate_pagination_params(offset, limit)
        table_info = self._get_table(table_name)
        self.validator.validate_table_permission(table_name, 'SELECT')

        rq = self._restquery(table_info, params,
                             offset=offset, limit=limit,
                             orderBy=order_by, orderDirection=order_direction,
                             select=select, expand=expand)
        expansions = self._prepare_expansion(rq, table_info, limit)

        # Load
        rows = self.executor.query_for_list(rq.end())
        rows = self._expand(rows, table_info, rq, expansions)
        total = self._count(rq)

        return {
            'data': self._finish(rows, table_info, rq),
            'pagination': {
                'offset': offset,
                'limit': limit,
                'total': total,
                'hasMore': offset + limit < total,
            },
        }

    def get_record(self, table_name: str, key: str, select: str = None, expand: str = None) -> dict:
        """ Load a single record by its primary key

        :param key: The key. Composite keys are comma-joined in primary key column order: `1,2`
        :raises RecordNotFoundError
        """
        _require_key(key)
        table_info = self._get_table(table_name)
        self.validator.validate_table_permission(table_name, 'SELECT')

        builder = QueryBuilder(table_info, self.converter)
        key_parts = builder.parse_key(key)

        rq = self._restquery(table_info, None, select=select, expand=expand)
        expansions = self._prepare_expansion(rq, table_info, 1)

        rows = self.executor.query_for_list(rq.end().where(builder.key_condition(key_parts)))
        if not rows:
            raise RecordNotFoundError(table_name, key)

        rows = self._expand(rows[:1], table_info, rq, expansions)
        return self._finish(rows, table_info, rq)[0]

    def get_records_with_cursor(self, table_name: str, params: Any = None,
                                first: int = None, after: str = None, last: int = None, before: str = None,
                                order_by: str = None, order_direction: str = None,
                                select: str = None, expand: str = None) -> dict:
        """ Load a page of records using cursor pagination

        :param first: Page size, going forward
        :param after: Cursor: load records after it
        :param last: Page size, going backward
        :param before: Cursor: load records before it
        :param order_by: The column to paginate over. Default: the first primary key column
        :param order_direction: 'asc' or 'desc'
        :return: {edges: [{node, cursor}], pageInfo: {...}, totalCount}
        """
        table_info = self._get_table(table_name)
        self.validator.validate_table_permission(table_name, 'SELECT')

        rq = self._restquery(table_info, params, cursor=True,
                             first=first, after=after, last=last, before=before,
                             orderBy=order_by, orderDirection=order_direction,
                             select=select, expand=expand)
        handler_cursor = rq.handler_cursor
        expansions = self._prepare_expansion(rq, table_info, handler_cursor.limit)

        # Load
        rows, has_more = handler_cursor.make_page(self.executor.query_for_list(rq.end()))
        cursors = [handler_cursor.cursor_for(row) for row in rows]
        rows = self._expand(rows, table_info, rq, expansions)
        total = self._count(rq)

        return {
            'edges': [{'node': node, 'cursor': cursor}
                      for node, cursor in zip(self._finish(rows, table_info, rq), cursors)],
            'pageInfo': handler_cursor.page_info(cursors, has_more),
            'totalCount': total,
        }

    # endregion

    # region Create

    def create_record(self, table_name: str, data: Mapping[str, Any]) -> dict:
        """ INSERT a record

        :return: The created record
        """
        if not data:
            raise InvalidQueryError('Data cannot be empty')
        table_info = self._get_table(table_name)
        self.validator.validate_table_permission(table_name, 'INSERT')

        stmt = QueryBuilder(table_info, self.converter).build_insert(data)
        rows = self._write(stmt)
        logger.debug('Created a record in table %s', table_name)
        return self.converter.convert_record(rows[0], table_info) if rows else {}

    def create_bulk_records(self, table_name: str, records: Sequence[Mapping[str, Any]]) -> List[dict]:
        """ INSERT many records with a single statement

        NULL values are dropped; the column list is the union of all records' columns.

        :return: The created records
        """
        if not records:
            raise InvalidQueryError('Data list cannot be empty')
        table_info = self._get_table(table_name)
        self.validator.validate_table_permission(table_name, 'INSERT')

        records = _drop_nulls(records, table_info)
        if not records:
            raise InvalidQueryError('No valid records to create')

        rows = self._write(QueryBuilder(table_info, self.converter).build_bulk_insert(records))
        logger.debug('Created %d records in table %s', len(rows), table_name)
        return self.converter.convert_records(rows, table_info)

    # endregion

    # region Update

    def update_record(self, table_name: str, key: str, data: Mapping[str, Any]) -> Optional[dict]:
        """ UPDATE a record by its primary key

        Primary key columns are never updated.

        :return: The updated record, or None when there is no such record
        """
        _require_key(key)
        if not data:
            raise InvalidQueryError('Data cannot be empty')
        table_info = self._get_table(table_name)
        self.validator.validate_table_permission(table_name, 'UPDATE')

        builder = QueryBuilder(table_info, self.converter)
        pk_names = builder.primary_key_names()
        self.validator.validate_columns(table_info, data.keys(), 'update')

        values = {name: value for name, value in data.items() if name not in pk_names}
        if not values:
            raise InvalidQueryError('No valid columns to update')

        key_parts = builder.parse_key(key)
        where = builder.key_condition(key_parts)
        if self.returning_supported:
            rows = self._write(builder.build_update(values, where))
        else:
            # UPDATE, then SELECT
            updated = self._write_count(builder.build_update(values, where, returning=False))
            rows = self.executor.query_for_list(builder.build_select_by_key(key_parts)) if updated else []

        return self.converter.convert_record(rows[0], table_info) if rows else None

    def update_bulk_records(self, table_name: str, updates: Sequence[Mapping[str, Any]]) -> List[dict]:
        """ UPDATE many records by their keys

        :param updates: List of {id: key, data: {...}}
        :return: The updated records. Keys that matched nothing are skipped.
        """
        if not updates:
            raise InvalidQueryError('Update list cannot be empty')
        self._get_table(table_name)
        self.validator.validate_table_permission(table_name, 'UPDATE')

        results = []
        for item in updates:
            key = item.get('id')
            if key is None or not str(key).strip():
                raise InvalidQueryError("Each update item must have an 'id' field")
            data = item.get('data')
            if not data:
                raise InvalidQueryError("Each update item must have a 'data' field with update values")

            result = self.update_record(table_name, str(key), data)
            if result is not None:
                results.append(result)
        return results

    def update_records_by_filters(self, table_name: str, params: Any, data: Mapping[str, Any]) -> dict:
        """ UPDATE all records that match the filters

        :return: {updatedCount, success}
        """
        params = normalize_params(params)
        if not params:
            raise InvalidQueryError('Filters cannot be empty')
        if not data:
            raise InvalidQueryError('Update data cannot be empty')
        table_info = self._get_table(table_name)
        self.validator.validate_table_permission(table_name, 'UPDATE')

        where = self._filters_condition(table_info, params)
        stmt = QueryBuilder(table_info, self.converter).build_update(data, where, returning=False)
        count = self._write_count(stmt)
        logger.debug('Updated %d records in table %s', count, table_name)
        return {'updatedCount': count, 'success': True}

    # endregion

    # region Delete

    def delete_record(self, table_name: str, key: str) -> bool:
        """ DELETE a record by its primary key

        :return: Whether a record was deleted
        """
        _require_key(key)
        table_info = self._get_table(table_name)
        self.validator.validate_table_permission(table_name, 'DELETE')

        builder = QueryBuilder(table_info, self.converter)
        where = builder.key_condition(builder.parse_key(key))
        return self._write_count(builder.build_delete(where)) > 0

    def delete_records_by_filters(self, table_name: str, params: Any) -> dict:
        """ DELETE all records that match the filters

        :return: {deletedCount, success}
        """
        params = normalize_params(params)
        if not params:
            raise InvalidQueryError('Filters cannot be empty')
        table_info = self._get_table(table_name)
        self.validator.validate_table_permission(table_name, 'DELETE')

        where = self._filters_condition(table_info, params)
        count = self._write_count(QueryBuilder(table_info, self.converter).build_delete(where))
        logger.debug('Deleted %d records from table %s', count, table_name)
        return {'deletedCount': count, 'success': True}

    # endregion

    # region Upsert

    def upsert_record(self, table_name: str, data: Mapping[str, Any]) -> dict:
        """ INSERT a record, or UPDATE it when its primary key exists

        :return: The record. Empty when nothing was written: a conflict with nothing to update
        """
        if not data:
            raise InvalidQueryError('Data cannot be empty')
        table_info = self._get_table(table_name)
        self.validator.validate_table_permission(table_name, 'INSERT')
        self.validator.validate_table_permission(table_name, 'UPDATE')

        rows = self._write(QueryBuilder(table_info, self.converter).build_upsert(data))
        return self.converter.convert_record(rows[0], table_info) if rows else {}

    def upsert_bulk_records(self, table_name: str, records: Sequence[Mapping[str, Any]]) -> List[dict]:
        """ Upsert many records with a single statement """
        if not records:
            raise InvalidQueryError('Data list cannot be empty')
        table_info = self._get_table(table_name)
        self.validator.validate_table_permission(table_name, 'INSERT')
        self.validator.validate_table_permission(table_name, 'UPDATE')

        records = _drop_nulls(records, table_info)
        if not records:
            raise InvalidQueryError('No valid records to upsert')

        rows = self._write(QueryBuilder(table_info, self.converter).build_bulk_upsert(records))
        return self.converter.convert_records(rows, table_info)

    # endregion

    # region Helpers

    def _get_table(self, table_name: str) -> TableInfo:
        """ Validate the table name, and get the table

        :raises InvalidTableError
        """
        if table_name is None or not table_name.strip():
            raise InvalidTableError(table_name, 'Table name cannot be empty')
        return self.validator.get_validated_table_info(table_name)

    def _pagination_param(self, params: Mapping[str, Sequence[str]], name: str, value: Optional[int], default: int) -> int:
        """ An explicit argument, or else the query string value, or else the default

        :raises InvalidQueryError: not an integer
        """
        if value is None:
            value = parse_int(first_value(params, name), name.capitalize())
        return default if value is None else value

    def _restquery(self, table_info: TableInfo, params: Any, cursor: bool = False, **overrides) -> RestQuery:
        """ Build a RestQuery from the query string, overridden by the explicit arguments """
        params = normalize_params(params)
        for name, value in overrides.items():
            if value is not None and value != '':
                params[name] = [str(value)]
        return self._RESTQUERY_CLS(table_info, self.settings, self.converter).query(params, cursor=cursor)

    def _prepare_expansion(self, rq: RestQuery, table_info: TableInfo, limit: int) -> list:
        """ Check query complexity, make sure that relationship keys are loaded

        Embedded resources take precedence over the legacy `expand`.

        :return: Parsed legacy expansions
        :raises QueryComplexityError
        """
        embedded_fields = rq.embedded_fields
        expansions = parse_expand(rq.expand) if not embedded_fields else []

        self.complexity.validate(rq.handler_filter.input_value, limit,
                                 rq.handler_select.fields, rq.expand if expansions else None)

        names = [f.name for f in embedded_fields] or [name for name, _ in expansions]
        rq.handler_select.ensure_loaded(*self.expander.key_columns(table_info, names))
        return expansions

    def _expand(self, rows: List[dict], table_info: TableInfo, rq: RestQuery, expansions: list) -> List[dict]:
        if rq.embedded_fields:
            return self.expander.expand_relationships(rows, table_info, rq.embedded_fields)
        if expansions:
            return self.expander.expand_legacy(rows, table_info, expansions)
        return rows

    def _count(self, rq: RestQuery) -> int:
        rows = self.executor.query_for_list(rq.end_count())
        return int(rows[0]['count']) if rows else 0

    def _finish(self, rows: List[dict], table_info: TableInfo, rq: RestQuery) -> List[dict]:
        """ Remove the columns the user has not asked for, convert values """
        rows = rq.handler_select.strip_quiet_columns(rows)
        return self.converter.convert_records(rows, table_info)

    def _filters_condition(self, table_info: TableInfo, params: Mapping[str, List[str]]):
        """ WHERE condition for bulk operations; only filters are used """
        rq = self._restquery(table_info, params)
        where = rq.where()
        if not rq.handler_filter.input_value or where is None:
            raise InvalidQueryError('Filters cannot be empty')
        return where

    def _write(self, stmt) -> List[dict]:
        """ Run a statement with RETURNING; turn constraint violations into errors """
        try:
            return self.executor.query_for_list(stmt)
        except (sa_exc.IntegrityError, sa_exc.DataError) as e:
            raise handle_constraint_violation(e) from e

    def _write_count(self, stmt) -> int:
        """ Run a statement without RETURNING; turn constraint violations into errors """
        try:
            return self.executor.update(stmt)
        except (sa_exc.IntegrityError, sa_exc.DataError) as e:
            raise handle_constraint_violation(e) from e

    # endregion


def _require_key(key):
    if key is None or not str(key).strip():
        raise InvalidQueryError('ID cannot be empty')


def _drop_nulls(records: Sequence[Mapping[str, Any]], table_info: TableInfo) -> List[dict]:
    """ Drop NULL values and empty records; validate the column names """
    result = []
    for record in records:
        for name in record:
            if not table_info.has_column(name):
                raise InvalidColumnError(table_info.name, name, 'insert')
        record = {name: value for name, value in record.items() if value is not None}
        if record:
            result.append(record)
    return result
