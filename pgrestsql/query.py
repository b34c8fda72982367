"""
### RestQuery

`RestQuery` turns query string parameters into a statement for one table.
Every parameter goes to its handler: `select`, filters, `order`, `limit`/`offset`, or the cursor.

```python
rq = RestQuery(table_info, dict(max_limit=100)).query({'age': 'gte.18', 'limit': '10'})
rq.end()        # SELECT ... WHERE ... LIMIT ...
rq.end_count()  # SELECT count(*) ...
```
"""

from typing import Mapping, List, Dict, Optional, Union, Sequence, Any

from sqlalchemy import select, func

from . import handlers
from .bag import TablePropertyBags
from .convert import TypeConverter
from .schema import TableInfo
from .util import QuerySettings


#: Query string parameters that are never treated as filters
CONTROL_PARAMETERS = frozenset((
    'offset', 'limit', 'orderBy', 'orderDirection', 'select', 'order', 'expand',
    'first', 'after', 'last', 'before',
    'join', 'fields', 'include', 'batch', 'query', 'variables', 'fragment', 'alias',
    'groupBy', 'having', 'distinct', 'aggregate', 'transform', 'validate', 'explain', 'format', 'stream',
))


def normalize_params(params: Any) -> Dict[str, List[str]]:
    """ Bring query string parameters to the form of {name: [value, ...]}

    Accepts:
    * a dict of strings: {'age': 'gt.18'}
    * a dict of lists: {'age': ['gt.18', 'lt.65']}, e.g. from urllib.parse.parse_qs()
    * a MultiDict with getlist() (werkzeug, webob)
    * a list of (name, value) pairs, e.g. from urllib.parse.parse_qsl()
    """
    if not params:
        return {}

    if hasattr(params, 'getlist'):
        return {name: list(params.getlist(name)) for name in params.keys()}

    if isinstance(params, Mapping):
        result = {}
        for name, values in params.items():
            if values is None:
                continue
            if isinstance(values, (list, tuple)):
                result[name] = [str(v) for v in values if v is not None]
            else:
                result[name] = [str(values)]
        return result

    result = {}
    for name, value in params:
        result.setdefault(name, []).append(str(value))
    return result


def first_value(params: Mapping[str, Sequence[str]], name: str) -> Optional[str]:
    """ Get the first value of a parameter """
    values = params.get(name)
    return values[0] if values else None


class RestQuery(object):
    """ PostgREST-style queries for a table

        Usage:

            rq = RestQuery(table_info).query({'age': 'gte.18', 'order': 'name', 'limit': '10'})
            stmt = rq.end()
            count_stmt = rq.end_count()
    """

    # The class to use for getting structural data from a table
    _TABLE_PROPERTY_BAGS_CLS = TablePropertyBags

    def __init__(self, table_info: TableInfo, handler_settings: Union[dict, QuerySettings] = None, converter: TypeConverter = None):
        """ Init a query

        :param table_info: The table to query
        :param handler_settings: Settings for the handlers.
            These are just plain kwargs names for every handler object's __init__ method.
            See RestQuerySettingsDict for the list.
        :param converter: Type converter for values
        """
        self.table_info = table_info
        self.bags = self._TABLE_PROPERTY_BAGS_CLS.for_table(table_info)
        self.converter = converter or TypeConverter()

        # Settings
        if isinstance(handler_settings, QuerySettings):
            self._handler_settings = handler_settings
        else:
            self._handler_settings = QuerySettings(handler_settings or {})

        # Init handlers
        self._init_handlers()

        #: The normalized query string
        self.params = {}
        #: Legacy `expand` parameter
        self.expand = None
        #: Using cursor pagination?
        self.cursor_mode = False

    # region Handlers

    _HANDLER_SELECT = handlers.RestSelect
    _HANDLER_FILTER = handlers.RestFilter
    _HANDLER_ORDER = handlers.RestOrder
    _HANDLER_LIMIT = handlers.RestLimit
    _HANDLER_CURSOR = handlers.RestCursor

    HANDLER_NAMES = ('select', 'filter', 'order', 'limit', 'cursor')

    # for IDE completion
    handler_select = None  # type: handlers.RestSelect
    handler_filter = None  # type: handlers.RestFilter
    handler_order = None  # type: handlers.RestOrder
    handler_limit = None  # type: handlers.RestLimit
    handler_cursor = None  # type: handlers.RestCursor

    def _init_handlers(self):
        """ Initialize every handler """
        for name in self.HANDLER_NAMES:
            handler_cls = getattr(self, '_HANDLER_' + name.upper())
            handler = self._init_handler(name, handler_cls)
            setattr(self, 'handler_' + name, handler.with_restquery(self))

    def _init_handler(self, handler_name, handler_cls):
        """ Init a handler, and load its settings """
        handler_settings = self._handler_settings.get_settings(handler_name, handler_cls)
        if handler_cls in (self._HANDLER_FILTER, self._HANDLER_CURSOR):
            return handler_cls(self.table_info, self.bags, self.converter, **handler_settings)
        return handler_cls(self.table_info, self.bags, **handler_settings)

    # endregion

    def query(self, params, cursor: bool = False):
        """ Build a query from the query string

        :param params: Query string parameters. See normalize_params()
        :param cursor: Use cursor pagination (first/after/last/before) instead of limit/offset
        :raises InvalidQueryError: syntax error in any of the parameters
        :raises InvalidColumnError: invalid column name provided in the input
        :rtype: RestQuery
        """
        self.params = params = normalize_params(params)
        self.cursor_mode = cursor
        self.expand = first_value(params, 'expand')

        # Select goes first: it takes the embedded filters
        self.handler_select.input(first_value(params, 'select'), params)

        # Filters: everything else
        self.handler_filter.input({
            name: values
            for name, values in params.items()
            if name not in CONTROL_PARAMETERS and name not in self.handler_select.embedded_filter_keys
        })

        # Pagination
        if cursor:
            self.handler_cursor.input(
                first=first_value(params, 'first'),
                after=first_value(params, 'after'),
                last=first_value(params, 'last'),
                before=first_value(params, 'before'),
                order_by=first_value(params, 'orderBy'),
                order_direction=first_value(params, 'orderDirection'),
            )
            self.handler_select.ensure_loaded(self.handler_cursor.order_column_name)
        else:
            self.handler_order.input(
                order=first_value(params, 'order'),
                order_by=first_value(params, 'orderBy'),
                order_direction=first_value(params, 'orderDirection'),
            )
            self.handler_limit.input(
                offset=first_value(params, 'offset'),
                limit=first_value(params, 'limit'),
            )

        # Done
        return self

    @property
    def embedded_fields(self):
        """ Resources to embed, from `select` """
        return self.handler_select.embedded_fields

    def where(self):
        """ The WHERE condition, or None """
        return self.handler_filter.compile_statement()

    def end(self):
        """ Get the resulting SELECT statement

        :rtype: sqlalchemy.sql.expression.Select
        """
        stmt = select(*self.handler_select.compile_columns()).select_from(self.bags.table)
        stmt = self.handler_filter.alter_query(stmt)
        if self.cursor_mode:
            stmt = self.handler_cursor.alter_query(stmt)
        else:
            stmt = self.handler_order.alter_query(stmt)
            stmt = self.handler_limit.alter_query(stmt)
        return stmt

    def end_count(self):
        """ Get a statement that counts all matching rows: `SELECT count(*) AS count` """
        stmt = select(func.count().label('count')).select_from(self.bags.table)
        return self.handler_filter.alter_query(stmt)

    def __repr__(self):
        return 'RestQuery({})'.format(self.table_info.name)
