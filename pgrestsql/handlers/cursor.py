"""
### Cursor Pagination

Cursor pagination is an alternative to `limit`/`offset` that stays stable when rows are inserted:

```
GET /api/users?first=10                      // first page
GET /api/users?first=10&after=<endCursor>    // next page
GET /api/users?last=10&before=<startCursor>  // previous page
```

A cursor is an opaque token made from the value of the order column (`orderBy`, the primary key by default).
`after` selects rows that come after it; `before` selects rows that come before it.

The result is a connection:

```javascript
{
    edges: [ {node: {...}, cursor: '...'}, ... ],
    pageInfo: {hasNextPage, hasPreviousPage, startCursor, endCursor},
    totalCount: 123,
}
```
"""

from typing import List, Tuple

from .base import RestQueryHandlerBase
from .limit import parse_int
from ..exc import InvalidQueryError
from ..statements import bind_value, decode_cursor, encode_cursor


class RestCursor(RestQueryHandlerBase):
    """ Cursor-based pagination

        Handles: first, after, last, before, orderBy, orderDirection
    """

    query_param_name = 'cursor'

    def __init__(self, table_info, bags, converter, max_limit=1000, default_limit=100):
        """ Init cursor pagination

        :param converter: TypeConverter, to convert cursor values back to the column type
        :param max_limit: The maximum page size
        :param default_limit: The page size when neither `first` nor `last` is given
        """
        super(RestCursor, self).__init__(table_info, bags)

        # Config
        self.converter = converter
        self.max_limit = max_limit
        self.default_limit = default_limit

        # On input
        self.limit = None
        self.after = None
        self.before = None
        self.backward = False
        self.order_column_name = None
        self.descending = False

    def input(self, first=None, after=None, last=None, before=None, order_by=None, order_direction=None):
        """ Receive pagination parameters

        :raises InvalidQueryError
        :raises InvalidColumnError
        :raises InvalidCursorError
        """
        first = parse_int(first, 'first')
        last = parse_int(last, 'last')
        super(RestCursor, self).input((first, after, last, before))

        # Page size
        self.backward = last is not None and first is None
        limit = last if self.backward else first
        if limit is None:
            limit = self.default_limit
        if limit < 1:
            raise InvalidQueryError('Page size must be a positive integer')
        self.limit = min(limit, self.max_limit)

        # Ordering
        if order_by:
            self.order_column_name = order_by.strip()
        else:
            pk_names = self.bags.pk.ordered_names
            if not pk_names:
                raise InvalidQueryError('Table {} has no primary key defined'.format(self.table_info.name))
            self.order_column_name = pk_names[0]
        self.validate_properties([self.order_column_name])
        self.descending = (order_direction or '').strip().lower() == 'desc'

        # Cursors
        self.after = decode_cursor(after) if after else None
        self.before = decode_cursor(before) if before else None
        return self

    def compile_statement(self):
        """ Conditions for the `after` and `before` cursors """
        column = self.bags.columns[self.order_column_name]
        conditions = []
        if self.after is not None:
            value = self._bind(self.after)
            conditions.append(column < value if self.descending else column > value)
        if self.before is not None:
            value = self._bind(self.before)
            conditions.append(column > value if self.descending else column < value)
        return conditions

    def compile_columns(self):
        """ ORDER BY clause; reversed for backward pagination """
        column = self.bags.columns[self.order_column_name]
        return [column.desc() if self.descending != self.backward else column.asc()]

    def _bind(self, value):
        column_type = self.bags.columns.column_type(self.order_column_name)
        return bind_value(self.converter.to_sql_param(value, column_type), column_type)

    def alter_query(self, stmt):
        for condition in self.compile_statement():
            stmt = stmt.where(condition)
        # Load one more row: to know whether there is another page
        return stmt.order_by(*self.compile_columns()).limit(self.limit + 1)

    def make_page(self, rows: List[dict]) -> Tuple[List[dict], bool]:
        """ Cut the extra row off, restore the order

        :return: (rows, has_more)
        """
        has_more = len(rows) > self.limit
        rows = list(rows[:self.limit])
        if self.backward:
            rows.reverse()
        return rows, has_more

    def cursor_for(self, row: dict) -> str:
        """ Make a cursor for a row """
        return encode_cursor(row[self.order_column_name])

    def page_info(self, cursors: List[str], has_more: bool) -> dict:
        """ Build the `pageInfo` object """
        if self.backward:
            has_next, has_previous = self.before is not None, has_more
        else:
            has_next, has_previous = has_more, self.after is not None
        return {
            'hasNextPage': has_next,
            'hasPreviousPage': has_previous,
            'startCursor': cursors[0] if cursors else None,
            'endCursor': cursors[-1] if cursors else None,
        }
