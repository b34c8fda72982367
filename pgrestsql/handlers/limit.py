"""
### Slice Operation

Slicing corresponds to the `LIMIT .. OFFSET ..` part of an SQL query.

* `limit` would limit the number of items returned by the API
* `offset` would shift the "window" a number of items

Together, these two elements implement pagination:

```
GET /api/users?limit=100&offset=200
```

Both values are kept within the bounds: `0 <= offset <= max_offset`, `1 <= limit <= max_limit`.
Out-of-bounds values are rejected, not clamped.
"""

from sqlalchemy import func, literal_column, select

from .base import RestQueryHandlerBase
from ..exc import InvalidQueryError


def parse_int(value, name: str):
    """ Parse an integer from the query string """
    if value is None or isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        raise InvalidQueryError('{} must be an integer, got: {}'.format(name, value))


class RestLimit(RestQueryHandlerBase):
    """ Limits and offsets

        Handles two keys:
        * 'limit': int: LIMIT for the query
        * 'offset': int: OFFSET for the query
    """

    query_param_name = 'limit'

    def __init__(self, table_info, bags, max_limit=1000, max_offset=1000000):
        """ Init a limit

        :param max_limit: The maximum number of items that can be loaded with this query.
        :param max_offset: The maximum offset
        """
        super(RestLimit, self).__init__(table_info, bags)

        # Config
        self.max_limit = max_limit
        self.max_offset = max_offset
        assert self.max_limit > 0

        # On input
        self.offset = None
        self.limit = None

        # Internal
        # List of columns to group results with (in order to impose a limit per group)
        self._window_over_columns = None
        self._window_order_by = ()

    def input(self, offset=None, limit=None):
        offset = parse_int(offset, 'Offset')
        limit = parse_int(limit, 'Limit')
        super(RestLimit, self).input((offset, limit))

        # Validate
        if offset is not None and not (0 <= offset <= self.max_offset):
            raise InvalidQueryError('Offset must be between 0 and {}'.format(self.max_offset))
        if limit is not None and not (1 <= limit <= self.max_limit):
            raise InvalidQueryError('Limit must be between 1 and {}'.format(self.max_limit))

        # Done
        self.offset = offset
        self.limit = limit
        return self

    @property
    def has_limit(self):
        """ Check whether there's a limit on this handler """
        return self.limit is not None or bool(self.offset)

    def limit_groups_over_columns(self, fk_columns, order_by=()):
        """ Instead of the usual limit, use a window function over the given columns.

        This is used to load related rows with a limit per every parent row:
        that is, a limit on the number of related entities per primary entity, in one query.

        This is achieved using a Window Function:

            SELECT * FROM (
                SELECT *, row_number() OVER(PARTITION BY author_id) AS group_row_n
                FROM articles
                WHERE author_id IN (...)
            ) AS grouped
            WHERE group_row_n <= 10

            id  |   author_id   |   group_row_n
            ------------------------------------
            1       1               1
            2       1               2
            3       2               1
            4       2               2
            5       2               3

        :param fk_columns: List of foreign key columns to group with
        :param order_by: Ordering within every group
        """
        self._window_over_columns = fk_columns
        self._window_order_by = order_by

    def alter_query(self, stmt):
        """ Apply offset() and limit() to the statement """
        if not self._window_over_columns:
            # Use the regular offset/limit
            if self.offset:
                stmt = stmt.offset(self.offset)
            if self.limit:
                stmt = stmt.limit(self.limit)
            return stmt
        else:
            # Use a window function
            return self._limit_using_window_function(stmt)

    def _limit_using_window_function(self, stmt):
        """ Apply a limit using a window function """
        if not self.has_limit:
            return stmt

        # First, add a row counter:
        stmt = stmt.add_columns(
            # for every group, count the rows with row_number().
            func.row_number().over(
                partition_by=self._window_over_columns,
                order_by=self._window_order_by or None,
            ).label('group_row_n')
        )

        # Now, make it into a subquery
        grouped = stmt.subquery('grouped')
        stmt = select(literal_column('*')).select_from(grouped)

        # And apply the LIMIT condition using row numbers
        group_row_n = literal_column('group_row_n')
        if self.offset:
            stmt = stmt.where(group_row_n > self.offset)
        if self.limit:
            stmt = stmt.where(group_row_n <= ((self.offset or 0) + self.limit))
        return stmt
