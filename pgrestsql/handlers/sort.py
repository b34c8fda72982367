"""
### Order Operation

Ordering corresponds to the `ORDER BY` part of an SQL query.

PostgREST syntax: a comma-separated list of columns, each optionally followed by modifiers:

```
GET /api/users?order=age.desc,name.asc.nullslast
```

Modifiers: `asc` (the default), `desc`, `nullsfirst`, `nullslast`.

There's also a simpler legacy syntax for a single column, which takes precedence over `order`:

```
GET /api/users?orderBy=name&orderDirection=desc
```
"""

from typing import List, Optional, Tuple

from .base import RestQueryHandlerBase
from ..exc import InvalidQueryError


class OrderSpec:
    """ Ordering by a single column """
    __slots__ = ('column_name', 'descending', 'nulls')

    def __init__(self, column_name: str, descending: bool = False, nulls: Optional[str] = None):
        self.column_name = column_name
        self.descending = descending
        #: 'first', 'last', or None
        self.nulls = nulls

    def __eq__(self, other):
        return isinstance(other, OrderSpec) and \
               (self.column_name, self.descending, self.nulls) == (other.column_name, other.descending, other.nulls)

    def __repr__(self):
        return '{}{}{}'.format(self.column_name,
                               '.desc' if self.descending else '.asc',
                               '.nulls' + self.nulls if self.nulls else '')


class RestOrder(RestQueryHandlerBase):
    """ PostgREST-style ordering

        * `order`: 'col.dir.nulls,col2'
        * `orderBy` + `orderDirection`: a single column
    """

    query_param_name = 'order'

    def __init__(self, table_info, bags):
        super(RestOrder, self).__init__(table_info, bags)

        # On input
        #: List of OrderSpec
        self.order_spec = []

    def input(self, order: str = None, order_by: str = None, order_direction: str = None):
        """ Parse the ordering

        :param order: PostgREST ordering
        :param order_by: Legacy single-column ordering. Takes precedence over `order`
        :param order_direction: 'asc' or 'desc', for `order_by`
        """
        super(RestOrder, self).input((order, order_by, order_direction))

        if order_by and order_by.strip():
            self.order_spec = [OrderSpec(order_by.strip(), descending=(order_direction or '').strip().lower() == 'desc')]
        elif order and order.strip():
            self.order_spec = self._parse_order(order)
        else:
            self.order_spec = []

        # Validate
        self.validate_properties([o.column_name for o in self.order_spec])
        return self

    def is_input_empty(self):
        return not self.order_spec

    @staticmethod
    def _parse_order(order: str) -> List[OrderSpec]:
        specs = []
        for item in order.split(','):
            item = item.strip()
            if not item:
                continue

            column_name, *modifiers = [p.strip() for p in item.split('.')]
            spec = OrderSpec(column_name)
            for modifier in modifiers:
                modifier = modifier.lower()
                if modifier == 'asc':
                    spec.descending = False
                elif modifier == 'desc':
                    spec.descending = True
                elif modifier == 'nullsfirst':
                    spec.nulls = 'first'
                elif modifier == 'nullslast':
                    spec.nulls = 'last'
                else:
                    raise InvalidQueryError('Invalid order modifier "{}" for column {}'.format(modifier, column_name))
            specs.append(spec)
        return specs

    def compile_columns(self, reverse: bool = False):
        """ Get the list of ORDER BY clauses

        :param reverse: Flip the directions (for backward pagination)
        """
        clauses = []
        for spec in self.order_spec:
            column = self.bags.columns[spec.column_name]
            clause = column.desc() if spec.descending != reverse else column.asc()
            if spec.nulls == 'first':
                clause = clause.nulls_first()
            elif spec.nulls == 'last':
                clause = clause.nulls_last()
            clauses.append(clause)
        return clauses

    def alter_query(self, stmt):
        if self.order_spec:
            stmt = stmt.order_by(*self.compile_columns())
        return stmt
