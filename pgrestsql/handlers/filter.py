"""
### Filter Operation

Filtering corresponds to the `WHERE` part of an SQL query.

Every query string parameter that is not a control parameter (`select`, `order`, `limit`, etc) is a filter:

```
GET /api/users?age=gte.18&status=eq.active
```

A filter is `<column>=<operator>.<value>`. Without the operator, it's an equality: `age=18` is the same as `age=eq.18`.
An unknown operator is an equality too, and the whole value is compared: `email=john@example.com`.
All filters are ANDed together.

#### OR groups

`or=(<column>.<operator>.<value>,...)` ORs its conditions together:

```
GET /api/users?or=(name.like.John,age.gt.65)&status=eq.active
```

→ `WHERE (name LIKE '%John%' OR age > 65) AND status = 'active'`

OR groups cannot contain parentheses: `in.(...)` won't work inside them.

#### Operators

* Comparison: `eq`, `neq`, `gt`, `gte`, `lt`, `lte`
* Pattern matching: `like`, `ilike` (`%value%`), `startswith` (`value%`), `endswith` (`%value`)
* Lists: `in.(a,b,c)`, `notin.(a,b,c)`
* NULLs and booleans: `is.null`, `is.true`, `is.false`, `isnotnull`
* JSON keys: `haskey.key`, `haskeys.["a","b"]` (all of them), `hasanykeys.["a","b"]` (any of them),
  `exists.key`; aliases: `existsall`, `existsany`, `jsonexistsall`, `jsonexistsany`, `jsonexists`
* JSON containment: `jsoncontains.{"a":1}` (`@>`), `jsoncontained.{...}` (`<@`); aliases: `contains`, `containedin`
* JSON path: `jsonpath.$.a` (`@?`), `jsonpathexists.$.a == 1` (`@@`)
* Arrays: `arraycontains.value`, `arrayhasany.[a,b]`, `arrayhasall.[a,b]`, `arraylength.3`
* Full text search: `fts` (plainto_tsquery), `plfts` (phraseto_tsquery), `wfts` (websearch_to_tsquery)

Values are converted to the column's type and bound as parameters; they are never put into the query text.
Filter values that look like SQL (`;`, `--`, `/*`, `DROP`, `UNION`, ...) are rejected.
"""

import json
from typing import Mapping, Sequence, Union, List

from sqlalchemy import and_, or_, func, literal
from sqlalchemy.dialects import postgresql as pg

from .base import RestQueryHandlerBase
from ..exc import InvalidQueryError
from ..statements import bind_value, pg_cast
from ..types import ArrayType
from ..validation import validate_filter_value, validate_in_operator_values


# region Filter Expression Classes

class FilterExpressionBase:
    """ An expression from the query string """

    __slots__ = ()

    def compile_expression(self):
        """ Compiles the expression into an SQL expression """
        raise NotImplementedError()

    @staticmethod
    def sql_anded_together(conditions):
        """ Take a list of conditions and AND then together into an SQL expression

            Returns None when there are no conditions at all
        """
        if not conditions:
            return None
        return and_(*conditions) if len(conditions) > 1 else conditions[0]


class FilterColumnExpression(FilterExpressionBase):
    """ An expression involving a column: `column operator value` """

    __slots__ = ('handler', 'column_name', 'column', 'column_type', 'operator_str', 'operator_lambda', 'value')

    def __init__(self, handler, column_name, operator_str, operator_lambda, value):
        """ Init a column expression

        :param handler: The filter handler: it knows how to bind values
        :type handler: RestFilter
        :param column_name: Name of the column
        :param operator_str: The operator, e.g. 'eq'
        :param operator_lambda: A callable that implements an SQL expression handling the operator
        :param value: The value the operator is applied to: a string from the query string, or its parsed form
        """
        self.handler = handler
        self.column_name = column_name
        self.column = handler.bags.columns[column_name]
        self.column_type = handler.bags.columns.column_type(column_name)
        self.operator_str = operator_str
        self.operator_lambda = operator_lambda
        self.value = value

    def __repr__(self):
        return '{} {} {!r}'.format(self.column_name, self.operator_str, self.value)

    def compile_expression(self):
        return self.operator_lambda(self.handler, self.column, self.column_type, self.value)


class FilterOrExpression(FilterExpressionBase):
    """ An OR group: `or=(a.eq.1,b.gt.2)` """

    __slots__ = ('expressions',)

    def __init__(self, expressions: Sequence[FilterColumnExpression]):
        self.expressions = list(expressions)

    def __repr__(self):
        return '(OR: {})'.format(self.expressions)

    def compile_expression(self):
        criteria = [e.compile_expression() for e in self.expressions]
        # Parenthesize, so that it survives when ANDed with other filters
        return or_(*criteria).self_group()

# endregion


def _strip_quotes(s: str) -> str:
    s = s.strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in '"\'':
        return s[1:-1]
    return s


class RestFilter(RestQueryHandlerBase):
    """ PostgREST-style filtering

        Receives a mapping of query string parameters: {column: [operator.value, ...]}.
        The special `or` key receives OR groups.
    """

    query_param_name = 'filter'

    def __init__(self, table_info, bags, converter, force_filter=None, text_search_config='english'):
        """ Init a filter

        :param converter: TypeConverter for the values
        :param force_filter: Filters that are forced onto every query, in the query string format:
            {'column': 'operator.value'}
        :param text_search_config: Text search configuration for fts, plfts, wfts
        """
        super(RestFilter, self).__init__(table_info, bags)

        # Config
        self.converter = converter
        self.force_filter = force_filter or {}
        self.text_search_config = text_search_config

        # On input
        #: List of parsed FilterExpressionBase
        self.expressions = []

    # region Operators

    # operator => lambda handler, column, column type, value
    # The value is the operand as returned by the operator's parser in `_operand_parsers`; a string otherwise
    _operators = {
        'eq':  lambda f, col, ctype, val: col == f.bind(val, ctype),
        'neq': lambda f, col, ctype, val: col != f.bind(val, ctype),
        'gt':  lambda f, col, ctype, val: col > f.bind(val, ctype),
        'gte': lambda f, col, ctype, val: col >= f.bind(val, ctype),
        'lt':  lambda f, col, ctype, val: col < f.bind(val, ctype),
        'lte': lambda f, col, ctype, val: col <= f.bind(val, ctype),
        'like':  lambda f, col, ctype, val: col.like(literal('%' + val + '%')),
        'ilike': lambda f, col, ctype, val: col.ilike(literal('%' + val + '%')),
        'startswith': lambda f, col, ctype, val: col.like(literal(val + '%')),
        'endswith':   lambda f, col, ctype, val: col.like(literal('%' + val)),
        'in':    lambda f, col, ctype, val: col.in_([f.bind(v, ctype) for v in val]),
        'notin': lambda f, col, ctype, val: col.not_in([f.bind(v, ctype) for v in val]),
        'is':    lambda f, col, ctype, val: f.compile_is(col, ctype, val),
        'isnotnull': lambda f, col, ctype, val: col.is_not(None),
        # JSON
        'haskey':     lambda f, col, ctype, val: func.jsonb_exists(col, literal(val)),
        'haskeys':    lambda f, col, ctype, val: col.bool_op('?&')(f.text_array(val)),
        'existsall':  lambda f, col, ctype, val: col.bool_op('?&')(f.text_array(val)),
        'jsonexistsall': lambda f, col, ctype, val: col.bool_op('?&')(f.text_array(val)),
        'hasanykeys': lambda f, col, ctype, val: col.bool_op('?|')(f.text_array(val)),
        'existsany':  lambda f, col, ctype, val: col.bool_op('?|')(f.text_array(val)),
        'jsonexistsany': lambda f, col, ctype, val: col.bool_op('?|')(f.text_array(val)),
        'jsoncontains':  lambda f, col, ctype, val: col.bool_op('@>')(pg_cast(literal(val), 'jsonb')),
        'contains':      lambda f, col, ctype, val: col.bool_op('@>')(pg_cast(literal(val), 'jsonb')),
        'jsoncontained': lambda f, col, ctype, val: col.bool_op('<@')(pg_cast(literal(val), 'jsonb')),
        'containedin':   lambda f, col, ctype, val: col.bool_op('<@')(pg_cast(literal(val), 'jsonb')),
        'jsonexists': lambda f, col, ctype, val: col.bool_op('?')(literal(val)),
        'exists':     lambda f, col, ctype, val: col.bool_op('?')(literal(val)),
        'jsonpath':       lambda f, col, ctype, val: col.bool_op('@?')(pg_cast(literal(val), 'jsonpath')),
        'jsonpathexists': lambda f, col, ctype, val: col.bool_op('@@')(pg_cast(literal(val), 'jsonpath')),
        # Arrays
        'arraycontains': lambda f, col, ctype, val: col.bool_op('@>')(f.typed_array([val], ctype)),
        'arrayhasany':   lambda f, col, ctype, val: col.bool_op('&&')(f.typed_array(val, ctype)),
        'arrayhasall':   lambda f, col, ctype, val: col.bool_op('@>')(f.typed_array(val, ctype)),
        'arraylength':   lambda f, col, ctype, val: func.array_length(col, 1) == literal(val),
        # Full text search
        'fts':   lambda f, col, ctype, val: f.tsvector(col).bool_op('@@')(func.plainto_tsquery(f.ts_config(), literal(val))),
        'plfts': lambda f, col, ctype, val: f.tsvector(col).bool_op('@@')(func.phraseto_tsquery(f.ts_config(), literal(val))),
        'wfts':  lambda f, col, ctype, val: f.tsvector(col).bool_op('@@')(func.websearch_to_tsquery(f.ts_config(), literal(val))),
    }

    #: The operator to use when none is given, or an unknown one is given
    default_operator = 'eq'

    def bind(self, value, column_type):
        """ Convert a value to the column's type and bind it """
        return bind_value(self.converter.to_sql_param(value, column_type), column_type)

    def compile_is(self, column, column_type, value):
        """ `is.null`, `is.true`, `is.false` """
        lvalue = value.strip().lower()
        if lvalue == 'null':
            return column.is_(None)
        if lvalue in ('true', 'false'):
            return column == literal(lvalue == 'true')
        return column == self.bind(value, column_type)

    def text_array(self, items):
        """ ARRAY[:p1, :p2, ..]::text[] """
        return pg_cast(pg.array([literal(k) for k in items]), 'text[]')

    def typed_array(self, items, column_type):
        """ ARRAY[:p1, :p2, ..]::<element type>[] """
        element_type = column_type.element if isinstance(column_type, ArrayType) else None
        base_type_name = column_type.base_type_name if isinstance(column_type, ArrayType) else 'text'
        elements = [literal(self.converter.to_sql_param(item, element_type) if element_type is not None else item)
                    for item in items]
        return pg_cast(pg.array(elements), base_type_name + '[]')

    def ts_config(self):
        return pg_cast(literal(self.text_search_config), 'regconfig')

    def tsvector(self, column):
        return func.to_tsvector(self.ts_config(), column)

    # endregion

    # region Operand parsers

    def parse_list(self, value) -> List[str]:
        """ Parse `(a,b,c)` into a list of items """
        value = value.strip()
        if not value.startswith('(') or ')' not in value:
            raise InvalidQueryError('IN operator requires a list of values: (a,b,c)')
        inner = value[1:value.index(')')]
        validate_in_operator_values(inner)
        return [_strip_quotes(item) for item in inner.split(',') if item.strip()]

    def parse_json_keys(self, value) -> List[str]:
        """ Parse `["a","b"]` into a list of keys """
        value = value.strip()
        if not (value.startswith('[') and value.endswith(']')):
            raise InvalidQueryError('JSON keys operator requires array format: ["key1","key2"]')
        return [_strip_quotes(k) for k in value[1:-1].split(',') if k.strip()]

    def parse_json_document(self, value) -> str:
        """ Make sure that the value is valid JSON """
        try:
            json.loads(value)
        except ValueError:
            raise InvalidQueryError('Invalid JSON format for contains operator: {}'.format(value))
        return value

    def parse_array_items(self, value) -> List[str]:
        """ Parse `[a,b]` or `{a,b}` into a list of items """
        value = value.strip()
        if not ((value.startswith('[') and value.endswith(']')) or
                (value.startswith('{') and value.endswith('}'))):
            raise InvalidQueryError('Array operator requires array format: [a,b] or {{a,b}}, got: {}'.format(value))
        return [_strip_quotes(item) for item in value[1:-1].split(',') if item.strip()]

    def parse_integer(self, value) -> int:
        try:
            return int(value.strip())
        except ValueError:
            raise InvalidQueryError('Expected an integer, got: {}'.format(value))

    # operator => parser of its operand. Runs on input, so malformed values fail early
    _operand_parsers = {
        'in': parse_list,
        'notin': parse_list,
        'haskeys': parse_json_keys,
        'existsall': parse_json_keys,
        'jsonexistsall': parse_json_keys,
        'hasanykeys': parse_json_keys,
        'existsany': parse_json_keys,
        'jsonexistsany': parse_json_keys,
        'jsoncontains': parse_json_document,
        'contains': parse_json_document,
        'jsoncontained': parse_json_document,
        'containedin': parse_json_document,
        'arrayhasany': parse_array_items,
        'arrayhasall': parse_array_items,
        'arraylength': parse_integer,
    }

    # endregion

    def input(self, filters: Mapping[str, Union[str, Sequence[str]]]):
        """ Receive filters from the query string

        :param filters: {column: [operator.value, ...]}; the `or` key has OR groups
        :raises InvalidColumnError
        :raises InvalidQueryError
        """
        super(RestFilter, self).input(filters)

        # Parse
        self.expressions = []
        for criteria in (self.force_filter, filters or {}):
            self.expressions.extend(self._parse_criteria(criteria))

        # Done
        return self

    def is_input_empty(self):
        return not self.expressions

    def _parse_criteria(self, criteria):
        """ Parse {column: values} into a list of FilterExpressionBase """
        expressions = []
        for key, values in criteria.items():
            if isinstance(values, str):
                values = [values]
            for value in values:
                if value is None:
                    continue
                validate_filter_value(value)

                if key == 'or':
                    expressions.append(self._parse_or_group(value))
                else:
                    expressions.append(self._parse_condition(key, value))
        return expressions

    def _parse_or_group(self, value: str) -> FilterOrExpression:
        """ Parse `(col.op.value,col.op.value)` """
        value = value.strip()
        if value.startswith('(') and value.endswith(')'):
            value = value[1:-1]

        expressions = []
        for condition in value.split(','):
            condition = condition.strip()
            if not condition:
                continue
            if '.' not in condition:
                raise InvalidQueryError('Invalid condition in an OR group: {}'.format(condition))
            column_name, operator_and_value = condition.split('.', 1)
            expressions.append(self._parse_condition(column_name.strip(), operator_and_value))

        if not expressions:
            raise InvalidQueryError('Empty OR group')
        return FilterOrExpression(expressions)

    def _parse_condition(self, column_name: str, value: str) -> FilterColumnExpression:
        """ Parse `operator.value` for a column """
        self.validate_properties([column_name])
        operator_str, operand = self.split_operator(value)
        parser = self._operand_parsers.get(operator_str)
        if parser is not None:
            operand = parser(self, operand)
        return FilterColumnExpression(self, column_name,
                                      operator_str, self._operators[operator_str],
                                      operand)

    def split_operator(self, value: str) -> (str, str):
        """ Split `operator.value` into (operator, value)

        No dot, or an unknown operator: (default operator, the whole value)
        """
        if '.' in value:
            operator_str, operand = value.split('.', 1)
            operator_str = operator_str.strip().lower()
            if operator_str in self._operators:
                return operator_str, operand
        return self.default_operator, value

    def compile_statement(self):
        """ Create an SQL statement

        :return: An expression for WHERE, or None when there are no filters
        """
        return FilterExpressionBase.sql_anded_together([
            e.compile_expression() for e in self.expressions
        ])

    def alter_query(self, stmt):
        # Only add WHERE when there are conditions
        condition = self.compile_statement()
        if condition is not None:
            stmt = stmt.where(condition)
        return stmt


class RestEmbeddedFilter(RestFilter):
    """ Filters on an embedded resource: `select=posts(*)&posts.views=gt.10`

        Only supports simple comparisons and LIKE
    """

    query_param_name = 'embedded filter'

    _operators = {name: RestFilter._operators[name]
                  for name in ('eq', 'neq', 'gt', 'gte', 'lt', 'lte', 'like')}
