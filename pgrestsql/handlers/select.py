"""
### Select Operation

Selection corresponds to the `SELECT` part of an SQL query, and also decides which related resources are embedded.

```
GET /api/authors?select=id,name,posts(title,comments(*))
```

* `*` selects all columns; an empty `select` is the same as `*`
* `name` selects a column
* `rel(...)` embeds a related resource `rel` with its own selection, possibly nested

Embedded resources can be filtered with `<rel>.<column>=<operator>.<value>`:

```
GET /api/authors?select=*,posts(*)&posts.views=gt.100
```

A deeper path (`posts.comments.likes=gt.5`) applies to a nested embedded resource.
"""

from typing import List, Mapping, Sequence, Union, Iterable

from sqlalchemy import literal_column

from .base import RestQueryHandlerBase
from ..exc import InvalidQueryError


class SelectField:
    """ A field from the `select` expression

    A field is exactly one of:
    * a wildcard: `*`
    * a simple column: `name`
    * an embedded resource: `posts(title,body)`, which has `sub_fields`

    Attributes:
        name: field name
        sub_fields: fields selected from the embedded resource
        filters: filters for the embedded resource: {column: 'operator.value'}
    """
    __slots__ = ('name', 'sub_fields', 'filters')

    WILDCARD = '*'

    def __init__(self, name: str, sub_fields: Sequence['SelectField'] = None, filters: Mapping[str, str] = None):
        self.name = name
        self.sub_fields = list(sub_fields or ())
        self.filters = dict(filters or {})

    @property
    def is_wildcard(self) -> bool:
        return self.name == self.WILDCARD

    @property
    def is_embedded(self) -> bool:
        return bool(self.sub_fields)

    @property
    def is_simple_column(self) -> bool:
        return not self.is_wildcard and not self.is_embedded

    def get_embedded_fields(self) -> List['SelectField']:
        return get_embedded_fields(self.sub_fields)

    def get_simple_column_names(self) -> List[str]:
        return get_simple_column_names(self.sub_fields)

    def selects_all_columns(self) -> bool:
        """ Does this embedded resource want all of its columns? """
        return selects_all_columns(self.sub_fields)

    def __eq__(self, other):
        return (isinstance(other, SelectField) and
                (self.name, self.sub_fields, self.filters) == (other.name, other.sub_fields, other.filters))

    def __repr__(self):
        if self.is_embedded:
            return '{}({})'.format(self.name, ','.join(map(repr, self.sub_fields)))
        return self.name


def split_top_level(expr: str, separator: str = ',') -> List[str]:
    """ Split a string on separators that are not inside parentheses

    :raises InvalidQueryError: unbalanced parentheses
    """
    parts = []
    depth = 0
    current = []
    for c in expr:
        if c == '(':
            depth += 1
        elif c == ')':
            depth -= 1
            if depth < 0:
                raise InvalidQueryError('Unbalanced parentheses in: {}'.format(expr))

        if c == separator and depth == 0:
            parts.append(''.join(current))
            current = []
        else:
            current.append(c)

    if depth != 0:
        raise InvalidQueryError('Unbalanced parentheses in: {}'.format(expr))
    parts.append(''.join(current))
    return parts


def parse_select(expr: str) -> List[SelectField]:
    """ Parse a `select` expression into a list of SelectFields

    Empty input yields a single wildcard.
    """
    if expr is None or not expr.strip():
        return [SelectField(SelectField.WILDCARD)]

    fields = []
    for token in split_top_level(expr):
        token = token.strip()
        if not token:
            continue

        paren = token.find('(')
        if paren > 0 and token.endswith(')'):
            name = token[:paren].strip()
            fields.append(SelectField(name, parse_select(token[paren + 1:-1])))
        elif paren >= 0:
            raise InvalidQueryError('Invalid select field: {}'.format(token))
        else:
            fields.append(SelectField(token))
    return fields or [SelectField(SelectField.WILDCARD)]


def attach_embedded_filters(fields: Sequence[SelectField], params: Mapping[str, Union[str, Sequence[str]]]) -> List[str]:
    """ Attach `rel.column=operator.value` parameters to embedded fields

    The first value of every parameter is used.

    :return: The names of parameters that were attached
    """
    attached = []
    for key, values in params.items():
        if '.' not in key:
            continue
        if not isinstance(values, str):
            values = values[0] if values else None
        if values is None:
            continue

        if _attach_filter(fields, key, values):
            attached.append(key)
    return attached


def _attach_filter(fields: Sequence[SelectField], path: str, value: str) -> bool:
    name, rest = path.split('.', 1)
    for field in fields:
        if field.is_embedded and field.name == name:
            # A deeper path into a nested embedded field?
            if '.' in rest and _attach_filter(field.get_embedded_fields(), rest, value):
                return True
            field.filters[rest] = value
            return True
    return False


def get_embedded_fields(fields: Iterable[SelectField]) -> List[SelectField]:
    return [f for f in fields if f.is_embedded]


def get_simple_column_names(fields: Iterable[SelectField]) -> List[str]:
    return [f.name for f in fields if f.is_simple_column]


def selects_all_columns(fields: Sequence[SelectField]) -> bool:
    """ Empty selection, or a wildcard in it """
    return not get_simple_column_names(fields) or any(f.is_wildcard for f in fields)


class RestSelect(RestQueryHandlerBase):
    """ PostgREST-style select

        Handles the `select` parameter: columns to load, and resources to embed.
    """

    query_param_name = 'select'

    def __init__(self, table_info, bags):
        super(RestSelect, self).__init__(table_info, bags)

        # On input
        #: Parsed fields
        self.fields = [SelectField(SelectField.WILDCARD)]
        #: Columns that have to be loaded in addition to the selected ones, and then removed from the output
        self.quiet_columns = []
        #: Query string parameters that were used as embedded filters
        self.embedded_filter_keys = []

    def input(self, select: str, params: Mapping[str, Union[str, Sequence[str]]] = None):
        """ Parse the `select` expression

        :param select: The expression
        :param params: All query string parameters: for embedded filters
        """
        super(RestSelect, self).input(select)
        self.fields = parse_select(select)

        # Embedded filters
        self.embedded_filter_keys = attach_embedded_filters(self.fields, params or {})

        # Validate
        self.validate_properties(self.column_names)
        return self

    @property
    def column_names(self) -> List[str]:
        """ Names of selected columns; empty when all columns are selected """
        if selects_all_columns(self.fields):
            return []
        return get_simple_column_names(self.fields)

    @property
    def embedded_fields(self) -> List[SelectField]:
        return get_embedded_fields(self.fields)

    def ensure_loaded(self, *column_names: str):
        """ Make sure that the columns are loaded

        When all columns are selected, nothing changes.
        Otherwise, columns that were not selected are loaded quietly: see `quiet_columns`
        """
        selected = self.column_names
        if not selected:
            return
        for name in column_names:
            if name not in selected and name not in self.quiet_columns:
                self.quiet_columns.append(name)

    def compile_columns(self):
        names = self.column_names
        if not names:
            return [literal_column('*')]
        return [self.bags.columns[name] for name in names + self.quiet_columns]

    def alter_query(self, stmt):
        return stmt.with_only_columns(*self.compile_columns())

    def strip_quiet_columns(self, records: List[dict]) -> List[dict]:
        """ Remove the columns that the user did not ask for """
        if self.quiet_columns:
            for record in records:
                for name in self.quiet_columns:
                    record.pop(name, None)
        return records
