"""
### Validation

Everything that the user sends is checked here before it gets anywhere near the database:

* Table names are matched against a pattern, and then looked up in the schema
* Column names are whitelisted against the table's known columns
* Filter values are checked against a denylist of SQL syntax
* Pagination values are kept within bounds
* Table privileges are checked with `has_table_privilege()`

In addition, database errors caused by bad data (NOT NULL, UNIQUE, FOREIGN KEY, CHECK, bad enum values)
are turned into `ConstraintViolationError` with a human-readable message.
"""

import ipaddress
import re
from logging import getLogger
from typing import Iterable

from sqlalchemy import select, func, literal

from .exc import InvalidQueryError, InvalidTableError, InvalidColumnError, PermissionDeniedError, ConstraintViolationError
from .schema import SchemaProvider, TableInfo

logger = getLogger(__name__)


TABLE_NAME_PATTERN = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_]*$')

# SQL syntax that has no business being in a filter value
FILTER_VALUE_DENYLIST = re.compile(
    r';|--|/\*|\*/|\b(?:DROP|DELETE|UPDATE|INSERT|CREATE|ALTER|TRUNCATE|UNION|EXEC|EXECUTE)\b',
    re.IGNORECASE)
IN_VALUES_DENYLIST = re.compile(
    r';|--|/\*|\*/|\b(?:DROP|DELETE|UPDATE|INSERT|CREATE)\b',
    re.IGNORECASE)

IPV4_PATTERN = re.compile(r'^((25[0-5]|2[0-4]\d|[01]?\d\d?)\.){3}(25[0-5]|2[0-4]\d|[01]?\d\d?)(/([0-9]|[1-2][0-9]|3[0-2]))?$')
MAC_ADDRESS_PATTERN = re.compile(r'^([0-9A-Fa-f]{2}[:-]){5}[0-9A-Fa-f]{2}$')
MAC8_ADDRESS_PATTERN = re.compile(r'^([0-9A-Fa-f]{2}[:-]){7}[0-9A-Fa-f]{2}$')

# Privilege names for has_table_privilege(), by operation
PRIVILEGES = {
    'select': 'SELECT',
    'read': 'SELECT',
    'insert': 'INSERT',
    'create': 'INSERT',
    'update': 'UPDATE',
    'patch': 'UPDATE',
    'put': 'UPDATE',
    'delete': 'DELETE',
}

# Database error message parsing
_RE_COLUMN = re.compile(r'column "([^"]+)"')
_RE_CONSTRAINT = re.compile(r'constraint "([^"]+)"')
_RE_ENUM_TYPE = re.compile(r'invalid input value for enum ([a-zA-Z_][a-zA-Z0-9_]*)')


def validate_filter_value(value: str):
    """ Reject a filter value that contains SQL syntax

    :raises InvalidQueryError
    """
    if value and FILTER_VALUE_DENYLIST.search(value):
        raise InvalidQueryError('Invalid characters detected in filter value')


def validate_in_operator_values(value: str):
    """ Reject the contents of an IN (...) list that contains SQL syntax

    :raises InvalidQueryError
    """
    if value and IN_VALUES_DENYLIST.search(value):
        raise InvalidQueryError('Invalid characters detected in IN operator values')


def validate_table_name(table_name: str):
    """ Check that the table name looks like an identifier

    :raises InvalidTableError
    """
    if table_name is None or not table_name.strip():
        raise InvalidTableError(table_name, 'Table name cannot be empty')
    if not TABLE_NAME_PATTERN.match(table_name):
        raise InvalidTableError(table_name, 'Invalid table name: {}'.format(table_name))


def is_valid_network_address(value: str) -> bool:
    """ Test an inet/cidr value: IPv4 with an optional /prefix, or IPv6 """
    if value is None:
        return False
    value = value.strip()
    if IPV4_PATTERN.match(value):
        return True
    if ':' in value:
        try:
            ipaddress.IPv6Network(value, strict=False)
            return True
        except ValueError:
            return False
    return False


def is_valid_mac_address(value: str) -> bool:
    """ Test a macaddr/macaddr8 value: 6 or 8 bytes separated by `:` or `-` """
    if value is None:
        return False
    value = value.strip()
    return bool(MAC_ADDRESS_PATTERN.match(value) or MAC8_ADDRESS_PATTERN.match(value))


def validate_network_address(value: str):
    if not is_valid_network_address(value):
        raise InvalidQueryError('Invalid network address: {}'.format(value))


def validate_mac_address(value: str):
    if not is_valid_mac_address(value):
        raise InvalidQueryError('Invalid MAC address: {}'.format(value))


def validate_enum_value(type_name: str, value: str, valid_values: Iterable[str]):
    """ Check that an enum value is one of the labels of its type

    :raises InvalidQueryError
    """
    valid_values = list(valid_values)
    if value not in valid_values:
        raise InvalidQueryError("Invalid enum value '{}' for type '{}'. Valid values: {}"
                                .format(value, type_name, valid_values))


def handle_constraint_violation(error: Exception) -> ConstraintViolationError:
    """ Convert a database error into a ConstraintViolationError

    The error may be an `sqlalchemy.exc.DBAPIError` (then its `.orig` is inspected),
    or a raw driver exception. SQLSTATE is taken from `pgcode` (psycopg2) or `sqlstate` (psycopg 3).

    :return: the error to raise
    """
    orig = getattr(error, 'orig', None) or error
    sqlstate = getattr(orig, 'pgcode', None) or getattr(orig, 'sqlstate', None)
    message = str(orig).strip()

    if sqlstate == '23502' or 'violates not-null constraint' in message:
        column = _extract(_RE_COLUMN, message)
        return ConstraintViolationError(
            "Field '{}' is required and cannot be null".format(column),
            column=column, sqlstate=sqlstate)
    if sqlstate == '23505' or 'duplicate key value' in message:
        constraint = _extract(_RE_CONSTRAINT, message)
        return ConstraintViolationError(
            'Duplicate value violates unique constraint: {}'.format(constraint),
            constraint=constraint, sqlstate=sqlstate)
    if sqlstate == '23503' or 'violates foreign key constraint' in message:
        constraint = _extract(_RE_CONSTRAINT, message)
        return ConstraintViolationError(
            'Foreign key constraint violation: {}'.format(constraint),
            constraint=constraint, sqlstate=sqlstate)
    if sqlstate == '23514' or 'violates check constraint' in message:
        constraint = _extract(_RE_CONSTRAINT, message)
        return ConstraintViolationError(
            'Check constraint violation: {}'.format(constraint),
            constraint=constraint, sqlstate=sqlstate)
    if 'invalid input value for enum' in message:
        enum_type = _extract(_RE_ENUM_TYPE, message)
        return ConstraintViolationError(
            'Invalid enum value. Please check valid values for type: {}'.format(enum_type),
            enum_type=enum_type, sqlstate=sqlstate)
    if sqlstate == '22P02':
        return ConstraintViolationError('Invalid data format: {}'.format(message), sqlstate=sqlstate)
    return ConstraintViolationError('Data validation error: {}'.format(message), sqlstate=sqlstate)


def _extract(rex, message: str, default: str = 'unknown') -> str:
    m = rex.search(message)
    return m.group(1) if m else default


class Validator:
    """ Request validation that needs the schema and the database

    :param schema: Schema provider to look tables up in
    :param executor: SQL executor for privilege checks
    :param max_limit: The maximum LIMIT a user can request
    :param max_offset: The maximum OFFSET a user can request
    :param check_permissions: Check table privileges before every operation
    """

    def __init__(self, schema: SchemaProvider, executor, max_limit: int = 1000, max_offset: int = 1000000, check_permissions: bool = True):
        self.schema = schema
        self.executor = executor
        self.max_limit = max_limit
        self.max_offset = max_offset
        self.check_permissions = check_permissions

    def validate_pagination_params(self, offset: int, limit: int):
        """ Keep offset and limit within bounds

        :raises InvalidQueryError
        """
        if offset < 0 or offset > self.max_offset:
            raise InvalidQueryError('Offset must be between 0 and {}'.format(self.max_offset))
        if limit < 1 or limit > self.max_limit:
            raise InvalidQueryError('Limit must be between 1 and {}'.format(self.max_limit))

    def get_validated_table_info(self, table_name: str) -> TableInfo:
        """ Validate the table name and get its TableInfo

        :raises InvalidTableError
        """
        validate_table_name(table_name)
        table_info = self.schema.get_table(table_name)
        if table_info is None:
            raise InvalidTableError(table_name, 'Table not found: {}'.format(table_name))
        return table_info

    def validate_columns(self, table_info: TableInfo, column_names: Iterable[str], where: str):
        """ Whitelist column names

        :raises InvalidColumnError
        """
        for name in column_names:
            if not table_info.has_column(name):
                raise InvalidColumnError(table_info.name, name, where)

    def has_table_permission(self, table_name: str, operation: str) -> bool:
        """ Ask the database whether the current user may perform `operation` on the table

        When the check itself fails, access is allowed.
        """
        if not self.check_permissions or self.executor is None:
            return True

        privilege = PRIVILEGES.get(operation.lower(), 'SELECT')
        stmt = select(func.has_table_privilege(func.current_user(), literal(table_name), literal(privilege))
                      .label('has_privilege'))
        try:
            rows = self.executor.query_for_list(stmt)
        except Exception as e:
            logger.warning('Could not check %s privilege on table %s, allowing access: %s', privilege, table_name, e)
            return True

        if not rows:
            return True
        return bool(rows[0]['has_privilege'])

    def validate_table_permission(self, table_name: str, operation: str):
        """ Raise if the current user may not perform `operation` on the table

        :raises PermissionDeniedError
        """
        if not self.has_table_permission(table_name, operation):
            raise PermissionDeniedError(PRIVILEGES.get(operation.lower(), 'SELECT'), table_name)
