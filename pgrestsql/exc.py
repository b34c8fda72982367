
class BaseRestSqlException(Exception):
    pass


class InvalidQueryError(BaseRestSqlException):
    """ Invalid input provided by the User """

    def __init__(self, err: str):
        self.err = err
        super(InvalidQueryError, self).__init__(err)


class InvalidTableError(InvalidQueryError):
    """ The request mentioned a table that is not valid or does not exist """

    def __init__(self, table_name: str, err: str):
        self.table_name = table_name
        super(InvalidTableError, self).__init__(err)


class InvalidColumnError(InvalidQueryError):
    """ Query mentioned an invalid column name """

    def __init__(self, table: str, column_name: str, where: str):
        self.table = table
        self.column_name = column_name
        self.where = where

        super(InvalidColumnError, self).__init__(
            'Invalid column "{column_name}" for "{table}" specified in {where}'.format(
                column_name=column_name,
                table=table,
                where=where)
        )


class InvalidCursorError(InvalidQueryError):
    """ A pagination cursor could not be decoded """

    def __init__(self, cursor: str):
        self.cursor = cursor
        super(InvalidCursorError, self).__init__('Invalid cursor: {}'.format(cursor))


class QueryComplexityError(InvalidQueryError):
    """ The query is too expensive to be executed """


class ConstraintViolationError(InvalidQueryError):
    """ The database rejected the data because of a constraint

    Attributes:
        column: the offending column, when it could be extracted
        constraint: the name of the violated constraint, when known
        enum_type: the enum type that rejected a value
        sqlstate: the SQLSTATE code reported by the database
    """

    def __init__(self, err: str, *, column: str = None, constraint: str = None, enum_type: str = None, sqlstate: str = None):
        self.column = column
        self.constraint = constraint
        self.enum_type = enum_type
        self.sqlstate = sqlstate
        super(ConstraintViolationError, self).__init__(err)


class PermissionDeniedError(BaseRestSqlException):
    """ The database user has no privilege to perform the operation """

    def __init__(self, operation: str, table_name: str):
        self.operation = operation
        self.table_name = table_name
        super(PermissionDeniedError, self).__init__(
            'Access denied: insufficient privileges for {operation} on table {table}'.format(
                operation=operation,
                table=table_name)
        )


class RecordNotFoundError(BaseRestSqlException):
    """ No record matched the given key """

    def __init__(self, table_name: str, key: str):
        self.table_name = table_name
        self.key = key
        super(RecordNotFoundError, self).__init__(
            'Record not found in "{table}" with key: {key}'.format(table=table_name, key=key))
