from ..bag import TablePropertyBags
from ..exc import InvalidColumnError
from ..schema import TableInfo


class RestQueryHandlerBase:
    """ An implementation of a handler from RestQuery

        Every subclass will handle a single group of query string parameters
    """

    #: Name of the query string section that this object is capable of handling
    query_param_name = None

    def __init__(self, table_info: TableInfo, bags: TablePropertyBags):
        """ Initialize the handler with a table.

        This method does *not* receive any input data just yet, with the purpose of having an
        object that can be configured with settings at init time.

        :param table_info: The table it's being applied to
        :param bags: Table bags.
            We have to have `bags` provided to us because every identifier has to come from them.

        NOTE: Any arguments that have default values will be treated as handler settings!!
        """
        #: The table to handle the query for
        self.table_info = table_info
        #: Table property bags: because we need access to its columns
        self.bags = bags

        # Has the input() method been called already?
        self.input_received = False
        self.input_value = None

        #: RestQuery bound to this object. It may remain uninitialized.
        self.restquery = None

    def with_restquery(self, restquery):
        """ Bind this object with a RestQuery

            :type restquery: pgrestsql.query.RestQuery
            """
        self.restquery = restquery
        return self

    def validate_properties(self, names, where=None):
        """ Validate the given list of column names against the table

        :param names: List of column names
        :raises InvalidColumnError
        """
        invalid = self.bags.columns.get_invalid_names(names)
        if invalid:
            raise InvalidColumnError(self.bags.table_name,
                                     sorted(invalid)[0],
                                     where or self.query_param_name)

    def input(self, value):
        """ Get a section of the query string.

        The purpose of this method is to receive the input, validate it, and store as a public
        property so that external tools may export its value.

        :rtype: RestQueryHandlerBase
        :raises InvalidColumnError
        :raises InvalidQueryError
        """
        self.input_value = value  # no copying. Try not to modify it.

        # Set the flag
        self.input_received = True

        # Make sure that input() can only be used once
        self.input = self.__raise_input_not_reusable

        return self

    def is_input_empty(self):
        """ Test whether the input value was empty """
        return not self.input_value

    def __raise_input_not_reusable(self, *args, **kwargs):
        raise RuntimeError("You can't use the {}.input() method twice. "
                           "Create a new handler for every request!"
                           .format(self.__class__.__name__))

    # These methods implement the logic of individual handlers
    # Note that not all methods are going to be implemented by subclasses!

    def compile_columns(self):
        """ Compile a list of columns.

        Purpose: argument for select(*)

        :rtype: list[sqlalchemy.sql.expression.ColumnElement]
        """
        raise NotImplementedError()

    def compile_statement(self):
        """ Compile a statement

        :return: SQL statement
        """
        raise NotImplementedError()

    def alter_query(self, stmt):
        """ Alter the given statement and apply the section this handler is handling

        :type stmt: sqlalchemy.sql.expression.Select
        :rtype: sqlalchemy.sql.expression.Select
        """
        raise NotImplementedError()
