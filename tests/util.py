from sqlalchemy import event
from sqlalchemy.dialects.postgresql import psycopg2


def _insert_query_params(statement_str, parameters):
    """ Compile a statement by inserting *unquoted* parameters into the query """
    return statement_str % parameters


def stmt2sql(stmt, *, literal: bool = False):
    """ Convert an SqlAlchemy statement into a PostgreSQL string """
    # See: http://stackoverflow.com/a/4617623/134904
    # This intentionally does not escape values!
    # psycopg2 renders bound parameters without driver casts
    dialect = psycopg2.dialect()
    query = stmt.compile(
        dialect=dialect,
        compile_kwargs={
            'literal_binds': literal,
        }
    )
    return _insert_query_params(query.string, query.params)


class TestQueryStringsMixin:
    """ unittest mixin that will help testing query strings """

    def assertQuery(self, qs, *expected_lines):
        """ Compare a query line by line

            Problem: you can't just compare a query string: bound parameters and whitespace get in the way.
            Solution: compare a query piece by piece.
            To achieve this, you've got to feed the query as a string where every logical piece
            is separated by \n, and we compare the pieces.
            It also removes trailing commas.

            :param qs: statement | query string
            :param expected_lines: the query, separated into pieces
            :returns: query string
        """
        if not isinstance(qs, str):
            qs = stmt2sql(qs)

        try:
            # tuple
            expected_lines = '\n'.join(expected_lines)

            # Test
            for line in expected_lines.splitlines():
                self.assertIn(line.strip().rstrip(','), qs)

            # Done
            return qs
        except:
            print(qs)
            raise

    def assertNotInQuery(self, qs, *unexpected):
        if not isinstance(qs, str):
            qs = stmt2sql(qs)
        for piece in unexpected:
            self.assertNotIn(piece, qs)
        return qs


class RecordingExecutor:
    """ An executor that records statements and returns canned rows

        Every statement is compiled for PostgreSQL, so tests can check the SQL.
    """

    def __init__(self, *results, rowcount=1):
        #: Results for query_for_list(), one per call; the last one repeats
        self.results = list(results) or [[]]
        self.rowcount = rowcount
        #: Compiled statements
        self.queries = []

    def query_for_list(self, statement):
        self.queries.append(stmt2sql(statement))
        rows = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        return [dict(row) for row in rows]

    def update(self, statement):
        self.queries.append(stmt2sql(statement))
        return self.rowcount


class QueryCounter:
    """ Counts the number of queries """

    def __init__(self, engine):
        super(QueryCounter, self).__init__()
        self.engine = engine
        self.n = 0

    def start_logging(self):
        event.listen(self.engine, "after_cursor_execute", self._after_cursor_execute_event_handler, named=True)

    def stop_logging(self):
        event.remove(self.engine, "after_cursor_execute", self._after_cursor_execute_event_handler)
        self._done()

    def _done(self):
        """ Handler executed when logging is stopped """

    def _after_cursor_execute_event_handler(self, **kw):
        self.n += 1

    def print_log(self):
        pass  # nothing to do

    # Context manager

    def __enter__(self):
        self.start_logging()
        return self

    def __exit__(self, *exc):
        self.stop_logging()
        if exc != (None, None, None):
            self.print_log()
        return False


class QueryLogger(QueryCounter, list):
    """ Log raw SQL queries on the given engine """

    def _after_cursor_execute_event_handler(self, **kw):
        super(QueryLogger, self)._after_cursor_execute_event_handler()
        self.append(kw['statement'])

    def print_log(self):
        for i, q in enumerate(self):
            print('=' * 5, ' Query #{}'.format(i))
            print(q)


class ExpectedQueryCounter(QueryLogger):
    """ A QueryLogger that expects a certain number of queries, raises an error otherwise """

    def __init__(self, engine, expected_queries, comment):
        super(ExpectedQueryCounter, self).__init__(engine)
        self.expected_queries = expected_queries
        self.comment = comment

    def _done(self):
        if self.n != self.expected_queries:
            self.print_log()
            raise AssertionError('{} (expected {} queries, actually had {})'
                                 .format(self.comment, self.expected_queries, self.n))
