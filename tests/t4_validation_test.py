import unittest

from pgrestsql import Validator, QueryComplexityAnalyzer
from pgrestsql import InvalidQueryError, InvalidTableError, InvalidColumnError, PermissionDeniedError, QueryComplexityError
from pgrestsql.handlers import parse_select
from pgrestsql.validation import (
    validate_filter_value, validate_in_operator_values, validate_table_name,
    is_valid_network_address, is_valid_mac_address, validate_enum_value,
    handle_constraint_violation,
)

from . import models
from .util import RecordingExecutor


class DriverError(Exception):
    """ Looks like a psycopg2 error """

    def __init__(self, message, pgcode=None):
        super(DriverError, self).__init__(message)
        self.pgcode = pgcode


class WrappedError(Exception):
    """ Looks like sqlalchemy.exc.DBAPIError """

    def __init__(self, orig):
        super(WrappedError, self).__init__(str(orig))
        self.orig = orig


class FailingExecutor:
    def query_for_list(self, statement):
        raise RuntimeError('Connection lost')


class ValidationTest(unittest.TestCase):
    """ Test input validation """

    def test_filter_values(self):
        for good in ('John', 'updated_at', 'dropbox', 'O\'Brien', 'a-b', '50%'):
            validate_filter_value(good)

        for bad in ('1; DROP TABLE users', 'x -- y', '/* */', 'drop table', 'a UNION b', 'EXEC xp', 'truncate'):
            with self.assertRaises(InvalidQueryError, msg=bad):
                validate_filter_value(bad)

        validate_in_operator_values('1,2,3')
        with self.assertRaises(InvalidQueryError):
            validate_in_operator_values('1); DELETE FROM users')

    def test_table_name(self):
        validate_table_name('users')
        validate_table_name('_private_2')

        for bad in ('', '  ', None, '2users', 'users; drop', 'public.users', 'users"'):
            with self.assertRaises(InvalidTableError, msg=bad):
                validate_table_name(bad)

    def test_addresses(self):
        self.assertTrue(is_valid_network_address('192.168.1.1'))
        self.assertTrue(is_valid_network_address('10.0.0.0/8'))
        self.assertTrue(is_valid_network_address('2001:db8::/32'))
        self.assertTrue(is_valid_network_address('::1'))
        self.assertFalse(is_valid_network_address('256.1.1.1'))
        self.assertFalse(is_valid_network_address('10.0.0.0/33'))
        self.assertFalse(is_valid_network_address('example.com'))
        self.assertFalse(is_valid_network_address(None))

        self.assertTrue(is_valid_mac_address('08:00:2b:01:02:03'))
        self.assertTrue(is_valid_mac_address('08-00-2B-01-02-03'))
        self.assertTrue(is_valid_mac_address('08:00:2b:01:02:03:04:05'))
        self.assertFalse(is_valid_mac_address('08:00:2b:01:02'))
        self.assertFalse(is_valid_mac_address(None))

    def test_enum(self):
        validate_enum_value('user_status', 'active', models.ENUMS['user_status'])
        with self.assertRaises(InvalidQueryError) as e:
            validate_enum_value('user_status', 'zombie', models.ENUMS['user_status'])
        self.assertIn("Invalid enum value 'zombie' for type 'user_status'", str(e.exception))

    def test_constraint_violations(self):
        e = handle_constraint_violation(WrappedError(DriverError(
            'null value in column "email" violates not-null constraint', '23502')))
        self.assertEqual(str(e), "Field 'email' is required and cannot be null")
        self.assertEqual((e.column, e.sqlstate), ('email', '23502'))

        e = handle_constraint_violation(DriverError(
            'duplicate key value violates unique constraint "users_email_key"', '23505'))
        self.assertEqual(str(e), 'Duplicate value violates unique constraint: users_email_key')
        self.assertEqual(e.constraint, 'users_email_key')

        e = handle_constraint_violation(DriverError(
            'insert or update on table "posts" violates foreign key constraint "posts_author_id_fkey"'))
        self.assertEqual(str(e), 'Foreign key constraint violation: posts_author_id_fkey')

        e = handle_constraint_violation(DriverError(
            'new row for relation "users" violates check constraint "age_positive"', '23514'))
        self.assertEqual(str(e), 'Check constraint violation: age_positive')

        e = handle_constraint_violation(DriverError('invalid input value for enum user_status: "zombie"', '22P02'))
        self.assertEqual(str(e), 'Invalid enum value. Please check valid values for type: user_status')
        self.assertEqual(e.enum_type, 'user_status')

        e = handle_constraint_violation(DriverError('invalid input syntax for type integer: "abc"', '22P02'))
        self.assertTrue(str(e).startswith('Invalid data format: '))

        e = handle_constraint_violation(DriverError('something else'))
        self.assertEqual(str(e), 'Data validation error: something else')
        self.assertIsInstance(e, InvalidQueryError)


class ValidatorTest(unittest.TestCase):
    """ Test the Validator """

    def test_pagination(self):
        v = Validator(models.get_schema(), None, max_limit=100, max_offset=1000)
        v.validate_pagination_params(0, 1)
        v.validate_pagination_params(1000, 100)

        for offset, limit in ((-1, 10), (1001, 10), (0, 0), (0, 101)):
            with self.assertRaises(InvalidQueryError):
                v.validate_pagination_params(offset, limit)

    def test_tables_and_columns(self):
        v = Validator(models.get_schema(), None)
        self.assertIs(v.get_validated_table_info('users'), models.users)

        with self.assertRaises(InvalidTableError) as e:
            v.get_validated_table_info('nope')
        self.assertEqual(str(e.exception), 'Table not found: nope')
        with self.assertRaises(InvalidTableError):
            v.get_validated_table_info('users; drop table users')

        v.validate_columns(models.users, ['id', 'name'], 'select')
        with self.assertRaises(InvalidColumnError) as e:
            v.validate_columns(models.users, ['id', 'password'], 'select')
        self.assertEqual(e.exception.column_name, 'password')

    def test_permissions(self):
        schema = models.get_schema()

        # Allowed
        executor = RecordingExecutor([{'has_privilege': True}])
        v = Validator(schema, executor)
        v.validate_table_permission('users', 'insert')
        self.assertIn("has_table_privilege(CURRENT_USER, users, INSERT)", executor.queries[0])

        # Denied
        v = Validator(schema, RecordingExecutor([{'has_privilege': False}]))
        self.assertFalse(v.has_table_permission('users', 'DELETE'))
        with self.assertRaises(PermissionDeniedError) as e:
            v.validate_table_permission('users', 'delete')
        self.assertEqual(str(e.exception), 'Access denied: insufficient privileges for DELETE on table users')

        # The check fails: allowed
        v = Validator(schema, FailingExecutor())
        with self.assertLogs('pgrestsql.validation', 'WARNING'):
            self.assertTrue(v.has_table_permission('users', 'select'))

        # Switched off
        executor = RecordingExecutor([{'has_privilege': False}])
        v = Validator(schema, executor, check_permissions=False)
        v.validate_table_permission('users', 'delete')
        self.assertEqual(executor.queries, [])


class ComplexityTest(unittest.TestCase):
    """ Test QueryComplexityAnalyzer """

    def analyze(self, filters=None, limit=10, select=None, expand=None):
        a = QueryComplexityAnalyzer().analyze(filters or {}, limit,
                                              parse_select(select) if select else None,
                                              expand)
        return a.complexity_score, a.depth, a.breadth

    def test_analyze(self):
        # Base + limit
        self.assertEqual(self.analyze(), (20, 1, 1))
        self.assertEqual(self.analyze(limit=1000), (110, 1, 1))

        # Filters
        self.assertEqual(self.analyze({'age': ['gte.18']}), (25, 1, 2))
        self.assertEqual(self.analyze({'name': ['like.John']}), (35, 1, 2))
        self.assertEqual(self.analyze({'id': ['in.(1,2,3)']}), (20 + 5 + 6, 1, 2))
        self.assertEqual(self.analyze({'metadata': ['haskey.a']}), (33, 1, 2))
        self.assertEqual(self.analyze({'or': ['(a.eq.1,b.eq.2)']}), (35, 1, 2))
        self.assertEqual(self.analyze({'age': ['gt.1', 'lt.9']}), (30, 1, 2))

        # Embedded resources: deeper is more expensive
        self.assertEqual(self.analyze(select='id,posts(title)'), (20 + 30, 2, 2))
        self.assertEqual(self.analyze(select='id,posts(title,comments(*))'), (20 + 30 + 40, 3, 3))
        self.assertEqual(self.analyze(select='id,name'), (20, 1, 1))

        # Legacy expand
        self.assertEqual(self.analyze(expand='authors'), (20 + 30, 2, 2))
        self.assertEqual(self.analyze(expand='authors,comments(limit:5)'), (20 + 30 + 30 + 5, 2, 3))
        self.assertEqual(self.analyze(expand='comments(limit:500)'), (20 + 30 + 50, 2, 2))
        self.assertEqual(self.analyze(expand='comments(limit:lots)'), (20 + 30 + 10, 2, 2))

    def test_validate(self):
        QueryComplexityAnalyzer().validate({'age': ['gte.18']}, 100)

        with self.assertRaises(QueryComplexityError) as e:
            QueryComplexityAnalyzer(max_complexity_score=50).validate({}, 100)
        self.assertEqual(str(e.exception), 'Query complexity score 110 exceeds maximum allowed 50')

        with self.assertRaises(QueryComplexityError) as e:
            QueryComplexityAnalyzer(max_depth=2).validate({}, 10, parse_select('posts(comments(*))'))
        self.assertEqual(str(e.exception), 'Query depth 3 exceeds maximum allowed 2')

        with self.assertRaises(QueryComplexityError) as e:
            QueryComplexityAnalyzer(max_breadth=2).validate({'a': ['1'], 'b': ['2']}, 10)
        self.assertEqual(str(e.exception), 'Query breadth 3 exceeds maximum allowed 2')

        # Disabled
        QueryComplexityAnalyzer(max_complexity_score=1, complexity_analysis_enabled=False).validate({}, 100)

        # The analysis fails: allowed
        with self.assertLogs('pgrestsql.complexity', 'WARNING'):
            QueryComplexityAnalyzer(max_complexity_score=1).validate({'a': [None]}, 100)

    def test_limits(self):
        self.assertEqual(QueryComplexityAnalyzer(max_depth=3).get_complexity_limits(), {
            'maxComplexityScore': 1000,
            'maxDepth': 3,
            'maxBreadth': 50,
            'analysisEnabled': True,
        })
