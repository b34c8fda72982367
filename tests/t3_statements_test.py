import unittest
from datetime import date

from pgrestsql import QueryBuilder, TypeConverter
from pgrestsql import InvalidQueryError, InvalidColumnError, InvalidCursorError
from pgrestsql.statements import parse_composite_key, encode_composite_key, encode_cursor, decode_cursor, bind_value
from pgrestsql.types import parse_type_tag

from . import models
from .util import TestQueryStringsMixin, stmt2sql


class KeysTest(unittest.TestCase):
    """ Test composite keys and cursors """

    def test_composite_key(self):
        self.assertEqual(parse_composite_key('1,2', 2), ['1', '2'])
        self.assertEqual(parse_composite_key(' 1 , 2 ', 2), ['1', '2'])
        self.assertEqual(parse_composite_key('a,b', 1), ['a,b'])  # single-column keys are taken as is
        self.assertEqual(parse_composite_key(5, 1), ['5'])

        with self.assertRaises(InvalidQueryError) as e:
            parse_composite_key('1', 2)
        self.assertIn('requires 2 parts', str(e.exception))
        with self.assertRaises(InvalidQueryError):
            parse_composite_key('1,2,3', 2)
        with self.assertRaises(InvalidQueryError) as e:
            parse_composite_key('1, ', 2)
        self.assertIn('position 1', str(e.exception))
        with self.assertRaises(InvalidQueryError):
            parse_composite_key('', 1)

        self.assertEqual(encode_composite_key([1, 'a']), '1,a')

        # Encoded keys parse back
        for values in ([7], [1, 'a'], [1, 2, date(2024, 1, 2)]):
            self.assertEqual(parse_composite_key(encode_composite_key(values), len(values)),
                             [str(v) for v in values])

    def test_cursor(self):
        self.assertEqual(encode_cursor(5), 'NQ==')
        self.assertEqual(decode_cursor('NQ=='), '5')
        self.assertEqual(decode_cursor(encode_cursor(date(2024, 1, 2))), '2024-01-02')
        self.assertEqual(decode_cursor(encode_cursor('Zoë')), 'Zoë')

        for bad in ('', None, 'not base64!', '////'):
            with self.assertRaises(InvalidCursorError):
                decode_cursor(bad)


class QueryBuilderTest(TestQueryStringsMixin, unittest.TestCase):
    """ Test statements as strings """

    longMessage = True
    maxDiff = None

    def setUp(self):
        self.converter = TypeConverter(models.get_schema())

    def builder(self, table_info):
        return QueryBuilder(table_info, self.converter)

    def test_bind_value(self):
        self.assertEqual(stmt2sql(bind_value('{"a":1}', parse_type_tag('jsonb'))), 'CAST({"a":1} AS jsonb)')
        self.assertEqual(stmt2sql(bind_value('10.0.0.1', parse_type_tag('inet'))), 'CAST(10.0.0.1 AS inet)')
        self.assertEqual(stmt2sql(bind_value('1010', parse_type_tag('bit(4)'))), 'CAST(1010 AS bit(4))')
        self.assertEqual(stmt2sql(bind_value('{1,2}', parse_type_tag('integer[]'))), 'CAST({1,2} AS integer[])')
        self.assertEqual(stmt2sql(bind_value(1, parse_type_tag('integer'))), '1')
        self.assertEqual(stmt2sql(bind_value(1, None)), '1')

    def test_select(self):
        b = self.builder(models.users)
        self.assertQuery(b.build_select(), 'SELECT * \nFROM users')
        self.assertQuery(b.build_select(['id', 'name'], limit=5, offset=10),
                         'SELECT users.id, users.name \nFROM users',
                         'LIMIT 5 OFFSET 10')
        self.assertQuery(b.build_count(), 'SELECT count(*) AS count \nFROM users')

        with self.assertRaises(InvalidColumnError):
            b.build_select(['nope'])

        # By key
        self.assertQuery(b.build_select_by_key(['7']), 'WHERE users.id = 7')
        self.assertQuery(self.builder(models.order_items).build_select_by_key(['1', '2']),
                         'WHERE order_items.order_id = 1 AND order_items.product_id = 2')

    def test_keys(self):
        b = self.builder(models.order_items)
        self.assertEqual(b.primary_key_names(), ['order_id', 'product_id'])
        self.assertEqual(b.parse_key('1,2'), ['1', '2'])
        with self.assertRaises(InvalidQueryError):
            b.key_condition(['1'])

        with self.assertRaises(InvalidQueryError) as e:
            self.builder(models.audit_log).primary_key_names()
        self.assertEqual(str(e.exception), 'Table audit_log has no primary key defined')

    def test_insert(self):
        b = self.builder(models.users)
        self.assertQuery(b.build_insert({'name': 'John', 'age': '42', 'metadata': {'a': 1}, 'tags': ['x', 'y']}),
                         'INSERT INTO users (name, age, tags, metadata)',
                         'VALUES (John, 42, CAST({"x","y"} AS text[]), CAST({"a":1} AS jsonb))',
                         'RETURNING *')
        self.assertNotInQuery(b.build_insert({'name': 'John'}, returning=False), 'RETURNING')

        with self.assertRaises(InvalidQueryError):
            b.build_insert({})
        with self.assertRaises(InvalidColumnError):
            b.build_insert({'password': 'x'})

        # Bulk: union of columns
        qs = self.assertQuery(b.build_bulk_insert([{'name': 'a'}, {'age': 1}]),
                              'INSERT INTO users (name, age) VALUES ',
                              'RETURNING *')
        self.assertEqual(qs.count('('), 3)  # one column list, two rows

    def test_update_delete(self):
        b = self.builder(models.users)
        where = b.key_condition(['7'])
        self.assertQuery(b.build_update({'name': 'John', 'status': 'active'}, where),
                         'UPDATE users SET name=John, status=CAST(active AS user_status)',
                         'WHERE users.id = 7',
                         'RETURNING *')
        self.assertNotInQuery(b.build_update({'name': 'John'}, where, returning=False), 'RETURNING')
        with self.assertRaises(InvalidQueryError):
            b.build_update({}, where)

        self.assertQuery(b.build_delete(where), 'DELETE FROM users WHERE users.id = 7')

    def test_upsert(self):
        b = self.builder(models.order_items)
        self.assertQuery(b.build_upsert({'order_id': 1, 'product_id': 2, 'quantity': 3}),
                         'INSERT INTO order_items (order_id, product_id, quantity) VALUES (1, 2, 3)',
                         'ON CONFLICT (order_id, product_id) DO UPDATE SET quantity = excluded.quantity',
                         'RETURNING *')

        # Nothing to update
        self.assertQuery(b.build_upsert({'order_id': 1, 'product_id': 2}),
                         'ON CONFLICT (order_id, product_id) DO NOTHING')

        # Bulk
        self.assertQuery(b.build_bulk_upsert([
            {'order_id': 1, 'product_id': 2, 'quantity': 3},
            {'order_id': 1, 'product_id': 3, 'quantity': 4},
        ]), 'VALUES (1, 2, 3), (1, 3, 4)', 'DO UPDATE SET quantity = excluded.quantity')

        # No primary key
        with self.assertRaises(InvalidQueryError) as e:
            self.builder(models.audit_log).build_upsert({'message': 'hi'})
        self.assertEqual(str(e.exception), 'Table audit_log has no primary key - cannot perform upsert')
