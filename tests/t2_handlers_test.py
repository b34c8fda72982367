import unittest

from pgrestsql import RestQuery, TypeConverter, TablePropertyBags, RestQuerySettingsDict
from pgrestsql import InvalidQueryError, InvalidColumnError, InvalidCursorError
from pgrestsql.handlers import RestSelect, RestLimit, SelectField, parse_select
from pgrestsql.handlers.select import split_top_level
from pgrestsql.query import normalize_params
from pgrestsql.statements import encode_cursor

from . import models
from .util import TestQueryStringsMixin


def rq(table_info, params=None, cursor=False, **settings):
    """ Build a RestQuery """
    return RestQuery(table_info, RestQuerySettingsDict(**settings), TypeConverter()).query(params, cursor=cursor)


class HandlersTest(TestQueryStringsMixin, unittest.TestCase):
    """ Test individual handlers """

    longMessage = True
    maxDiff = None

    def test_params(self):
        """ Test normalize_params() """
        self.assertEqual(normalize_params(None), {})
        self.assertEqual(normalize_params({'a': '1', 'b': ['2', '3'], 'c': None}),
                         {'a': ['1'], 'b': ['2', '3']})
        self.assertEqual(normalize_params([('a', '1'), ('a', '2')]), {'a': ['1', '2']})

        class MultiDict(dict):
            def getlist(self, name):
                return self[name]
        self.assertEqual(normalize_params(MultiDict(a=['1', '2'])), {'a': ['1', '2']})

    def test_select(self):
        # === Test: parse_select()
        self.assertEqual(parse_select(None), [SelectField('*')])
        self.assertEqual(parse_select(''), [SelectField('*')])
        self.assertEqual(parse_select('id, name'), [SelectField('id'), SelectField('name')])
        self.assertEqual(parse_select('id,posts(title,comments(*))'), [
            SelectField('id'),
            SelectField('posts', [SelectField('title'), SelectField('comments', [SelectField('*')])]),
        ])
        self.assertEqual(split_top_level('a,b(c,d),e'), ['a', 'b(c,d)', 'e'])

        with self.assertRaises(InvalidQueryError):
            parse_select('id,posts(title')
        with self.assertRaises(InvalidQueryError):
            parse_select('id)')

        # === Test: no select
        self.assertQuery(rq(models.users).end(),
                         'SELECT * \nFROM users')

        # === Test: columns
        q = rq(models.users, {'select': 'id,name'})
        self.assertEqual(q.handler_select.column_names, ['id', 'name'])
        self.assertQuery(q.end(), 'SELECT users.id, users.name \nFROM users')

        # === Test: wildcard wins
        self.assertQuery(rq(models.users, {'select': 'id,*'}).end(), 'SELECT * \nFROM users')

        # === Test: invalid column
        with self.assertRaises(InvalidColumnError):
            rq(models.users, {'select': 'id,password'})

        # === Test: quiet columns
        q = rq(models.posts, {'select': 'title,authors(name)'})
        q.handler_select.ensure_loaded('author_id')
        self.assertQuery(q.end(), 'SELECT posts.title, posts.author_id \nFROM posts')
        self.assertEqual(q.handler_select.strip_quiet_columns([{'title': 'a', 'author_id': 1}]),
                         [{'title': 'a'}])

        # === Test: embedded fields
        q = rq(models.authors, {'select': 'id,posts(title,comments(*))',
                                'posts.views': 'gt.10',
                                'posts.comments.likes': 'gte.1'})
        posts_field, = q.embedded_fields
        self.assertEqual(posts_field.name, 'posts')
        self.assertEqual(posts_field.filters, {'views': 'gt.10'})
        self.assertEqual(posts_field.get_embedded_fields()[0].filters, {'likes': 'gte.1'})
        # not top-level filters
        self.assertEqual(q.handler_filter.input_value, {})

        # === Test: input() can be called only once
        with self.assertRaises(RuntimeError):
            bags = TablePropertyBags.for_table(models.users)
            RestSelect(models.users, bags).input(None).input(None)

    def test_filter(self):
        users = models.users

        # === Test: comparison operators
        self.assertQuery(rq(users, {'age': 'gte.18'}).end(),
                         'SELECT * \nFROM users \nWHERE users.age >= 18')
        self.assertQuery(rq(users, {'age': 'neq.18'}).end(), 'users.age != 18')
        self.assertQuery(rq(users, {'age': 'lt.18'}).end(), 'users.age < 18')

        # === Test: multiple filters are ANDed
        self.assertQuery(rq(users, {'age': ['gt.18', 'lt.65'], 'name': 'eq.John'}).end(),
                         'users.age > 18 AND users.age < 65 AND users.name = John')

        # === Test: no operator is an equality
        self.assertQuery(rq(users, {'name': 'John'}).end(), 'WHERE users.name = John')

        # === Test: unknown operator is an equality with the whole value
        self.assertQuery(rq(users, {'email': 'john@example.com'}).end(),
                         'WHERE users.email = john@example.com')

        # === Test: LIKE
        self.assertQuery(rq(users, {'name': 'like.oh'}).end(), 'users.name LIKE %oh%')
        self.assertQuery(rq(users, {'name': 'ilike.oh'}).end(), 'users.name ILIKE %oh%')
        self.assertQuery(rq(users, {'name': 'startswith.Jo'}).end(), 'users.name LIKE Jo%')
        self.assertQuery(rq(users, {'name': 'endswith.hn'}).end(), 'users.name LIKE %hn')

        # === Test: IN
        self.assertQuery(rq(users, {'id': 'in.(1,2,3)'}).end(), 'users.id IN (1, 2, 3)')
        self.assertQuery(rq(users, {'name': 'in.("a","b")'}).end(), 'users.name IN (a, b)')
        self.assertQuery(rq(users, {'id': 'notin.(1,2)'}).end(), 'users.id NOT IN (1, 2)')
        with self.assertRaises(InvalidQueryError):
            rq(users, {'id': 'in.1,2'})

        # === Test: IS
        self.assertQuery(rq(users, {'email': 'is.null'}).end(), 'users.email IS NULL')
        self.assertQuery(rq(users, {'email': 'isnotnull.'}).end(), 'users.email IS NOT NULL')

        # === Test: enum values are CAST
        self.assertQuery(rq(users, {'status': 'eq.active'}).end(),
                         'users.status = CAST(active AS user_status)')

        # === Test: OR groups
        self.assertQuery(rq(users, {'or': '(name.like.John,age.gt.65)', 'status': 'eq.active'}).end(),
                         '(users.name LIKE %John% OR users.age > 65) AND users.status = CAST(active AS user_status)')
        with self.assertRaises(InvalidQueryError):
            rq(users, {'or': '()'})

        # === Test: invalid column
        with self.assertRaises(InvalidColumnError):
            rq(users, {'password': 'eq.1'})
        with self.assertRaises(InvalidColumnError):
            rq(users, {'or': '(password.eq.1)'})

        # === Test: SQL in values is rejected
        with self.assertRaises(InvalidQueryError):
            rq(users, {'name': 'eq.x; DROP TABLE users'})
        with self.assertRaises(InvalidQueryError):
            rq(users, {'name': "eq.' UNION SELECT 1"})
        with self.assertRaises(InvalidQueryError):
            rq(users, {'name': 'eq.x -- comment'})
        # ... but words that merely contain keywords are fine
        rq(users, {'name': 'eq.updated_by_dropbox'})

        # === Test: control parameters are not filters
        q = rq(users, {'limit': '10', 'offset': '0', 'order': 'id', 'select': '*', 'expand': 'posts', 'format': 'csv'})
        self.assertEqual(q.handler_filter.input_value, {})
        self.assertIsNone(q.where())

    def test_filter_json_and_arrays(self):
        users = models.users

        self.assertQuery(rq(users, {'metadata': 'haskey.plan'}).end(), 'jsonb_exists(users.metadata, plan)')
        self.assertQuery(rq(users, {'metadata': 'haskeys.["a","b"]'}).end(),
                         'users.metadata ?& CAST(ARRAY[a, b] AS text[])')
        self.assertQuery(rq(users, {'metadata': 'hasanykeys.["a","b"]'}).end(), 'users.metadata ?| ')
        self.assertQuery(rq(users, {'metadata': 'jsoncontains.{"a":1}'}).end(),
                         'users.metadata @> CAST({"a":1} AS jsonb)')
        self.assertQuery(rq(users, {'metadata': 'jsoncontained.{"a":1}'}).end(), 'users.metadata <@ CAST(')
        self.assertQuery(rq(users, {'metadata': 'exists.plan'}).end(), 'users.metadata ? plan')

        with self.assertRaises(InvalidQueryError):
            rq(users, {'metadata': 'haskeys.a,b'})
        with self.assertRaises(InvalidQueryError):
            rq(users, {'metadata': 'jsoncontains.{nope'})

        self.assertQuery(rq(users, {'tags': 'arraycontains.x'}).end(),
                         'users.tags @> CAST(ARRAY[x] AS text[])')
        self.assertQuery(rq(users, {'tags': 'arrayhasany.[x,y]'}).end(),
                         'users.tags && CAST(ARRAY[x, y] AS text[])')
        self.assertQuery(rq(users, {'tags': 'arrayhasall.{x,y}'}).end(),
                         'users.tags @> CAST(ARRAY[x, y] AS text[])')
        self.assertQuery(rq(users, {'tags': 'arraylength.3'}).end(), 'array_length(users.tags, 1) = 3')

        with self.assertRaises(InvalidQueryError):
            rq(users, {'tags': 'arrayhasany.x,y'})
        with self.assertRaises(InvalidQueryError):
            rq(users, {'tags': 'arraylength.many'})

        # Operands are parsed when the filter is read
        f = rq(users, {'id': 'in.(1,"2")', 'tags': 'arrayhasany.[x,y]', 'metadata': 'haskeys.["a"]'}).handler_filter
        self.assertEqual([e.value for e in f.expressions], [['1', '2'], ['x', 'y'], ['a']])
        self.assertEqual(rq(users, {'tags': 'arraylength. 3'}).handler_filter.expressions[0].value, 3)

        # Full text search
        self.assertQuery(rq(users, {'name': 'fts.cat'}).end(),
                         'to_tsvector(CAST(english AS regconfig), users.name) @@ plainto_tsquery(CAST(english AS regconfig), cat)')
        self.assertQuery(rq(users, {'name': 'plfts.fat cat'}).end(), 'phraseto_tsquery(')
        self.assertQuery(rq(users, {'name': 'wfts.cat'}, text_search_config='simple').end(),
                         'websearch_to_tsquery(CAST(simple AS regconfig), cat)')

    def test_force_filter(self):
        q = rq(models.users, {'name': 'eq.John'}, force_filter={'age': 'gte.18'})
        self.assertQuery(q.end(), 'users.age >= 18 AND users.name = John')
        # user input only
        self.assertEqual(q.handler_filter.input_value, {'name': ['eq.John']})

    def test_order(self):
        users = models.users

        self.assertQuery(rq(users, {'order': 'age.desc,name.asc.nullslast'}).end(),
                         'ORDER BY users.age DESC, users.name ASC NULLS LAST')
        self.assertQuery(rq(users, {'order': 'name.nullsfirst'}).end(),
                         'ORDER BY users.name ASC NULLS FIRST')

        # orderBy takes precedence
        self.assertQuery(rq(users, {'order': 'age', 'orderBy': 'name', 'orderDirection': 'desc'}).end(),
                         'ORDER BY users.name DESC')

        with self.assertRaises(InvalidQueryError):
            rq(users, {'order': 'age.sideways'})
        with self.assertRaises(InvalidColumnError):
            rq(users, {'order': 'password'})
        with self.assertRaises(InvalidColumnError):
            rq(users, {'orderBy': 'password'})

    def test_limit(self):
        users = models.users

        self.assertQuery(rq(users, {'limit': '10', 'offset': '20'}).end(), 'LIMIT 10 OFFSET 20')
        self.assertNotInQuery(rq(users, {'limit': '10', 'offset': '0'}).end(), 'OFFSET')

        with self.assertRaises(InvalidQueryError):
            rq(users, {'limit': '0'})
        with self.assertRaises(InvalidQueryError):
            rq(users, {'limit': '101'}, max_limit=100)
        with self.assertRaises(InvalidQueryError):
            rq(users, {'offset': '-1'})
        with self.assertRaises(InvalidQueryError):
            rq(users, {'offset': '11'}, max_offset=10)
        with self.assertRaises(InvalidQueryError):
            rq(users, {'limit': 'ten'})

        # === Test: limit per group
        bags = TablePropertyBags.for_table(models.posts)
        limit = RestLimit(models.posts, bags).input(limit=5)
        limit.limit_groups_over_columns([bags.columns['author_id']])
        stmt = limit.alter_query(rq(models.posts).end())
        self.assertQuery(stmt,
                         'SELECT * \nFROM (SELECT *, row_number() OVER (PARTITION BY posts.author_id) AS group_row_n',
                         'AS grouped',
                         'WHERE group_row_n <= 5')

    def test_cursor(self):
        users = models.users

        # === Test: first page
        q = rq(users, {'first': '2'}, cursor=True)
        self.assertEqual(q.handler_cursor.order_column_name, 'id')
        self.assertQuery(q.end(), 'ORDER BY users.id ASC', 'LIMIT 3')
        self.assertNotInQuery(q.end(), 'WHERE')

        # === Test: next page
        q = rq(users, {'first': '2', 'after': encode_cursor(5)}, cursor=True)
        self.assertQuery(q.end(), 'WHERE users.id > 5', 'ORDER BY users.id ASC', 'LIMIT 3')

        rows, has_more = q.handler_cursor.make_page([{'id': 6}, {'id': 7}, {'id': 8}])
        self.assertEqual(rows, [{'id': 6}, {'id': 7}])
        self.assertTrue(has_more)
        cursors = [q.handler_cursor.cursor_for(row) for row in rows]
        self.assertEqual(q.handler_cursor.page_info(cursors, has_more), {
            'hasNextPage': True,
            'hasPreviousPage': True,
            'startCursor': encode_cursor(6),
            'endCursor': encode_cursor(7),
        })

        # === Test: previous page
        q = rq(users, {'last': '2', 'before': encode_cursor(5)}, cursor=True)
        self.assertQuery(q.end(), 'WHERE users.id < 5', 'ORDER BY users.id DESC', 'LIMIT 3')
        rows, has_more = q.handler_cursor.make_page([{'id': 4}, {'id': 3}])
        self.assertEqual(rows, [{'id': 3}, {'id': 4}])  # restored order
        self.assertFalse(has_more)
        info = q.handler_cursor.page_info([encode_cursor(3), encode_cursor(4)], has_more)
        self.assertEqual((info['hasNextPage'], info['hasPreviousPage']), (True, False))

        # === Test: descending, custom column
        q = rq(users, {'first': '10', 'after': encode_cursor('John'), 'orderBy': 'name', 'orderDirection': 'desc'}, cursor=True)
        self.assertQuery(q.end(), 'WHERE users.name < John', 'ORDER BY users.name DESC')

        # === Test: page size
        self.assertQuery(rq(users, {}, cursor=True, default_limit=25).end(), 'LIMIT 26')
        self.assertQuery(rq(users, {'first': '5000'}, cursor=True, max_limit=100).end(), 'LIMIT 101')
        with self.assertRaises(InvalidQueryError):
            rq(users, {'first': '0'}, cursor=True)

        # === Test: errors
        with self.assertRaises(InvalidCursorError):
            rq(users, {'after': 'not a cursor!'}, cursor=True)
        with self.assertRaises(InvalidColumnError):
            rq(users, {'orderBy': 'password'}, cursor=True)
        with self.assertRaises(InvalidQueryError):
            rq(models.audit_log, {}, cursor=True)  # no primary key

        # === Test: the order column is loaded even when not selected
        q = rq(users, {'select': 'name', 'first': '1'}, cursor=True)
        self.assertQuery(q.end(), 'SELECT users.name, users.id')

    def test_count(self):
        q = rq(models.users, {'age': 'gte.18', 'limit': '10', 'order': 'name'})
        qs = self.assertQuery(q.end_count(), 'SELECT count(*) AS count \nFROM users \nWHERE users.age >= 18')
        self.assertNotIn('LIMIT', qs)
        self.assertNotIn('ORDER BY', qs)
