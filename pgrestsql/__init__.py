"""
pgrestsql is a PostgREST-style query engine that lets you query a PostgreSQL database
with nothing but a query string.

The main use case is a generic REST API:
every time the UI needs some *filtering*, *sorting*, *pagination*, or to load some
*related rows*, you won't have to write a single line of repetitive code!

```
GET /api/users?select=id,name,posts(title)&age=gte.18&order=name.asc&limit=10
```

The query string is validated against the table's columns, and translated into parameterized SQL:
no user input ever becomes a part of the SQL text.

NOTE: only PostgreSQL is supported.
"""

# Exceptions that are used here and there
from .exc import *

# pgrestsql needs to know the columns, their types, and the foreign keys of your tables.
# All this is described with the following classes:
from .schema import SchemaProvider, StaticSchemaProvider, TableInfo, ColumnInfo, ForeignKeyInfo
from .reflect import ReflectedSchemaProvider
from .bag import TablePropertyBags

# Values go back and forth between JSON and PostgreSQL types
from .types import ColumnType, parse_type_tag
from .convert import TypeConverter

# The heart of pgrestsql are the handlers:
# that's where your query strings are converted to actual SqlAlchemy statements!
from . import handlers

# RestQuery parses the query string and applies the handlers
from .query import RestQuery

# Statements for writing, keys and cursors
from .statements import QueryBuilder, parse_composite_key, encode_composite_key, encode_cursor, decode_cursor

# Executors run the statements
from .executor import SqlExecutor, SqlAlchemyExecutor

# Validation, relationships and complexity limits
from .validation import Validator
from .expand import RelationshipExpander, Relationship
from .complexity import QueryComplexityAnalyzer

# CrudHelper is what you'll need when building a JSON API that implements CRUD:
# Create/Read/Update/Delete
from .crud import CrudHelper

# Settings objects for RestQuery and CrudHelper
from .util import RestQuerySettingsDict
