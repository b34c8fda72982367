"""
pgrestsql translates PostgREST-style query strings into SQL.

Every query string parameter is either a control parameter, or a filter:

```
GET /api/users?select=id,name,posts(title)&age=gte.18&order=name.asc&limit=10&offset=20
```

Query String Syntax
-------------------

* `select`: [Select Operation](#select-operation) selects the columns, and embeds related resources
* `order`, `orderBy`, `orderDirection`: [Order Operation](#order-operation) sorts the results
* `limit`, `offset`: [Slice Operation](#slice-operation) paginates
* `first`, `after`, `last`, `before`: [Cursor Pagination](#cursor-pagination)
* `expand`: loads related resources (legacy syntax: `expand=author,comments(limit:5)`)
* anything else: [Filter Operation](#filter-operation) filters the results, using your criteria

Every handler in this package takes care of one group of parameters.
"""

from .base import RestQueryHandlerBase
from .filter import RestFilter, RestEmbeddedFilter
from .select import RestSelect, SelectField, parse_select
from .sort import RestOrder
from .limit import RestLimit
from .cursor import RestCursor
