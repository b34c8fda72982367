import json
from exdoc import doc, getmembers

# Methods
doccls = lambda cls, *allowed_keys: {
    'cls': doc(cls),
    'attrs': {name: doc(m, cls)
              for name, m in getmembers(cls, None,
                                        lambda key, value: key in allowed_keys or not key.startswith('_'))}
}

# Data
import pgrestsql
from pgrestsql.handlers import select, filter, sort, limit, cursor
from pgrestsql import crud, expand, reflect, schema
from pgrestsql import RestQuery, RestQuerySettingsDict, CrudHelper, RelationshipExpander
from pgrestsql import TypeConverter, ReflectedSchemaProvider, StaticSchemaProvider, QueryComplexityAnalyzer

data = dict(
    pgrestsql=doc(pgrestsql),
    handlers=doc(pgrestsql.handlers),
    operations={
        m.__name__.rsplit('.', 1)[1]: doc(m)
        for m in (select, filter, sort, limit, cursor)},
    pgrestsql_query=doc(pgrestsql.query),
    pgrestsql_schema=doc(schema),
    pgrestsql_reflect=doc(reflect),
    pgrestsql_expand=doc(expand),
    pgrestsql_crud=doc(crud),

    RestQuery=doccls(RestQuery),
    RestQuerySettingsDict_init=doc(RestQuerySettingsDict.__init__, RestQuerySettingsDict),

    CrudHelper=doccls(CrudHelper),
    RelationshipExpander=doccls(RelationshipExpander),
    TypeConverter=doccls(TypeConverter),
    QueryComplexityAnalyzer=doccls(QueryComplexityAnalyzer),
    StaticSchemaProvider=doccls(StaticSchemaProvider),
    ReflectedSchemaProvider=doccls(ReflectedSchemaProvider),
)

# Patches

class MyJsonEncoder(json.JSONEncoder):
    def default(self, o):
        # Classes
        if isinstance(o, type):
            return o.__name__
        return super(MyJsonEncoder, self).default(o)

# Document
print(json.dumps(data, indent=2, cls=MyJsonEncoder))
