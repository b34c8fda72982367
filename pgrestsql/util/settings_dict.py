from typing import Mapping, Sequence, Union


class RestQuerySettingsDict(dict):
    """ RestQuery and CrudHelper settings container.

        Is only used for nice autocompletion and documentation purposes only! :)

        The keyword settings in this object are just plain kwargs names
        for every handler object's __init__ method,
        which are fed to the handlers by QuerySettings.
    """

    def __init__(self,
                 # --- limit & cursor & expand
                 max_limit: int = 1000,
                 # --- limit
                 max_offset: int = 1000000,
                 # --- cursor
                 default_limit: int = 100,
                 # --- filter
                 force_filter: Mapping[str, Union[str, Sequence[str]]] = None,
                 text_search_config: str = 'english',
                 # --- complexity
                 max_complexity_score: int = 1000,
                 max_depth: int = 10,
                 max_breadth: int = 50,
                 complexity_analysis_enabled: bool = True,
                 # --- validation
                 check_permissions: bool = True,
                 # --- crud
                 returning_supported: bool = True,
                 ):
        """ Settings that let you fine-tune security limitations and the way queries are made.

        These settings can be nicely kept in a RestQuerySettingsDict
        and given to CrudHelper as keyword arguments.

        Example:
            ```python
            from pgrestsql import CrudHelper, RestQuerySettingsDict

            crud = CrudHelper(schema, executor, **RestQuerySettingsDict(
                max_limit=100,
                force_filter={'is_deleted': 'eq.false'},
            ))
            ```

        Args:
            max_limit (int): (for: limit, cursor, expand)
                The maximum number of rows the user can request with `limit`, `first`, or `last`.
                Reverse relationship limits in `expand` are capped with it as well.
            max_offset (int): (for: limit)
                The maximum `offset`.
            default_limit (int): (for: cursor)
                The page size for cursor pagination when neither `first` nor `last` is given.
            force_filter (dict): (for: filter)
                Filters in the query string format (`{'column': 'operator.value'}`)
                that are forced onto every request, in addition to the user's filters.
            text_search_config (str): (for: filter)
                The text search configuration used by `fts`, `plfts`, `wfts`.
            max_complexity_score (int): (for: complexity)
                Queries with a higher complexity score are rejected.
            max_depth (int): (for: complexity)
                The maximum nesting level of relationship expansion.
            max_breadth (int): (for: complexity)
                The maximum number of filters and expanded relationships.
            complexity_analysis_enabled (bool): (for: complexity)
                Enable/disable the complexity analysis.
            check_permissions (bool): (for: validation)
                Check table privileges with `has_table_privilege()` before every operation.
            returning_supported (bool): (for: crud)
                Whether the database supports `UPDATE .. RETURNING *`.
                When it does not, updated rows are loaded with a separate SELECT.
        """
        super(RestQuerySettingsDict, self).__init__(
            max_limit=max_limit,
            max_offset=max_offset,
            default_limit=default_limit,
            force_filter=force_filter,
            text_search_config=text_search_config,
            max_complexity_score=max_complexity_score,
            max_depth=max_depth,
            max_breadth=max_breadth,
            complexity_analysis_enabled=complexity_analysis_enabled,
            check_permissions=check_permissions,
            returning_supported=returning_supported,
        )
