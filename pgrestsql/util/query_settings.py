import inspect


class QuerySettings(object):
    """ Settings keeper for RestQuery and CrudHelper

        This is essentially a helper which will feed the correct kwargs to every class.

        Handlers receive settings as kwargs to their __init__() methods,
        and those kwargs have unique names.

        This class will collect all settings as a single, flat dict,
        and give each handler only the settings it wants.

        This approach will let us use a flat configuration dict.
        In addition, because some handlers have matching settings (e.g. `max_limit` for limit and cursor),
        all of them will receive them!
    """

    def __init__(self, settings):
        """ Store the settings for every handler

            :param settings: dict of handler kwargs
        """
        assert isinstance(settings, dict)

        #: Settings dict
        self._settings = settings  # we don't make a copy, because we don't modify it

        #: kwarg names for every handler
        self._handler_kwargs = {}
        #: kwarg default values
        self._kwarg_defaults = {}

    def get_settings(self, handler_name, handler_cls):
        """ Get settings for the given handler

            Every time a class is given us, we analyze its __init__() method in order to know its kwargs and its default values.
            Then, we take the matching keys from the settings dict, we take defaults from the argument defaults,
            and make it all into `kwargs` that will be given to the class.

            Arguments without default values are not settings: the caller provides them.
        """
        # Analyze its __init__() method's kwargs
        parameters = inspect.signature(handler_cls.__init__).parameters.values()
        defaults = {p.name: p.default
                    for p in parameters
                    if p.default is not inspect.Parameter.empty}

        self._handler_kwargs[handler_name] = frozenset(defaults)
        self._kwarg_defaults.update(defaults)

        # Get the values for these kwargs
        return {k: self._settings.get(k, default)
                for k, default in defaults.items()}

    def get(self, name, default=None):
        """ Get a single setting that no handler receives """
        return self._settings.get(name, default)

    def raise_if_invalid_handler_settings(self, *other_known_keys):
        """ Check whether there were any typos in setting names

            After all handlers were initialized, we've had a chance to analyze all their keyword arguments.
            Now, we have the information about them, and we can check whether every kwarg was actually used.
            If not, there must be a typo.

            :param other_known_keys: Names of settings that are used outside of handlers
            :raises: KeyError: Invalid settings provided
        """
        valid_kwargs = set(self._kwarg_defaults.keys()) | set(other_known_keys)

        # Result: unknown keys
        invalid_keys = set(self._settings.keys()) - valid_kwargs

        # Raise?
        if invalid_keys:
            raise KeyError('Invalid settings were provided: {}'
                           .format(','.join(sorted(invalid_keys))))

    def __repr__(self):
        return repr('{}({})'.format(self.__class__.__name__, self._settings))
