from logging import getLogger
from typing import List, Union

from sqlalchemy.engine import Engine, Connection

logger = getLogger(__name__)


class SqlExecutor:
    """ Runs statements

    The library only ever hands parameterized statements to the executor.
    """

    def query_for_list(self, statement) -> List[dict]:
        """ Run a statement that returns rows

        :return: list of rows, as dicts
        """
        raise NotImplementedError

    def update(self, statement) -> int:
        """ Run a statement that modifies data

        :return: the number of affected rows
        """
        raise NotImplementedError


class SqlAlchemyExecutor(SqlExecutor):
    """ Runs statements with SqlAlchemy

    :param bind: An Engine: every call runs in its own transaction.
        Or a Connection: the caller owns the transaction.
    """

    def __init__(self, bind: Union[Engine, Connection]):
        self.bind = bind

    def query_for_list(self, statement) -> List[dict]:
        logger.debug('Query: %s', statement)
        if isinstance(self.bind, Connection):
            return self._fetch(self.bind, statement)
        with self.bind.begin() as connection:
            return self._fetch(connection, statement)

    def update(self, statement) -> int:
        logger.debug('Update: %s', statement)
        if isinstance(self.bind, Connection):
            return self.bind.execute(statement).rowcount
        with self.bind.begin() as connection:
            return connection.execute(statement).rowcount

    @staticmethod
    def _fetch(connection: Connection, statement) -> List[dict]:
        result = connection.execute(statement)
        return [dict(row) for row in result.mappings()]
