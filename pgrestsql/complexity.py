"""
### Query Complexity

Before a query is executed, its cost is estimated, and overly expensive queries are rejected.

The estimate is a heuristic made of three numbers:

* score: a weighted sum of everything that makes a query expensive: large limits, filters,
  LIKE and IN conditions, JSON operators, relationship expansion
* depth: how deep the relationships are expanded
* breadth: how many filters and relationships there are

Each of them has a configurable limit.
"""

from logging import getLogger
from typing import Mapping, Sequence, Optional, List

from .exc import QueryComplexityError
from .expand import parse_expand
from .handlers.select import SelectField

logger = getLogger(__name__)


# Costs
BASE_SCORE = 10
LIMIT_SCORE_CAP = 100
OR_FILTER_SCORE = 15
FILTER_SCORE = 5
LIKE_SCORE = 10
IN_ITEM_SCORE = 2
JSON_OPERATOR_SCORE = 8
RELATIONSHIP_SCORE = 20
NESTING_LEVEL_SCORE = 10
EXPAND_LIMIT_SCORE_CAP = 50
EXPAND_DEFAULT_LIMIT = 10

JSON_OPERATOR_MARKERS = ('haskey', 'haskeys', 'jsoncontains', '@>')


class QueryAnalysis:
    """ Complexity estimate of a query """
    __slots__ = ('complexity_score', 'depth', 'breadth')

    def __init__(self, complexity_score: int = 0, depth: int = 0, breadth: int = 0):
        self.complexity_score = complexity_score
        self.depth = depth
        self.breadth = breadth

    def __repr__(self):
        return 'QueryAnalysis(score={}, depth={}, breadth={})'.format(self.complexity_score, self.depth, self.breadth)


class QueryComplexityAnalyzer:
    """ Estimates query complexity and rejects queries that exceed the limits

    :param max_complexity_score: The maximum score
    :param max_depth: The maximum depth
    :param max_breadth: The maximum breadth
    :param complexity_analysis_enabled: Switch the analysis on/off
    """

    def __init__(self, max_complexity_score: int = 1000, max_depth: int = 10, max_breadth: int = 50,
                 complexity_analysis_enabled: bool = True):
        self.max_complexity_score = max_complexity_score
        self.max_depth = max_depth
        self.max_breadth = max_breadth
        self.complexity_analysis_enabled = complexity_analysis_enabled

    def validate(self, filters: Mapping[str, Sequence[str]], limit: int,
                 select_fields: Sequence[SelectField] = None, expand: str = None):
        """ Analyze the query and raise if it is too complex

        When the analysis itself fails, the query is let through.

        :param filters: Filters: {column: [operator.value, ...]}
        :param limit: The number of rows requested
        :param select_fields: Parsed `select`, with embedded resources
        :param expand: Legacy `expand`
        :raises QueryComplexityError
        """
        if not self.complexity_analysis_enabled:
            return

        try:
            analysis = self.analyze(filters, limit, select_fields, expand)
        except Exception as e:
            logger.warning('Query complexity analysis failed, allowing the query: %s', e)
            return

        if analysis.complexity_score > self.max_complexity_score:
            raise QueryComplexityError('Query complexity score {} exceeds maximum allowed {}'
                                       .format(analysis.complexity_score, self.max_complexity_score))
        if analysis.depth > self.max_depth:
            raise QueryComplexityError('Query depth {} exceeds maximum allowed {}'
                                       .format(analysis.depth, self.max_depth))
        if analysis.breadth > self.max_breadth:
            raise QueryComplexityError('Query breadth {} exceeds maximum allowed {}'
                                       .format(analysis.breadth, self.max_breadth))

        logger.debug('Query complexity validation passed: %r', analysis)

    def analyze(self, filters: Mapping[str, Sequence[str]], limit: int,
                select_fields: Sequence[SelectField] = None, expand: str = None) -> QueryAnalysis:
        """ Estimate the complexity of a query """
        analysis = QueryAnalysis(complexity_score=BASE_SCORE, depth=1, breadth=1)

        # Limit
        analysis.complexity_score += min(limit or 0, LIMIT_SCORE_CAP)

        # Filters
        if filters:
            analysis.breadth += len(filters)
            analysis.complexity_score += self._filters_score(filters)

        # Embedded resources
        if select_fields:
            self._analyze_embedded(analysis, [f for f in select_fields if f.is_embedded], level=1)

        # Legacy expand
        if expand and expand.strip():
            self._analyze_expand(analysis, expand)

        return analysis

    def get_complexity_limits(self) -> dict:
        """ The current limits """
        return {
            'maxComplexityScore': self.max_complexity_score,
            'maxDepth': self.max_depth,
            'maxBreadth': self.max_breadth,
            'analysisEnabled': self.complexity_analysis_enabled,
        }

    @staticmethod
    def _filters_score(filters: Mapping[str, Sequence[str]]) -> int:
        score = 0
        for key, values in filters.items():
            if isinstance(values, str):
                values = [values]
            score += len(values) * (OR_FILTER_SCORE if key == 'or' else FILTER_SCORE)

            for value in values:
                if 'like' in value or 'ilike' in value:
                    score += LIKE_SCORE
                elif 'in.' in value or 'notin.' in value:
                    score += _count_in_items(value) * IN_ITEM_SCORE
                elif any(marker in value for marker in JSON_OPERATOR_MARKERS):
                    score += JSON_OPERATOR_SCORE
        return score

    def _analyze_embedded(self, analysis: QueryAnalysis, fields: List[SelectField], level: int):
        """ Every embedded resource costs more, the deeper it is """
        if not fields:
            return
        analysis.breadth += len(fields)
        analysis.depth = max(analysis.depth, 1 + level)
        for field in fields:
            analysis.complexity_score += RELATIONSHIP_SCORE + NESTING_LEVEL_SCORE * level
            self._analyze_embedded(analysis, field.get_embedded_fields(), level + 1)

    @staticmethod
    def _analyze_expand(analysis: QueryAnalysis, expand: str):
        """ Legacy expansions are one level deep """
        expansions = parse_expand(expand)
        analysis.breadth += len(expansions)
        if expansions:
            analysis.depth = max(analysis.depth, 2)
        for name, params in expansions:
            analysis.complexity_score += RELATIONSHIP_SCORE + NESTING_LEVEL_SCORE
            if 'limit' in params:
                analysis.complexity_score += min(_parse_limit(params['limit']), EXPAND_LIMIT_SCORE_CAP)


def _count_in_items(value: str) -> int:
    """ Count the items in `in.(a,b,c)`; an empty list counts as one """
    start = value.find('(')
    end = value.find(')', start)
    inner = value[start + 1:end] if 0 <= start < end else ''
    return len(inner.split(','))


def _parse_limit(value: Optional[str]) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return EXPAND_DEFAULT_LIMIT
