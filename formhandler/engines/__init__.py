"""Reusable rule engines shared by the type validators."""

from formhandler.engines.limiting import LimitingRuleEngine
from formhandler.engines.patterns import PatternRuleEngine

__all__ = ['LimitingRuleEngine', 'PatternRuleEngine']
