"""
Business context analysis - intent, domain, entities and time
"""

from bizsql.domain.context.models import BusinessContextProfile, DomainMatch, IntentType
from bizsql.domain.context.analyzer import BusinessContextAnalyzer

__all__ = ["BusinessContextProfile", "DomainMatch", "IntentType", "BusinessContextAnalyzer"]
