"""
Foreign-key graph utilities
"""

from bizsql.sql.graph.path_finder import JoinPathFinder

__all__ = ["JoinPathFinder"]
