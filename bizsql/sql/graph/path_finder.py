"""
Join path finder over declared foreign keys.

Uses Dijkstra on the FK graph to find the shortest join path between two
tables. Retrieval only ever asks for one intermediate table (two hops), to
bridge selected tables that have no direct foreign key.
"""

import heapq
from collections import defaultdict
from typing import Dict, List, Optional, Set, Tuple

from loguru import logger

from bizsql.sql.catalog.models import FKRelationship


class JoinPathFinder:
    """
    Shortest-path finder for the foreign-key graph.

    Paths are computed on demand and cached per (start, end) pair. Adjacency
    lists are sorted so equal-length paths always resolve the same way.
    """

    def __init__(self, relationships: List[FKRelationship]):
        self.relationships = list(relationships)
        self._graph = self._build_graph()
        self._cache: Dict[Tuple[str, str, int], Optional[List[FKRelationship]]] = {}

        logger.debug(f"Initialized JoinPathFinder with {len(self._graph)} nodes")

    def _build_graph(self) -> Dict[str, List[Tuple[str, FKRelationship]]]:
        graph: Dict[str, List[Tuple[str, FKRelationship]]] = defaultdict(list)
        for rel in self.relationships:
            # Joins work both ways
            graph[rel.from_table].append((rel.to_table, rel))
            graph[rel.to_table].append((rel.from_table, rel))
        for table in graph:
            graph[table].sort(key=lambda item: (item[0], item[1].from_column, item[1].to_column))
        return dict(graph)

    def direct_relationships(self, a: str, b: str) -> List[FKRelationship]:
        return [rel for neighbor, rel in self._graph.get(a, []) if neighbor == b]

    def find_shortest_path(self, start: str, end: str, max_hops: int = 2) -> Optional[List[FKRelationship]]:
        """
        Find the shortest FK path between two tables.

        Returns:
            List of relationships along the path, [] for the same table, or
            None if no path of at most ``max_hops`` exists.
        """
        cache_key = (start, end, max_hops)
        if cache_key in self._cache:
            return self._cache[cache_key]

        if start == end:
            self._cache[cache_key] = []
            return []

        if start not in self._graph or end not in self._graph:
            self._cache[cache_key] = None
            return None

        # Priority queue: (hops, tie_breaker, current_table, path_so_far)
        tie_breaker = 0
        pq: List[Tuple[int, int, str, List[FKRelationship]]] = [(0, tie_breaker, start, [])]
        visited: Set[str] = set()

        while pq:
            hops, _, current, path = heapq.heappop(pq)
            if current in visited:
                continue
            visited.add(current)

            if current == end:
                self._cache[cache_key] = path
                return path

            if hops >= max_hops:
                continue

            for neighbor, rel in self._graph.get(current, []):
                if neighbor in visited:
                    continue
                tie_breaker += 1
                heapq.heappush(pq, (hops + 1, tie_breaker, neighbor, path + [rel]))

        self._cache[cache_key] = None
        return None

    def find_bridge(self, a: str, b: str) -> Optional[str]:
        """
        Table that joins ``a`` to ``b`` in exactly one hop through it.

        Returns None when the tables are directly related or no single
        intermediate table connects them.
        """
        path = self.find_shortest_path(a, b, max_hops=2)
        if not path or len(path) != 2:
            return None
        return path[0].other(a)

    def get_path_description(self, path: List[FKRelationship]) -> str:
        if not path:
            return "Direct relationship (same table or no joins needed)"
        return " → ".join(rel.render() for rel in path)
