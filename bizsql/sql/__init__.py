"""
SQL layer - Catalog, graph, analysis and dry-run execution
"""
