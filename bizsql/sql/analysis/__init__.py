"""
SQL analysis helpers built on sqlglot
"""
