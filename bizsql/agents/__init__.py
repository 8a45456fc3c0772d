"""
Agents that turn an analyzed question into validated SQL
"""
