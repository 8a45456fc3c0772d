"""
SQL generation, validation and self-correction workflow
"""
