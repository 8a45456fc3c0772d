"""
Business domain layer - vocabulary, time resolution and question analysis
"""
