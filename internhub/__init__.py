"""
InternHub: rule engine for the university internship program.
"""
__version__ = "1.0.0"
