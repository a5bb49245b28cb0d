"""
ForestQB API Layer

FastAPI-based REST API exposing the query compiler.
Separates HTTP concerns from the core compiler (forestqb).
"""

__version__ = "0.1.0"

# Import directly from api.web when needed: from api.web import create_app
