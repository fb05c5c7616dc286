"""occcube package

Species occurrence cubes from GBIF downloads: load, filter, uncertainty-aware
grid assignment and aggregation to (year, grid cell, species).
"""
__all__ = ["__version__"]

# Keep version in one place (matches pyproject.toml)
__version__ = "0.1.0"
