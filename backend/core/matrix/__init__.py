"""
Allergy matrices: station/feature dish lists rendered as dish x allergen grids.
"""
from .builder import BLANK, CONTAINS, MAY_CONTAIN, MatrixBuilder, MatrixRow, station_matrix_name

__all__ = [
    "BLANK",
    "CONTAINS",
    "MAY_CONTAIN",
    "MatrixBuilder",
    "MatrixRow",
    "station_matrix_name",
]
