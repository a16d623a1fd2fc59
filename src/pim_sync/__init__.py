"""Two-way synchronisation of handheld PIM databases with PC-side records."""

__version__ = "0.4.0"
