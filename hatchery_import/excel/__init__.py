"""Workbook reading and cell normalization."""
