"""
HTTP layer for Batch OCR.
"""
