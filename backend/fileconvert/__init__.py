"""
File conversion service.

FastAPI application that converts uploaded documents and images
(word/pdf/text/image/OCR) and keeps a history of conversions.
"""

__all__ = ["__version__"]

__version__ = "1.0.0"
