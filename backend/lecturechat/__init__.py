"""Application package for the LectureChat backend.

This package exposes the repository, model and authentication modules
used by the FastAPI application. Individual modules contain the concrete
implementations and documentation.
"""
