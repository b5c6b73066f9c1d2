"""Typed domain records (``models.generation``) and HTTP schemas (``models.schemas``).

Import from the submodules directly; the schemas depend on the thread store.
"""
