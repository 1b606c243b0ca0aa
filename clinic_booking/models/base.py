"""Shared metadata for all booking tables."""

from sqlalchemy import MetaData

metadata = MetaData()
