"""Data sources and statement execution.

A data source owns one SQLAlchemy engine (and its pool). Statements run
as raw driver SQL, so the runner stays dialect-agnostic; only timeouts,
cost estimates and default schemas branch on the engine family.

Engine families recognised:
  - PostgreSQL (and PostGIS)
  - Redshift   (sqlalchemy-redshift)
  - MySQL      (and MariaDB)
  - Other      : anything else SQLAlchemy can connect to (no timeouts)
"""
