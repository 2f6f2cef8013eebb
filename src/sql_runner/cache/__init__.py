"""Result caching.

A cached result is one opaque blob per statement, stored under
blazer/v3/<data_source_id>/<md5(statement)> in a key/value store with TTL.

Stores supported:
  - memory : per-process dict (default)
  - s3     : one object per entry, shared across processes
"""
