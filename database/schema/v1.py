"""Schema v1 - Document storage.

One row per named JSON document (listings, registry, whitelist, ownership).
Rows are overwritten whole, mirroring the blob backend.
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'documents',
            'columns': [
                {'name': 'name', 'type': 'TEXT', 'primary_key': True},
                {'name': 'body', 'type': 'JSONB', 'nullable': False},
                {'name': 'updated_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'}
            ]
        }
    ]
}
