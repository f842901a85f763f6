import logging

from django.db import connection

from krt import models

log = logging.getLogger(__name__)


def ensure_schema(model=models.ResourceSample):
    """
    Creates the model table and any of its declared indexes that are missing.
    Safe to call repeatedly.
    """
    table = model._meta.db_table

    with connection.cursor() as cursor:
        tables = connection.introspection.table_names(cursor)

    if table not in tables:
        log.info('Creating table %s', table)
        with connection.schema_editor() as editor:
            editor.create_model(model)
        return

    with connection.cursor() as cursor:
        existing = connection.introspection.get_constraints(cursor, table)

    missing = [index for index in model._meta.indexes if index.name not in existing]
    if not missing:
        return

    with connection.schema_editor() as editor:
        for index in missing:
            log.info('Creating index %s on %s', index.name, table)
            editor.add_index(model, index)
