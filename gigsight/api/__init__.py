"""
Background task execution for GigSight.

Import ``gigsight.api.tasks`` to register the Celery tasks; this package
itself stays import-light so the CLI does not need a broker.
"""
