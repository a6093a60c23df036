"""Business logic services.

Services are constructed once at process start (see fortunia.app) and
called by route handlers and Celery tasks.
"""
