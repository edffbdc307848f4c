"""
Common infrastructure for queue_dump.

Provides exceptions, metrics and security utilities shared by the
consumer and the materializer.
"""
