"""Test data factories."""

from tests.support.factories.upload_factory import BASE_TIME, create_upload_task

__all__ = ["BASE_TIME", "create_upload_task"]
