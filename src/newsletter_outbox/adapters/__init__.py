"""Framework adapters for the newsletter outbox.

- starlette.py: conversion between response snapshots and Starlette responses
"""

from newsletter_outbox.adapters.starlette import response_to_snapshot, snapshot_to_response

__all__ = ["snapshot_to_response", "response_to_snapshot"]
