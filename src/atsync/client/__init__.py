"""Upstream XRPC access."""

from atsync.client.xrpc import RecordPage, RepositoryApi, Session, XrpcClient

__all__ = ["RecordPage", "RepositoryApi", "Session", "XrpcClient"]
