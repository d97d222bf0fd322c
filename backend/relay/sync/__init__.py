"""Replicated store access: the ``SyncChannel`` contract and its backends."""

from .channel import MemoryChannel, Subscription, SyncChannel, join_path

__all__ = ['MemoryChannel', 'Subscription', 'SyncChannel', 'join_path']
