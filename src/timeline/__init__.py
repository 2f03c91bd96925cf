"""Optimistic timeline store for life story memories.

Text memos, voice memos and interview answers are accepted immediately,
uploaded in the background, retried with backoff and persisted across
restarts. See timeline.store.TimelineStore.
"""
