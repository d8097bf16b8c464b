"""Ranking services.

Comparison search and undo are pure and synchronous; only the shift
protocol and the workflows built on it touch the ordered store.
Routes call the facade in services.ranking, never the workflows directly.
"""
