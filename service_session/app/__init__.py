"""
RetroLens session layer.

Reconciles the identity provider's ephemeral credentials with the
backend-owned user profile and serves every backend entity (profiles,
discussions, cameras, follow graphs, likes) through a shared,
bounded-staleness query cache.
"""
