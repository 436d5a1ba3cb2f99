"""
Pipeline components and the collaborators they talk to (platform API,
sandbox, audit store).
"""

__all__ = [
    "audit_store",
    "batch_harness",
    "dispatcher",
    "eligibility",
    "execution",
    "extraction",
    "feed_models",
    "result_transform",
    "sandbox",
    "stats",
    "terminal_graphics",
    "twitter_client",
]
