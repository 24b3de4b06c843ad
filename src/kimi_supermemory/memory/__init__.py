"""Scoped memory core: container tags, redaction, timeouts, context block, store client.

Layout:
    base.py      # Shared types + MemoryBackend protocol
    tags.py      # {prefix}_user_* / {prefix}_project_* container tags
    privacy.py   # <private>...</private> redaction
    timeout.py   # call_with_timeout race
    context.py   # [SUPERMEMORY] context block
    client.py    # Supermemory REST client (aiohttp)
"""
