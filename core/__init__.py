"""
Core browser automation components for the publisher.

Modules:
- browser: Local Playwright browser sessions
- cookie_store: Saved login cookies per (platform, login id)
- human_actions: Human-like typing, clicking and delays
- retry: Linear / exponential backoff helper
"""
