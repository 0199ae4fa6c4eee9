"""
Cache package for Approvals Service.

Provides an optional Redis-backed cache of the rule set. It wraps the rule
store and is invalidated on every rule edit; with a TTL of zero the service
does not use it at all.
"""
