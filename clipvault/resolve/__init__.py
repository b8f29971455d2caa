"""Source URL to direct media URL resolution."""

from .registry import DEFAULT_RULES, ResolverRule, SiteResolver

__all__ = ["DEFAULT_RULES", "ResolverRule", "SiteResolver"]
