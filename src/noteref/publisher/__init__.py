"""Static site publishing for noteref workspaces."""

from .generator import PageData, PublishConfig, PublishResult, SiteGenerator

__all__ = ["PageData", "PublishConfig", "PublishResult", "SiteGenerator"]
