"""
Bitbucket Server platform adapter.

This module provides the platform facade and the services it delegates
pull request, comment and build status work to.
"""

from .platform import BitbucketServerPlatform

__all__ = ['BitbucketServerPlatform']
