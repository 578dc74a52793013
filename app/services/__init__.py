"""
Services package for EPG Merge Service

This package contains all business logic and service layer components.
"""
from app.services.epg_fetch_service import FeedBuildError, get_merged_feed, get_last_run
from app.services.cache_service import get_feed_cache
from app.services.scheduler_service import cache_scheduler
from app.services.epg_merge_service import merge_documents, render_feed

__all__ = [
    'FeedBuildError',
    'get_merged_feed',
    'get_last_run',
    'get_feed_cache',
    'cache_scheduler',
    'merge_documents',
    'render_feed',
]
