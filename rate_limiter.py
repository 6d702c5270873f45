"""
Rate limiting for the governance API.

Requests are counted per workspace when a session exists, otherwise per
client address (the cron endpoint and unauthenticated calls).
"""
from flask import session
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
import os

# Agent runtimes submit in bursts; reviewers and the cron stay well below this.
SUBMIT_LIMIT = "120 per minute"
DECIDE_LIMIT = "60 per minute"


def get_limiter_storage_uri():
    """Redis when REDIS_URL is set (shared across workers), memory otherwise."""
    redis_url = os.environ.get('REDIS_URL')
    if redis_url:
        return redis_url
    return "memory://"


def workspace_or_address():
    user_id = session.get('user_id')
    if user_id:
        return f'workspace:{user_id}'
    return get_remote_address()


limiter = Limiter(
    key_func=workspace_or_address,
    storage_uri=get_limiter_storage_uri(),
    default_limits=["2000 per hour", "200 per minute"],
    strategy="fixed-window",
)


def init_limiter(app):
    """Initialize rate limiter with Flask app"""
    limiter.init_app(app)
    return limiter
