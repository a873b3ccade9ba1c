"""
Top-level router for version 1 of the API.

Aggregates the domain routers under their prefixes.  Routers that span
several top-level paths (collections and bookmarks, search and link
preview) declare full paths themselves and are included without one.
"""

from fastapi import APIRouter

from .endpoints import (
    admin,
    audit,
    collections,
    comments,
    conversations,
    emails,
    forums,
    green_points,
    hashtags,
    invites,
    marketplace,
    notifications,
    payments,
    posts,
    profiles,
    reputation,
    search,
    tasks,
    threads,
    users,
)

router = APIRouter()

router.include_router(users.router, prefix="/users", tags=["users"])
router.include_router(profiles.router, prefix="/profiles", tags=["profiles"])
router.include_router(posts.router, prefix="/posts", tags=["posts"])
router.include_router(hashtags.router, prefix="/hashtags", tags=["hashtags"])
router.include_router(collections.router, tags=["collections"])
router.include_router(comments.router, prefix="/comments", tags=["comments"])
router.include_router(forums.router, prefix="/forums", tags=["forums"])
router.include_router(threads.router, prefix="/threads", tags=["forums"])
router.include_router(conversations.router, prefix="/conversations", tags=["messages"])
router.include_router(conversations.messages_router, prefix="/messages", tags=["messages"])
router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
router.include_router(marketplace.router, prefix="/marketplace", tags=["marketplace"])
router.include_router(payments.router, prefix="/payments", tags=["payments"])
router.include_router(emails.router, prefix="/emails", tags=["emails"])
router.include_router(green_points.router, prefix="/green-points", tags=["green points"])
router.include_router(reputation.router, prefix="/reputation", tags=["reputation"])
router.include_router(reputation.achievements_router, prefix="/achievements", tags=["reputation"])
router.include_router(invites.router, prefix="/invites", tags=["invites"])
router.include_router(tasks.router, prefix="/tasks", tags=["tasks"])
router.include_router(admin.router, prefix="/admin", tags=["admin"])
router.include_router(search.router, tags=["search"])
router.include_router(audit.router, prefix="/audit", tags=["audit"])
