"""Site-wide search grouped by result kind."""

import logging
from typing import Any, Dict, List, Optional

from honua_api.app.core.db import get_connection, row_to_dict
from honua_api.app.core.errors import ValidationError
from honua_api.app.services.post_service import PostService
from honua_api.app.services.user_service import UserService

logger = logging.getLogger(__name__)

SEARCH_TYPES = ("all", "users", "posts", "hashtags", "categories")


class SearchService:
    @classmethod
    async def search_categories(cls, query: Optional[str], limit: int = 20) -> List[Dict[str, Any]]:
        """Active marketplace categories whose name or description matches."""
        if not query or not query.strip():
            return []
        pattern = f"%{query.strip()}%"
        conn = get_connection()
        try:
            rows = conn.execute(
                """
                SELECT c.id, c.name, c.slug, c.description, c.icon, c.applicable_types,
                       (SELECT COUNT(*) FROM marketplace_products p
                        WHERE p.category = c.slug AND p.status = 'active') AS product_count
                FROM marketplace_categories c
                WHERE c.active = 1 AND (c.name LIKE ? OR c.description LIKE ?)
                ORDER BY product_count DESC, c.name
                LIMIT ?
                """,
                (pattern, pattern, limit),
            ).fetchall()
        finally:
            conn.close()
        return [row_to_dict(row, json_fields=("applicable_types",)) for row in rows]

    @classmethod
    async def search(
        cls, query: Optional[str], type_: str = "all", limit: int = 10, viewer: Optional[dict] = None
    ) -> Dict[str, Any]:
        """Search users, posts, hashtags and categories.

        Only the groups selected by ``type_`` appear in the result; an
        empty query returns every group empty.
        """
        if type_ not in SEARCH_TYPES:
            raise ValidationError("Invalid search type. Must be one of: " + ", ".join(SEARCH_TYPES))
        if not query or not query.strip():
            return {"users": [], "posts": [], "hashtags": [], "categories": []}
        query = query.strip()
        results: Dict[str, Any] = {}
        if type_ in ("all", "users"):
            results["users"] = await UserService.search(query, limit)
        if type_ in ("all", "posts"):
            results["posts"] = await PostService.search(viewer, query, limit)
        if type_ in ("all", "hashtags"):
            results["hashtags"] = (await PostService.search_hashtags(query, limit))["hashtags"]
        if type_ in ("all", "categories"):
            results["categories"] = await cls.search_categories(query, limit)
        logger.debug("Search %r (%s) returned %s groups", query, type_, len(results))
        return results
