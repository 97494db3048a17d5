"""
Vault Collections — resolve or create the named record collection.

At most one collection per name should exist for a builder. Concurrent
creators converge: the first create wins, and a later one either finds it
while listing or gets a duplicate-key answer, which counts as success.

When creation fails for any other reason, a deterministic collection id is
returned so data operations stay usable. That collection is then NOT
registered server-side; writes to it may be rejected by the nodes until
collection setup succeeds on a later initialization.
"""
import uuid
import logging
from typing import Any, Callable, Optional

from ..exceptions import ErrorCode, SubscriptionExpiredError, is_duplicate_error
from .client import BuilderAPI
from .crypto import derive_identifier

logger = logging.getLogger("secretvault.vault")


def record_schema() -> dict[str, Any]:
    """JSON schema of the bookmark collection."""
    return {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "type": "array",
        "uniqueItems": True,
        "items": {
            "type": "object",
            "properties": {
                "_id": {"type": "string", "format": "uuid"},
                "id": {"type": "string", "format": "uuid"},
                "title": {"type": "string"},
                "url": {"type": "string", "format": "uri"},
                "description": {"type": "string"},
                "image": {"type": "string"},
                "tags": {"type": "array", "items": {"type": "string"}},
                "archived": {"type": "boolean"},
                "favorite": {"type": "boolean"},
                "created_at": {"type": "string", "format": "date-time"},
            },
            "required": ["_id", "id", "title", "url", "created_at"],
        },
    }


def extract_collection_id(collection: dict[str, Any]) -> Optional[str]:
    """Pick the identifier of a listed collection: ``_id``, ``id``, then ``name``."""
    for key in ("_id", "id", "name"):
        value = collection.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def fallback_collection_id(did: str, name: str, owner: Optional[str] = None) -> str:
    """Deterministic id used when the collection cannot be created."""
    context = f"collection:{owner or ''}"
    return f"{name}_{derive_identifier(did, context)}"


class CollectionProvisioner:
    """Idempotently resolve the collection holding user records."""

    def __init__(
        self,
        schema: Optional[dict[str, Any]] = None,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self._schema = schema or record_schema()
        self._id_factory = id_factory

    async def find_collection(self, client: BuilderAPI, name: str) -> Optional[str]:
        """Return the id of the collection named ``name``, if listed.

        A listing failure is logged and treated as "not found".
        """
        try:
            collections = await client.list_collections()
        except SubscriptionExpiredError:
            raise
        except Exception as err:
            logger.info("No existing collections could be listed: %s", err)
            return None
        for collection in collections:
            if collection.get("name") == name:
                return extract_collection_id(collection)
        return None

    async def ensure_collection(
        self,
        client: BuilderAPI,
        name: str,
        owner: Optional[str] = None,
    ) -> str:
        """Resolve the collection ``name``, creating it when missing.

        Args:
            client: Connected builder client.
            name: Collection name.
            owner: User address, only used to derive the fallback id.

        Returns:
            The collection id (existing, created or fallback).

        Raises:
            SubscriptionExpiredError: The builder subscription is not active.
        """
        existing = await self.find_collection(client, name)
        if existing:
            logger.info("Using existing collection %s (%s)", existing, name)
            return existing

        collection_id = self._id_factory()
        body = {
            "_id": collection_id,
            "type": "owned",
            "name": name,
            "schema": self._schema,
        }
        logger.info("Creating collection %s (%s)", collection_id, name)
        try:
            await client.create_collection(body)
        except SubscriptionExpiredError:
            raise
        except Exception as err:
            if is_duplicate_error(err):
                winner = await self.find_collection(client, name)
                logger.info(
                    "Collection %s was created concurrently, using %s",
                    name, winner or name,
                )
                return winner or name
            fallback = fallback_collection_id(client.did, name, owner)
            logger.warning(
                "%s: could not create collection %s, using fallback id %s: %s",
                ErrorCode.COLLECTION_SETUP_FAILED.value, name, fallback, err,
            )
            return fallback
        logger.info("Collection created: %s", collection_id)
        return collection_id
