from datetime import datetime
from typing import Any

import pytz
from bson import ObjectId
from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from shared.clients.docstore.DocStoreClientInterface import DocStoreClientInterface
from shared.clients.docstore.models.UpdateResult import UpdateResult
from shared.errors.ClientErrors import DocStoreError
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig

# hard limit of $vectorSearch
MAX_NUM_CANDIDATES = 10000


class DocStoreClientMongodb(DocStoreClientInterface):
    """MongoDB (Atlas or self-hosted) through pymongo's AsyncMongoClient.

    The driver keeps its own connection pool; one AsyncMongoClient lives from
    boot() to close(). Ids are ObjectIds and timestamps are tz-aware UTC
    datetimes, both in filters and in returned documents.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._uri = self.get_config_val("URI", default=None, val_type="string")
        self._database = self.get_config_val("DATABASE", default=None, val_type="string")
        self._collection = self.get_config_val("COLLECTION", default="uploaded_invoices", val_type="string")
        self._vector_index = self.get_config_val("VECTOR_INDEX", default="summary_embedding_index", val_type="string")

    def _get_engine_name(self) -> str:
        return "Mongodb"

    def get_collection(self) -> str:
        return self._collection

    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="URI", val_type="string", default=None),
            EnvConfig(env_key="DATABASE", val_type="string", default=None),
            EnvConfig(env_key="COLLECTION", val_type="string", default="uploaded_invoices"),
            EnvConfig(env_key="VECTOR_INDEX", val_type="string", default="summary_embedding_index"),
        ]

    ##########################################
    ############ VALUE ENCODING ##############
    ##########################################

    def is_valid_id(self, record_id: str) -> bool:
        return isinstance(record_id, str) and ObjectId.is_valid(record_id)

    def encode_id(self, record_id: str) -> Any:
        return ObjectId(record_id)

    def encode_datetime(self, value: datetime) -> Any:
        if value.tzinfo is None:
            value = pytz.utc.localize(value)
        # BSON dates carry milliseconds
        utc_value = value.astimezone(pytz.utc)
        return utc_value.replace(microsecond=utc_value.microsecond // 1000 * 1000)

    def get_vector_search_stages(self, query_vector: list[float], path: str, candidate_pool_size: int, result_limit: int, filter: dict) -> list[dict]:
        num_candidates = min(max(candidate_pool_size, result_limit), MAX_NUM_CANDIDATES)
        return [
            {
                "$vectorSearch": {
                    "index": self._vector_index,
                    "path": path,
                    "queryVector": query_vector,
                    "numCandidates": num_candidates,
                    "limit": min(result_limit, num_candidates),
                    "filter": filter,
                }
            },
            {"$addFields": {self.SCORE_FIELD: {"$meta": "vectorSearchScore"}}},
        ]

    ##########################################
    ############## LIFECYCLE #################
    ##########################################

    async def boot(self) -> None:
        # connecting is lazy, only a malformed URI fails here
        try:
            self._client = AsyncMongoClient(
                self._uri,
                serverSelectionTimeoutMS=int(self.timeout * 1000),
                tz_aware=True,
                appname="invoice-insights",
            )
        except PyMongoError as e:
            raise DocStoreError("connect", e)
        self._last_alive_at = None

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
        self._last_alive_at = None

    async def do_healthcheck(self) -> dict:
        if self._client is None:
            raise RuntimeError(f"{self.describe()} is not booted. Call boot() or ensure_ready() first.")
        try:
            return await self._client.admin.command("ping")
        except PyMongoError as e:
            raise DocStoreError("ping", e)

    def _get_liveness_errors(self) -> tuple[type[Exception], ...]:
        return (DocStoreError,)

    def _get_collection(self):
        if self._client is None:
            raise RuntimeError(f"{self.describe()} is not booted. Call boot() or ensure_ready() first.")
        return self._client[self._database][self._collection]

    ##########################################
    ############## OPERATIONS ################
    ##########################################

    async def do_insert_one(self, document: dict) -> str:
        try:
            # the driver writes the generated _id into the dict it is given
            result = await self._get_collection().insert_one(dict(document))
        except PyMongoError as e:
            raise DocStoreError("insertOne", e)
        return str(result.inserted_id)

    async def do_find_one(self, filter: dict, projection: dict | None = None) -> dict | None:
        try:
            return await self._get_collection().find_one(filter, projection)
        except PyMongoError as e:
            raise DocStoreError("findOne", e)

    async def do_find(self, filter: dict, sort: dict | None = None, limit: int | None = None) -> list[dict]:
        try:
            cursor = self._get_collection().find(filter)
            if sort:
                cursor = cursor.sort(list(sort.items()))
            if limit:
                cursor = cursor.limit(int(limit))
            return await cursor.to_list(None)
        except PyMongoError as e:
            raise DocStoreError("find", e)

    async def do_update_one(self, filter: dict, update: dict) -> UpdateResult:
        try:
            result = await self._get_collection().update_one(filter, update)
        except PyMongoError as e:
            raise DocStoreError("updateOne", e)
        return UpdateResult(matched_count=result.matched_count, modified_count=result.modified_count)

    async def do_aggregate(self, pipeline: list[dict]) -> list[dict]:
        try:
            cursor = await self._get_collection().aggregate(pipeline)
            return await cursor.to_list(None)
        except PyMongoError as e:
            raise DocStoreError("aggregate", e)
