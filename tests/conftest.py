"""Shared fixtures: env isolation, an in-memory document store and scriptable AI stages."""

import copy
import logging
import math
import os
from datetime import datetime
from typing import Any

import pytest
import pytz
from bson import ObjectId

from shared.ai.AIStageClients import AIStageClients
from shared.ai.models.StageOutputs import ExtractionOutput, RecurrenceOutput
from shared.clients.docstore.DocStoreClientInterface import DocStoreClientInterface
from shared.clients.docstore.DocStoreClientManager import DocStoreClientManager
from shared.clients.docstore.models.UpdateResult import UpdateResult
from shared.errors.ClientErrors import DocStoreError
from shared.helper.DateNormalizer import DateNormalizer
from shared.helper.HelperConfig import HelperConfig
from shared.helper.RecordDecoder import RecordDecoder
from shared.logging.logging_setup import ColorLogger
from shared.models.config import EnvConfig
from shared.models.invoice import LineItem

FIXED_NOW = datetime(2024, 3, 15, 12, 30, tzinfo=pytz.utc)
TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"

_CONFIG_PREFIXES = ("LLM_", "EMBED_", "DOCSTORE_", "BLOB_", "INGEST_", "SEARCH_", "SIMILAR_", "APP_", "TIMEZONE")
_MISSING = object()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith(_CONFIG_PREFIXES):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def helper_config() -> HelperConfig:
    return HelperConfig(logger=ColorLogger(logging.getLogger("tests")))


@pytest.fixture
def date_normalizer(helper_config) -> DateNormalizer:
    return DateNormalizer(helper_config=helper_config, clock=lambda: FIXED_NOW)


@pytest.fixture
def decoder(helper_config, date_normalizer) -> RecordDecoder:
    return RecordDecoder(helper_config=helper_config, date_normalizer=date_normalizer)


##########################################
########## IN-MEMORY DOC STORE ###########
##########################################

def new_object_id() -> str:
    return str(ObjectId())


def _matches(document: dict, filter: dict) -> bool:
    for key, condition in filter.items():
        if key == "$and":
            if not all(_matches(document, sub) for sub in condition):
                return False
            continue
        value = document.get(key, _MISSING)
        if isinstance(condition, dict) and condition and all(op in _OPERATORS for op in condition):
            if not all(_OPERATORS[op](value, arg) for op, arg in condition.items()):
                return False
        elif value is _MISSING or value != condition:
            return False
    return True


def _compare(value: Any, arg: Any, check) -> bool:
    if value is _MISSING or value is None:
        return False
    if type(value) is not type(arg):
        return False
    return check(value, arg)


_OPERATORS = {
    "$ne": lambda value, arg: value is _MISSING or value != arg,
    "$gte": lambda value, arg: _compare(value, arg, lambda a, b: a >= b),
    "$lte": lambda value, arg: _compare(value, arg, lambda a, b: a <= b),
    "$exists": lambda value, arg: (value is not _MISSING) == bool(arg),
    "$in": lambda value, arg: value is not _MISSING and value in arg,
}


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class FakeDocStoreClient(DocStoreClientInterface):
    """Document store kept in a list. Understands the subset of the query language the services use.

    Values are stored the way the driver returns them: ObjectId ids and
    tz-aware datetimes.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.documents: list[dict] = []
        self.ready_calls = 0
        self.fail_with: Exception | None = None
        self.last_pipeline: list[dict] | None = None

    def is_valid_id(self, record_id: str) -> bool:
        return isinstance(record_id, str) and ObjectId.is_valid(record_id)

    def _get_engine_name(self) -> str:
        return "Fake"

    def _get_required_config(self) -> list[EnvConfig]:
        return []

    def encode_id(self, record_id: str) -> Any:
        return ObjectId(record_id)

    def encode_datetime(self, value: datetime) -> Any:
        return value.astimezone(pytz.utc)

    def get_vector_search_stages(self, query_vector, path, candidate_pool_size, result_limit, filter) -> list[dict]:
        return [{"$fakeVectorSearch": {
            "queryVector": query_vector,
            "path": path,
            "numCandidates": candidate_pool_size,
            "limit": result_limit,
            "filter": filter,
        }}]

    ################ TEST HELPERS ##################
    def seed(self, **fields: Any) -> str:
        """Insert a document directly, returning its id."""
        record_id = new_object_id()
        self.documents.append({"_id": ObjectId(record_id), **fields})
        return record_id

    def get(self, record_id: str) -> dict | None:
        for document in self.documents:
            if document["_id"] == ObjectId(record_id):
                return document
        return None

    def _check_failure(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    ################ CONNECTION ##################
    async def boot(self) -> None:
        self._client = self.documents

    async def close(self) -> None:
        self._client = None

    async def do_healthcheck(self) -> dict:
        self._check_failure()
        return {"ok": 1}

    def _get_liveness_errors(self) -> tuple[type[Exception], ...]:
        return (DocStoreError,)

    async def ensure_ready(self) -> None:
        self.ready_calls += 1

    ################ OPERATIONS ##################
    async def do_insert_one(self, document: dict) -> str:
        self._check_failure()
        record_id = new_object_id()
        self.documents.append({**copy.deepcopy(document), "_id": ObjectId(record_id)})
        return record_id

    async def do_find_one(self, filter: dict, projection: dict | None = None) -> dict | None:
        self._check_failure()
        for document in self.documents:
            if _matches(document, filter):
                return copy.deepcopy(document)
        return None

    async def do_find(self, filter: dict, sort: dict | None = None, limit: int | None = None) -> list[dict]:
        self._check_failure()
        found = [document for document in self.documents if _matches(document, filter)]
        for field, direction in reversed(list((sort or {}).items())):
            found.sort(key=lambda document: self._sort_key(document, field), reverse=direction == -1)
        if limit is not None:
            found = found[:limit]
        return copy.deepcopy(found)

    async def do_update_one(self, filter: dict, update: dict) -> UpdateResult:
        self._check_failure()
        for document in self.documents:
            if _matches(document, filter):
                document.update(copy.deepcopy(update.get("$set", {})))
                for field in update.get("$unset", {}):
                    document.pop(field, None)
                return UpdateResult(matched_count=1, modified_count=1)
        return UpdateResult(matched_count=0, modified_count=0)

    async def do_aggregate(self, pipeline: list[dict]) -> list[dict]:
        self._check_failure()
        self.last_pipeline = copy.deepcopy(pipeline)
        results = [copy.deepcopy(document) for document in self.documents]
        for stage in pipeline:
            if "$fakeVectorSearch" in stage:
                search = stage["$fakeVectorSearch"]
                scored = []
                for document in results:
                    vector = document.get(search["path"])
                    if isinstance(vector, list) and vector and _matches(document, search["filter"]):
                        scored.append({**document, self.SCORE_FIELD: _cosine(search["queryVector"], vector)})
                scored.sort(key=lambda document: document[self.SCORE_FIELD], reverse=True)
                results = scored[: search["limit"]]
            elif "$match" in stage:
                results = [document for document in results if _matches(document, stage["$match"])]
            elif "$limit" in stage:
                results = results[: stage["$limit"]]
        return results

    @staticmethod
    def _sort_key(document: dict, field: str):
        value = document.get(field)
        return (1, value) if value is not None else (0, "")


@pytest.fixture
def store(helper_config) -> FakeDocStoreClient:
    return FakeDocStoreClient(helper_config=helper_config)


@pytest.fixture
def store_pool(helper_config, store) -> DocStoreClientManager:
    return DocStoreClientManager(helper_config=helper_config, client=store)


def seed_invoice(store: FakeDocStoreClient, tenant_id: str = TENANT, **overrides: Any) -> str:
    """Seed a well-formed stored invoice. Keyword arguments override (or with None, remove) fields."""
    document = {
        "tenantId": tenant_id,
        "fileName": "invoice.pdf",
        "vendor": "Acme Cloud",
        "date": "2024-02-10",
        "total": 100.0,
        "lineItems": [{"description": "Hosting", "amount": 100.0}],
        "summary": "Acme Cloud hosting invoice.",
        "summaryEmbedding": [1.0, 0.0, 0.0],
        "categories": ["Cloud Services"],
        "isLikelyRecurring": True,
        "recurrenceReasoning": "Monthly hosting plan.",
        "uploadedAt": datetime(2024, 2, 10, 9, 0, tzinfo=pytz.utc),
        "isDeleted": False,
    }
    for key, value in overrides.items():
        if value is None:
            document.pop(key, None)
        else:
            document[key] = value
    return store.seed(**document)


##########################################
############# FAKE AI STAGES #############
##########################################

class FakeStage:
    """Stands in for any AI stage: returns a canned result or raises a canned error."""

    def __init__(self, result: Any = None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list[tuple] = []

    async def run(self, *args: Any) -> Any:
        self.calls.append(args)
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.result)


@pytest.fixture
def stages() -> AIStageClients:
    return AIStageClients(
        extract=FakeStage(ExtractionOutput(
            vendor="Acme Cloud",
            date="June 1, 2023",
            total=100.0,
            line_items=[LineItem(description="Hosting plan", amount=100.0)],
        )),
        summarize=FakeStage("Acme Cloud invoice from 2023-06-01 for the monthly hosting plan, total 100.00."),
        categorize=FakeStage([" Cloud Services ", "", "Software"]),
        recurrence=FakeStage(RecurrenceOutput(is_likely_recurring=True, reasoning="Monthly hosting plan.")),
        embed=FakeStage([0.6, 0.8, 0.0]),
    )
