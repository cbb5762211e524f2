from abc import abstractmethod
from datetime import datetime
from typing import Any

from shared.clients.ClientInterface import ClientInterface
from shared.clients.docstore.models.UpdateResult import UpdateResult
from shared.helper.HelperConfig import HelperConfig


class DocStoreClientInterface(ClientInterface):
    """A document store with filtered queries, updates and an approximate nearest-neighbor stage.

    Filters, sorts, update documents and aggregation pipelines use MongoDB query
    language. Engine-specific values (ids, timestamps) are produced by encode_id()
    and encode_datetime() so callers never build them by hand.

    Every operation raises DocStoreError when the engine fails.
    """

    # field the vector search stages write the similarity score into
    SCORE_FIELD = "_vectorScore"

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

    def _get_client_type(self) -> str:
        return "docstore"

    ##########################################
    ############ VALUE ENCODING ##############
    ##########################################

    @abstractmethod
    def is_valid_id(self, record_id: str) -> bool:
        """Returns True if record_id is a well-formed identifier for this engine."""
        pass

    @abstractmethod
    def encode_id(self, record_id: str) -> Any:
        """Returns the store representation of a record id, usable in filters."""
        pass

    @abstractmethod
    def encode_datetime(self, value: datetime) -> Any:
        """Returns the store representation of a timestamp."""
        pass

    @abstractmethod
    def get_vector_search_stages(self, query_vector: list[float], path: str, candidate_pool_size: int, result_limit: int, filter: dict) -> list[dict]:
        """Build the pipeline stages for an approximate nearest-neighbor search.

        The returned stages must order results by similarity and write the score
        into SCORE_FIELD.

        Args:
            query_vector (list[float]): The query embedding.
            path (str): The document field holding the indexed vectors.
            candidate_pool_size (int): How many candidates the index considers before ranking.
            result_limit (int): How many results the stage returns.
            filter (dict): Pre-filter applied by the index.

        Returns:
            list[dict]: Aggregation pipeline stages.
        """
        pass

    ##########################################
    ############## OPERATIONS ################
    ##########################################

    @abstractmethod
    async def do_insert_one(self, document: dict) -> str:
        """Insert a single document and return the id assigned by the store."""
        pass

    @abstractmethod
    async def do_find_one(self, filter: dict, projection: dict | None = None) -> dict | None:
        pass

    @abstractmethod
    async def do_find(self, filter: dict, sort: dict | None = None, limit: int | None = None) -> list[dict]:
        """Return all documents matching the filter.

        Args:
            filter (dict): Query filter.
            sort (dict | None): Field → 1 (ascending) / -1 (descending), applied in key order.
            limit (int | None): Maximum number of documents.
        """
        pass

    @abstractmethod
    async def do_update_one(self, filter: dict, update: dict) -> UpdateResult:
        """Apply an update document ($set / $unset) to the first document matching the filter."""
        pass

    @abstractmethod
    async def do_aggregate(self, pipeline: list[dict]) -> list[dict]:
        pass
