from abc import ABC, abstractmethod
import asyncio
import time
from typing import Any

from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class ClientInterface(ABC):
    """Base class of every remote collaborator (LLM, embeddings, document store, blob storage).

    Engine settings are read from env keys shaped like <TYPE>_<ENGINE>_<KEY>
    (e.g. DOCSTORE_MONGODB_URI). Settings shared by all engines of a type
    use <TYPE>_<KEY> (e.g. EMBED_TIMEOUT).

    Subclasses own the connection object in self._client and implement boot(),
    close() and do_healthcheck() for their transport.
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        type_prefix = self.get_client_type().upper()
        self.timeout = helper_config.get_number_val(f"{type_prefix}_TIMEOUT", default=30.0)
        self.liveness_interval = helper_config.get_number_val(f"{type_prefix}_LIVENESS_INTERVAL", default=30)

        self._client: Any = None
        # monotonic timestamp of the last successful liveness check
        self._last_alive_at: float | None = None
        # one check/reconnect at a time; waiters reuse its outcome
        self._ready_lock = asyncio.Lock()
        self.validate_full_configuration()

    ##########################################
    ############## IDENTITY ##################
    ##########################################

    def get_client_type(self) -> str:
        """Lowercase client type, e.g. "docstore"."""
        return self._get_client_type().lower()

    @abstractmethod
    def _get_client_type(self) -> str:
        pass

    def get_engine_name(self) -> str:
        """Lowercase engine name, e.g. "mongodb"."""
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        pass

    def describe(self) -> str:
        return f"{self.get_client_type().upper()} client '{self.get_engine_name()}'"

    ##########################################
    ############### CONFIG ###################
    ##########################################

    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        """Engine keys (without the <TYPE>_<ENGINE>_ prefix) checked at construction."""
        pass

    def validate_full_configuration(self) -> None:
        """Fail fast on a missing or malformed engine setting.

        Raises:
            ValueError: Naming the first offending env key.
        """
        for config in self._get_required_config():
            self.get_config_val(raw_key=config.env_key, default=config.default, val_type=config.val_type)

    def _get_config_key_name(self, raw_key: str) -> str:
        return f"{self.get_client_type().upper()}_{self.get_engine_name().upper()}_{raw_key.upper()}"

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """Read an engine-scoped setting, e.g. raw_key "BUCKET" on the gcs blob client reads BLOB_GCS_BUCKET."""
        readers = {
            "string": self._helper_config.get_string_val,
            "number": self._helper_config.get_number_val,
            "bool": self._helper_config.get_bool_val,
            "list": self._helper_config.get_list_val,
        }
        if val_type not in readers:
            raise ValueError(f"Unsupported config value type '{val_type}' for '{raw_key}' on {self.describe()}.")
        return readers[val_type](self._get_config_key_name(raw_key), default=default)

    ##########################################
    ############## LIFECYCLE #################
    ##########################################

    @abstractmethod
    async def boot(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def do_healthcheck(self) -> Any:
        """Cheapest round trip that proves the backend is reachable."""
        pass

    @abstractmethod
    def _get_liveness_errors(self) -> tuple[type[Exception], ...]:
        """Errors of a failed liveness check that justify throwing the connection away."""
        pass

    def is_booted(self) -> bool:
        return self._client is not None

    def _is_fresh(self) -> bool:
        return (
            self._client is not None
            and self._last_alive_at is not None
            and time.monotonic() - self._last_alive_at < self.liveness_interval
        )

    async def ensure_ready(self) -> None:
        """Boot on first use and re-check the backend once the liveness interval has passed.

        A failed check throws the connection away, builds a fresh one and checks
        again. A second failure propagates to the caller. Concurrent callers wait
        for the check in progress instead of starting their own.

        Raises:
            Exception: One of _get_liveness_errors() if the backend stays unreachable.
        """
        if self._is_fresh():
            return
        async with self._ready_lock:
            if self._is_fresh():
                return
            if self._client is None:
                await self.boot()
            try:
                await self.do_healthcheck()
            except self._get_liveness_errors() as e:
                self.logging.warning("%s failed liveness check (%s). Reconnecting...", self.describe(), e)
                await self.close()
                await self.boot()
                await self.do_healthcheck()
            self._last_alive_at = time.monotonic()
