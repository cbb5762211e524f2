from shared.clients.ClientInterface import ClientInterface
from shared.helper.HelperConfig import HelperConfig


def resolve_engine(helper_config: HelperConfig, client_type: str, required: bool = True) -> str | None:
    """Read <TYPE>_ENGINE and normalise it to the module name, e.g. "MongoDB " -> "mongodb".

    Raises:
        ValueError: If the engine is required but not configured.
    """
    env_key = f"{client_type.upper()}_ENGINE"
    engine = helper_config.get_string_val(env_key, default="").strip().lower()
    if not engine and required:
        raise ValueError(f"No {client_type} engine configured ({env_key}).")
    return engine or None


def load_engine_client(helper_config: HelperConfig, client_type: str, class_prefix: str, engine: str) -> ClientInterface:
    """Import shared.clients.<type>.<engine>.<Prefix><Engine> and instantiate it.

    e.g. ("docstore", "DocStoreClient", "mongodb") -> DocStoreClientMongodb

    Raises:
        ValueError: If no client exists for the engine, or its configuration is incomplete.
    """
    class_name = f"{class_prefix}{engine.capitalize()}"
    try:
        module = __import__(f"shared.clients.{client_type}.{engine}.{class_name}", fromlist=[class_name])
        client_class = getattr(module, class_name)
    except (ImportError, AttributeError) as e:
        raise ValueError(f"Unsupported {client_type} engine '{engine}': {e}")
    client = client_class(helper_config=helper_config)
    helper_config.get_logger().debug("Instantiated %s.", client.describe())
    return client
