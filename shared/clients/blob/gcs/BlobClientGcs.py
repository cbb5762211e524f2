from shared.clients.blob.BlobClientInterface import BlobClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class BlobClientGcs(BlobClientInterface):
    """Google Cloud Storage via the JSON API (simple media upload)."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default="https://storage.googleapis.com", val_type="string")
        self._access_token = self.get_config_val("ACCESS_TOKEN", default=None, val_type="string")
        self._bucket = self.get_config_val("BUCKET", default=None, val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Gcs"

    def build_uri(self, path: str) -> str:
        return f"gs://{self._bucket}/{path}"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="https://storage.googleapis.com"),
            EnvConfig(env_key="ACCESS_TOKEN", val_type="string", default=None),
            EnvConfig(env_key="BUCKET", val_type="string", default=None),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        return {"Authorization": f"Bearer {self._access_token}"}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return f"/storage/v1/b/{self._bucket}"

    def _get_endpoint_upload(self) -> str:
        return f"/upload/storage/v1/b/{self._bucket}/o"

    ################ PAYLOAD BUILDER ##################
    def get_upload_params(self, path: str) -> dict:
        return {"uploadType": "media", "name": path}
