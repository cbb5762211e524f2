from fastapi import Header, HTTPException, Request

from shared.helper.HelperValidation import validate_tenant_id


async def verify_api_key(request: Request, x_api_key: str = Header(...)) -> None:
    """Verify the X-Api-Key header against the configured API key.

    Args:
        request (Request): The FastAPI request object (provides app.state).
        x_api_key (str): The value of the X-Api-Key header.

    Raises:
        HTTPException: 401 if the key is missing or does not match.
    """
    helper_config = request.app.state.helper_config
    expected_key = helper_config.get_string_val("APP_API_KEY")
    if x_api_key != expected_key:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")


async def get_tenant_id(x_tenant_id: str = Header(...)) -> str:
    """Return the tenant the request acts for, taken from the X-Tenant-Id header.

    Raises:
        InvalidInputError: If the header value is not a well-formed tenant id.
    """
    return validate_tenant_id(x_tenant_id.strip())
