from fastapi.encoders import jsonable_encoder
from typing import Any, Optional, Dict


def success(
    data: Optional[Any] = None,
    message: str = "Success",
    meta: Optional[Dict] = None,
):
    response = {
        "success": True,
        "message": message,
        "data": data,
        "errors": None,
    }

    if meta is not None:
        response["meta"] = meta

    return jsonable_encoder(response)


def dump(schema, obj) -> Any:
    """Render an ORM object through a response schema.

    JSON mode keeps money as exact decimal strings ("42.39") instead of the
    floats ``jsonable_encoder`` would produce.
    """
    if isinstance(obj, list):
        return [schema.model_validate(item).model_dump(mode="json") for item in obj]
    return schema.model_validate(obj).model_dump(mode="json")
