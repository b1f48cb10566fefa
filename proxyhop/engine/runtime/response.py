import base64
import logging
import mimetypes
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import unquote

import httpx

from proxyhop.engine.definitions import BinaryData
from proxyhop.engine.errors import InvalidJSONResponseError
from proxyhop.engine.runtime.models import RequestSpec, ResponseFormat

logger = logging.getLogger(__name__)

# (content, file name, mime type) -> descriptor
BinaryPreparer = Callable[[bytes, Optional[str], Optional[str]], BinaryData]

FILENAME_PATTERN = re.compile(r"filename\*?=(?:UTF-8'')?\"?([^\";]+)\"?", re.I)


def inline_binary(content: bytes, file_name: Optional[str], mime_type: Optional[str]) -> BinaryData:
    """Default preparer: keep the payload inline as base64."""
    extension = None
    if file_name and "." in file_name:
        extension = file_name.rsplit(".", 1)[1]
    elif mime_type:
        guessed = mimetypes.guess_extension(mime_type)
        extension = guessed.lstrip(".") if guessed else None
    return BinaryData(
        data=base64.b64encode(content).decode("ascii"),
        mime_type=mime_type,
        file_name=file_name,
        file_extension=extension,
        file_size=len(content),
    )


def is_json_content_type(content_type: str) -> bool:
    media = content_type.split(";", 1)[0].strip().lower()
    return media == "application/json" or media.endswith("+json")


@dataclass
class InterpretedResponse:
    json: Dict[str, Any]
    binary: Dict[str, BinaryData] = field(default_factory=dict)
    # Decoded body as seen by pagination expressions
    body: Any = None


class ResponseInterpreter:
    def __init__(self, prepare_binary: Optional[BinaryPreparer] = None):
        self.prepare_binary = prepare_binary or inline_binary

    def decode(self, response: httpx.Response, response_format: ResponseFormat) -> Any:
        """Decode the body according to the requested format."""
        content_type = response.headers.get("content-type", "")

        if response_format == ResponseFormat.FILE:
            return self.prepare_binary(
                response.content,
                self._file_name(response),
                content_type.split(";", 1)[0].strip() or None,
            )

        if response_format == ResponseFormat.JSON:
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError as e:
                raise InvalidJSONResponseError(str(e)) from e

        if response_format == ResponseFormat.AUTODETECT and is_json_content_type(content_type):
            try:
                return response.json()
            except ValueError:
                logger.debug("Response declared JSON but did not parse, returning text")
                return response.text

        return response.text

    def interpret(self, response: httpx.Response, spec: RequestSpec) -> InterpretedResponse:
        decoded = self.decode(response, spec.response_format)
        field_name = spec.output_field_name

        binary: Dict[str, BinaryData] = {}
        if isinstance(decoded, BinaryData):
            binary[field_name] = decoded
            data: Any = None
        elif spec.response_format == ResponseFormat.TEXT:
            data = {field_name: decoded}
        else:
            data = decoded

        if spec.full_response:
            payload: Dict[str, Any] = {
                "status": response.status_code,
                "statusText": response.reason_phrase,
                "headers": dict(response.headers),
            }
            if not binary:
                payload["data"] = data
        elif binary:
            payload = {}
        elif isinstance(data, dict):
            payload = data
        else:
            payload = {field_name: data}

        return InterpretedResponse(json=payload, binary=binary, body=decoded)

    @staticmethod
    def redirect_history(response: httpx.Response) -> List[Dict[str, Any]]:
        return [
            {
                "url": str(hop.url),
                "statusCode": hop.status_code,
                "location": hop.headers.get("location"),
            }
            for hop in response.history
        ]

    def pagination_context(self, response: httpx.Response, body: Any) -> Dict[str, Any]:
        """The `$response` value visible to pagination expressions."""
        context = {
            "statusCode": response.status_code,
            "statusText": response.reason_phrase,
            "headers": dict(response.headers),
            "body": body.model_dump(by_alias=True) if isinstance(body, BinaryData) else body,
        }
        if response.history:
            context["redirectHistory"] = self.redirect_history(response)
        return context

    @staticmethod
    def _file_name(response: httpx.Response) -> Optional[str]:
        disposition = response.headers.get("content-disposition", "")
        match = FILENAME_PATTERN.search(disposition)
        if match:
            return unquote(match.group(1).strip())
        segment = response.url.path.rstrip("/").rsplit("/", 1)[-1]
        return unquote(segment) or None
