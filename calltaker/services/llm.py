"""Language-model call via the OpenAI Responses API.

One POST per caller turn: a system message (the assembled prompt) and a user
message.  The reply text is pulled out of the structured response document
by :func:`extract_response_text`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from calltaker.services.errors import ConfigurationError, UpstreamStatusError
from calltaker.services.transport import HttpTransport

logger = logging.getLogger(__name__)


def extract_response_text(document: str | dict[str, Any] | None) -> str | None:
    """Concatenate every ``output_text`` fragment of a Responses API document.

    Walks ``output[*].content[*]`` and joins the ``text`` of blocks whose
    ``type`` is ``output_text``.  Returns ``None`` when the shape does not
    match or no text was found.  Never raises.
    """
    if isinstance(document, str):
        try:
            document = json.loads(document)
        except (ValueError, RecursionError):
            return None

    if not isinstance(document, dict):
        return None
    output = document.get("output")
    if not isinstance(output, list):
        return None

    fragments: list[str] = []
    for item in output:
        content = item.get("content") if isinstance(item, dict) else None
        if not isinstance(content, list):
            continue
        for block in content:
            if (
                isinstance(block, dict)
                and block.get("type") == "output_text"
                and isinstance(block.get("text"), str)
            ):
                fragments.append(block["text"])

    text = "".join(fragments)
    return text if text.strip() else None


@dataclass(frozen=True)
class LLMReply:
    """Extracted text (``None`` if the document had none) and the raw body."""

    text: str | None
    raw: str


class ResponsesClient:
    """Minimal Responses API client over the shared async transport."""

    def __init__(
        self,
        transport: HttpTransport,
        *,
        api_key: str,
        url: str = "https://api.openai.com/v1/responses",
        default_model: str = "gpt-4o-mini",
    ):
        self._transport = transport
        self._api_key = api_key
        self._url = url
        self._default_model = default_model

    @property
    def configured(self) -> bool:
        return bool(self._api_key and self._api_key.strip())

    async def create(
        self, system_prompt: str, user_message: str, *, model: str | None = None,
    ) -> LLMReply:
        """Run one model turn.

        Raises:
            ConfigurationError: no API key is configured.
            UpstreamStatusError: the API answered with a non-2xx status.
            TransportError: the request never completed.
        """
        if not self.configured:
            raise ConfigurationError(
                "OpenAI API key is not configured. Set OPENAI_API_KEY."
            )

        payload = {
            "model": model or self._default_model,
            "input": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
        }
        response = await self._transport.send(
            "POST",
            self._url,
            headers={"Authorization": f"Bearer {self._api_key}"},
            json_body=payload,
            operation="POST /v1/responses",
        )
        if not response.is_success:
            raise UpstreamStatusError(
                f"OpenAI API error: {response.status_code} {response.reason}",
                status_code=response.status_code,
                reason=response.reason,
                body=response.text,
            )

        text = extract_response_text(response.text)
        if text is None:
            logger.warning("Responses API reply had no output_text; returning raw body")
        return LLMReply(text=text, raw=response.text)
