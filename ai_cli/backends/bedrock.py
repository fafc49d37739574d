"""
Remote generation through the AWS Bedrock Converse streaming API.

botocore failures are translated into the BackendError family so the
orchestrator never sees SDK exception types.
"""

import logging
import time
from typing import Callable, Iterator, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ProfileNotFound,
    ReadTimeoutError,
)

from ..config import AwsSettings
from ..errors import AuthError, BackendError, GenerationTimeout, NetworkError
from ..schemas import Backend, BackendResponse, GenerationRequest
from ..tracing import Tracer

logger = logging.getLogger(__name__)

AUTH_ERROR_CODES = {
    "AccessDeniedException",
    "ExpiredTokenException",
    "InvalidSignatureException",
    "UnrecognizedClientException",
    "IncompleteSignature",
    "MissingAuthenticationTokenException",
}

# Exception events that can arrive inside the response stream
STREAM_ERROR_KEYS = (
    "internalServerException",
    "modelStreamErrorException",
    "validationException",
    "throttlingException",
    "serviceUnavailableException",
)


def map_client_error(error: ClientError) -> BackendError:
    """Translate a botocore ClientError into the matching BackendError."""
    details = error.response.get("Error", {})
    code = details.get("Code", "")
    message = details.get("Message") or str(error)
    if code in AUTH_ERROR_CODES:
        return AuthError(f"AWS rejected the credentials ({code}): {message}")
    if code in ("ModelTimeoutException", "RequestTimeout"):
        return GenerationTimeout(f"Bedrock timed out ({code}): {message}")
    return BackendError(f"Bedrock request failed ({code or 'unknown'}): {message}")


class BedrockBackend:
    """Sends one Converse request to a Bedrock-hosted model."""

    kind = Backend.BEDROCK

    def __init__(
        self,
        settings: AwsSettings,
        tracer: Optional[Tracer] = None,
        session_factory: Optional[Callable] = None,
    ):
        self.settings = settings
        self.tracer = tracer or Tracer()
        self._session_factory = session_factory or boto3.Session

    def _create_client(self):
        """
        Create a bedrock-runtime client.

        Raises:
            AuthError: If the profile is unknown or no credentials resolve
        """
        logger.info(f"Using region: {self.settings.region}")
        try:
            session = self._session_factory(
                profile_name=self.settings.profile, region_name=self.settings.region
            )
        except ProfileNotFound as e:
            raise AuthError(f"AWS profile not found: {self.settings.profile}") from e

        if session.get_credentials() is None:
            raise AuthError(
                "No AWS credentials found; configure a profile or set AWS_ACCESS_KEY_ID"
            )

        logger.info("Creating bedrock client")
        return session.client(
            "bedrock-runtime",
            config=BotoConfig(
                connect_timeout=self.settings.connect_timeout,
                read_timeout=self.settings.read_timeout,
                retries={"max_attempts": 3, "mode": "standard"},
            ),
        )

    def build_converse_kwargs(self, request: GenerationRequest) -> dict:
        """Arguments for client.converse_stream()."""
        params = request.model_params
        kwargs = {
            "modelId": self.settings.model_id,
            "messages": [{"role": "user", "content": [{"text": request.prompt}]}],
            "inferenceConfig": {
                "maxTokens": params.max_tokens,
                "temperature": params.temperature,
                "topP": params.top_p,
            },
        }
        if request.system_instructions:
            kwargs["system"] = [{"text": request.system_instructions}]
        return kwargs

    @staticmethod
    def event_text(event: dict) -> str:
        """
        Text carried by one stream event.

        Raises:
            BackendError: If the event is an in-stream exception
        """
        if "contentBlockDelta" in event:
            return event["contentBlockDelta"].get("delta", {}).get("text", "")

        for key in STREAM_ERROR_KEYS:
            if key in event:
                message = event[key].get("message", "Unable to read stream error message")
                raise BackendError(f"Bedrock stream error ({key}): {message}")

        logger.debug(f"Stream event: {event}")
        return ""

    def stream(self, request: GenerationRequest) -> Iterator[str]:
        """
        Yield response text as it streams back.

        Raises:
            AuthError: Missing or rejected credentials
            NetworkError: Endpoint unreachable
            GenerationTimeout: Read timeout or overall deadline exceeded
            BackendError: Any other Bedrock failure
        """
        client = self._create_client()
        deadline = time.monotonic() + self.settings.timeout_seconds
        logger.info(f"Prompt input is: {request.prompt}")

        try:
            with self.tracer.span("bedrock.converse_stream", model=self.settings.model_id):
                response = client.converse_stream(**self.build_converse_kwargs(request))
                logger.info("Response received, starting response stream")
                event_stream = response["stream"]
                try:
                    for event in event_stream:
                        text = self.event_text(event)
                        if text:
                            yield text
                        if time.monotonic() > deadline:
                            raise GenerationTimeout(
                                f"Bedrock response exceeded {self.settings.timeout_seconds} seconds"
                            )
                finally:
                    event_stream.close()
        except (NoCredentialsError, PartialCredentialsError) as e:
            raise AuthError(f"AWS credentials are incomplete: {e}") from e
        except ClientError as e:
            raise map_client_error(e) from e
        except (EndpointConnectionError, ConnectTimeoutError) as e:
            raise NetworkError(f"Could not reach Bedrock: {e}") from e
        except ReadTimeoutError as e:
            raise GenerationTimeout(f"Bedrock read timed out: {e}") from e
        except BotoCoreError as e:
            raise BackendError(f"Bedrock request failed: {e}") from e
        finally:
            client.close()

    def generate(self, request: GenerationRequest) -> BackendResponse:
        """Collect the whole streamed response."""
        start = time.perf_counter()
        text = "".join(self.stream(request))
        elapsed = time.perf_counter() - start
        logger.info(f"Response time: {elapsed:.2f}s")
        return BackendResponse(raw_text=text, backend_used=self.kind, elapsed_seconds=elapsed)
