"""Remote Processing Invoker.

Hands a verified raw upload off for server-side transcoding and
persistence. The call is a single request/response; every way it can go
wrong (network error, HTTP error, ``success`` flag missing or false) is
surfaced as TransportError so the scheduler retries it uniformly.
"""

from upload_pipeline.clients.functions import FunctionInvoker
from upload_pipeline.config import DEFAULT_PROCESSING_FUNCTION
from upload_pipeline.exceptions import TransportError, UploadPipelineError
from upload_pipeline.schemas.task import UploadMetadata
from upload_pipeline.utils.cancellation import CancellationToken
from upload_pipeline.utils.logging import get_logger

log = get_logger(__name__)


class RemoteProcessingInvoker:
    """Invokes the remote processing function for an uploaded raw video."""

    def __init__(
        self,
        functions: FunctionInvoker,
        function_name: str = DEFAULT_PROCESSING_FUNCTION,
    ) -> None:
        self.functions = functions
        self.function_name = function_name

    async def invoke(
        self,
        remote_file_name: str,
        metadata: UploadMetadata,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        """Trigger processing of ``remote_file_name`` with ``metadata``.

        Args:
            remote_file_name: File name returned by AssetUploader.upload_video.
            metadata: Payload forwarded verbatim (plus thumbnail_url when set).
            cancel_token: Abort handle for the owning task.

        Raises:
            TransportError: If the call fails or the function reports failure.
            UploadCancelledError: If the task is cancelled while waiting.
        """
        token = cancel_token or CancellationToken()
        body = {"fileName": remote_file_name, "metadata": metadata.to_payload()}

        try:
            data = await token.run(self.functions.invoke(self.function_name, body))
        except UploadPipelineError:
            raise
        except Exception as e:
            raise TransportError(f"Edge function error: {e}") from e

        if not data.get("success"):
            message = data.get("error") or "Edge function processing failed"
            log.warning(
                "processing_reported_failure",
                function=self.function_name,
                file_name=remote_file_name,
                error=str(message),
            )
            raise TransportError(str(message))

        log.info(
            "processing_completed",
            function=self.function_name,
            file_name=remote_file_name,
            metadata_id=metadata.id,
        )
