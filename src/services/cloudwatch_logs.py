"""
CloudWatch Logs sink for the batched log shipper.

Each log entry becomes one JSON log event in a single log stream. The sink
tracks the stream's upload sequence token itself and refreshes it once when
CloudWatch rejects a put with InvalidSequenceTokenException.
"""
from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from src.aws_clients import logs_client
from src.services.log_shipper import LogEntry

logger = logging.getLogger(__name__)

_RESERVED_FIELDS = ("message", "level", "timestamp")


class LogDeliveryError(Exception):
    """Raised when a log event could not be delivered to CloudWatch."""


class SinkConfigurationError(Exception):
    """Raised when the CloudWatch Logs client cannot be created."""


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "Unknown")


class CloudWatchLogSink:
    """Sends log entries to a CloudWatch Logs stream, one event per call."""

    def __init__(self, client: Any, log_group: str, log_stream: str) -> None:
        self._client = client
        self.log_group = log_group
        self.log_stream = log_stream
        self._sequence_token: Optional[str] = None

    @property
    def sequence_token(self) -> Optional[str]:
        return self._sequence_token

    def ensure_log_stream(self) -> None:
        """Create the log group and stream if they do not exist yet."""
        for create, kwargs in (
            (self._client.create_log_group, {"logGroupName": self.log_group}),
            (
                self._client.create_log_stream,
                {"logGroupName": self.log_group, "logStreamName": self.log_stream},
            ),
        ):
            try:
                create(**kwargs)
            except ClientError as e:
                if _error_code(e) != "ResourceAlreadyExistsException":
                    raise
        logger.info(f"CloudWatch log stream ready: {self.log_group}/{self.log_stream}")

    def _render(self, entry: LogEntry) -> str:
        event: Dict[str, Any] = {
            "message": entry.message,
            "level": entry.level,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
        for key, value in entry.metadata.items():
            if key not in _RESERVED_FIELDS:
                event[key] = value
        return json.dumps(event)

    def _put(self, request: Dict[str, Any]) -> Dict[str, Any]:
        if self._sequence_token is not None:
            request["sequenceToken"] = self._sequence_token
        else:
            request.pop("sequenceToken", None)
        return self._client.put_log_events(**request)

    def _refresh_sequence_token(self) -> None:
        try:
            response = self._client.describe_log_streams(
                logGroupName=self.log_group,
                logStreamNamePrefix=self.log_stream,
            )
        except (ClientError, BotoCoreError) as e:
            raise LogDeliveryError(f"Failed to describe log streams: {e}") from e

        for stream in response.get("logStreams", []):
            if stream.get("logStreamName") == self.log_stream:
                self._sequence_token = stream.get("uploadSequenceToken")
                break

    def send(self, entry: LogEntry) -> None:
        request = {
            "logGroupName": self.log_group,
            "logStreamName": self.log_stream,
            "logEvents": [
                {"timestamp": int(time.time() * 1000), "message": self._render(entry)}
            ],
        }

        try:
            response = self._put(request)
        except ClientError as e:
            if _error_code(e) != "InvalidSequenceTokenException":
                raise LogDeliveryError(f"Failed to put log events: {e}") from e
            self._refresh_sequence_token()
            try:
                response = self._put(request)
            except (ClientError, BotoCoreError) as retry_error:
                raise LogDeliveryError(
                    f"Failed to put log events after token refresh: {retry_error}"
                ) from retry_error
        except BotoCoreError as e:
            raise LogDeliveryError(f"Failed to put log events: {e}") from e

        next_token = (response or {}).get("nextSequenceToken")
        if next_token:
            self._sequence_token = next_token


def create_cloudwatch_sink(aws_config, create_stream: bool = False) -> CloudWatchLogSink:
    """Build the CloudWatch Logs sink from the AWS configuration section.

    Raises:
        SinkConfigurationError: If the client cannot be created or the
            stream cannot be prepared. The shipper must not be started.
    """
    try:
        client = logs_client(region=aws_config.region, endpoint=aws_config.endpoint)
    except (BotoCoreError, ValueError) as e:
        raise SinkConfigurationError(f"Failed to create CloudWatch Logs client: {e}") from e

    sink = CloudWatchLogSink(client, aws_config.log_group, aws_config.log_stream)
    if create_stream:
        try:
            sink.ensure_log_stream()
        except (ClientError, BotoCoreError) as e:
            raise SinkConfigurationError(f"Failed to prepare CloudWatch log stream: {e}") from e
    return sink
