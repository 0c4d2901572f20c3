"""
Unit tests for the CloudWatch Logs sink
"""
import json
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from src.config import AWSConfig
from src.services.cloudwatch_logs import (
    CloudWatchLogSink,
    LogDeliveryError,
    SinkConfigurationError,
    create_cloudwatch_sink,
)
from src.services.log_shipper import LogEntry


def _client_error(code, operation="PutLogEvents"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def client():
    mock = MagicMock()
    mock.put_log_events.return_value = {"nextSequenceToken": "token-1"}
    return mock


@pytest.fixture
def sink(client):
    return CloudWatchLogSink(client, "/grades-service", "application")


class TestSend:
    """Test CloudWatchLogSink.send"""

    def test_send_renders_json_event(self, sink, client):
        """The event carries message, level, timestamp and metadata at top level"""
        entry = LogEntry(message="created", level="INFO", metadata={"grade_id": "7"})
        sink.send(entry)

        kwargs = client.put_log_events.call_args.kwargs
        assert kwargs["logGroupName"] == "/grades-service"
        assert kwargs["logStreamName"] == "application"
        assert "sequenceToken" not in kwargs
        event = kwargs["logEvents"][0]
        assert isinstance(event["timestamp"], int)
        body = json.loads(event["message"])
        assert body["message"] == "created"
        assert body["level"] == "INFO"
        assert body["grade_id"] == "7"
        assert body["timestamp"].endswith("Z")

    def test_metadata_cannot_override_reserved_fields(self, sink, client):
        sink.send(LogEntry(message="real", metadata={"message": "fake", "level": "x"}))
        body = json.loads(client.put_log_events.call_args.kwargs["logEvents"][0]["message"])
        assert body["message"] == "real"
        assert body["level"] == "INFO"

    def test_sequence_token_is_kept_between_calls(self, sink, client):
        sink.send(LogEntry(message="one"))
        client.put_log_events.return_value = {"nextSequenceToken": "token-2"}
        sink.send(LogEntry(message="two"))

        second = client.put_log_events.call_args_list[1].kwargs
        assert second["sequenceToken"] == "token-1"
        assert sink.sequence_token == "token-2"

    def test_invalid_sequence_token_refreshes_and_retries_once(self, sink, client):
        """The stream's current token is looked up and the put retried"""
        client.put_log_events.side_effect = [
            _client_error("InvalidSequenceTokenException"),
            {"nextSequenceToken": "token-after"},
        ]
        client.describe_log_streams.return_value = {
            "logStreams": [
                {"logStreamName": "application-old", "uploadSequenceToken": "wrong"},
                {"logStreamName": "application", "uploadSequenceToken": "fresh"},
            ]
        }

        sink.send(LogEntry(message="retry me"))

        client.describe_log_streams.assert_called_once_with(
            logGroupName="/grades-service", logStreamNamePrefix="application"
        )
        assert client.put_log_events.call_count == 2
        assert client.put_log_events.call_args_list[1].kwargs["sequenceToken"] == "fresh"
        assert sink.sequence_token == "token-after"

    def test_retry_failure_raises_delivery_error(self, sink, client):
        client.put_log_events.side_effect = [
            _client_error("InvalidSequenceTokenException"),
            _client_error("InvalidSequenceTokenException"),
        ]
        client.describe_log_streams.return_value = {
            "logStreams": [{"logStreamName": "application", "uploadSequenceToken": "fresh"}]
        }

        with pytest.raises(LogDeliveryError, match="after token refresh"):
            sink.send(LogEntry(message="x"))
        assert client.put_log_events.call_count == 2

    def test_describe_failure_raises_delivery_error(self, sink, client):
        client.put_log_events.side_effect = _client_error("InvalidSequenceTokenException")
        client.describe_log_streams.side_effect = _client_error("AccessDeniedException", "DescribeLogStreams")

        with pytest.raises(LogDeliveryError, match="describe log streams"):
            sink.send(LogEntry(message="x"))

    def test_other_client_error_is_not_retried(self, sink, client):
        client.put_log_events.side_effect = _client_error("ResourceNotFoundException")

        with pytest.raises(LogDeliveryError):
            sink.send(LogEntry(message="x"))
        assert client.put_log_events.call_count == 1
        client.describe_log_streams.assert_not_called()

    def test_connection_error_raises_delivery_error(self, sink, client):
        client.put_log_events.side_effect = EndpointConnectionError(endpoint_url="http://localhost:4566")

        with pytest.raises(LogDeliveryError):
            sink.send(LogEntry(message="x"))


class TestEnsureLogStream:
    """Test log group and stream creation"""

    def test_creates_group_and_stream(self, sink, client):
        sink.ensure_log_stream()
        client.create_log_group.assert_called_once_with(logGroupName="/grades-service")
        client.create_log_stream.assert_called_once_with(
            logGroupName="/grades-service", logStreamName="application"
        )

    def test_existing_resources_are_fine(self, sink, client):
        client.create_log_group.side_effect = _client_error("ResourceAlreadyExistsException", "CreateLogGroup")
        client.create_log_stream.side_effect = _client_error("ResourceAlreadyExistsException", "CreateLogStream")
        sink.ensure_log_stream()

    def test_other_errors_propagate(self, sink, client):
        client.create_log_group.side_effect = _client_error("AccessDeniedException", "CreateLogGroup")
        with pytest.raises(ClientError):
            sink.ensure_log_stream()


class TestCreateCloudWatchSink:
    """Test the sink factory"""

    @patch("src.services.cloudwatch_logs.logs_client")
    def test_builds_sink_from_config(self, mock_logs_client):
        config = AWSConfig(endpoint="http://localhost:4566", region="eu-west-1",
                           log_group="/custom", log_stream="api")

        sink = create_cloudwatch_sink(config)

        mock_logs_client.assert_called_once_with(region="eu-west-1", endpoint="http://localhost:4566")
        assert sink.log_group == "/custom"
        assert sink.log_stream == "api"
        mock_logs_client.return_value.create_log_group.assert_not_called()

    @patch("src.services.cloudwatch_logs.logs_client")
    def test_client_failure_is_fatal(self, mock_logs_client):
        mock_logs_client.side_effect = ValueError("Invalid endpoint: not a url")
        with pytest.raises(SinkConfigurationError):
            create_cloudwatch_sink(AWSConfig(endpoint="not a url"))

    @patch("src.services.cloudwatch_logs.logs_client")
    def test_stream_preparation_failure_is_fatal(self, mock_logs_client):
        mock_logs_client.return_value.create_log_group.side_effect = _client_error(
            "AccessDeniedException", "CreateLogGroup"
        )
        with pytest.raises(SinkConfigurationError):
            create_cloudwatch_sink(AWSConfig(), create_stream=True)
