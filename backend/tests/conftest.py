"""Pytest configuration and fixtures."""

import json
import os

import boto3
import pytest
from moto import mock_aws

# Set environment variables for testing
os.environ["ENVIRONMENT"] = "test"
os.environ["SETS_TABLE"] = "rebabel-sets-test"
os.environ["SET_ITEMS_TABLE"] = "rebabel-set-items-test"
os.environ["SRS_TABLE"] = "rebabel-srs-test"
os.environ["REVIEWS_TABLE"] = "rebabel-reviews-test"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["POWERTOOLS_SERVICE_NAME"] = "rebabel-srs-test"
os.environ["POWERTOOLS_TRACE_DISABLED"] = "true"
os.environ.setdefault("AWS_DEFAULT_REGION", "ap-northeast-1")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")


@pytest.fixture
def dynamodb_tables():
    """Create mock DynamoDB tables for sets, set items, SRS records and reviews."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="ap-northeast-1")

        dynamodb.create_table(
            TableName="rebabel-sets-test",
            KeySchema=[{"AttributeName": "set_id", "KeyType": "HASH"}],
            AttributeDefinitions=[
                {"AttributeName": "set_id", "AttributeType": "S"},
                {"AttributeName": "owner_id", "AttributeType": "S"},
            ],
            GlobalSecondaryIndexes=[
                {
                    "IndexName": "owner_id-index",
                    "KeySchema": [{"AttributeName": "owner_id", "KeyType": "HASH"}],
                    "Projection": {"ProjectionType": "ALL"},
                }
            ],
            BillingMode="PAY_PER_REQUEST",
        )

        dynamodb.create_table(
            TableName="rebabel-set-items-test",
            KeySchema=[
                {"AttributeName": "set_id", "KeyType": "HASH"},
                {"AttributeName": "item_id", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "set_id", "AttributeType": "S"},
                {"AttributeName": "item_id", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )

        dynamodb.create_table(
            TableName="rebabel-srs-test",
            KeySchema=[
                {"AttributeName": "owner_id", "KeyType": "HASH"},
                {"AttributeName": "record_key", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "owner_id", "AttributeType": "S"},
                {"AttributeName": "record_key", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )

        dynamodb.create_table(
            TableName="rebabel-reviews-test",
            KeySchema=[
                {"AttributeName": "owner_id", "KeyType": "HASH"},
                {"AttributeName": "reviewed_at", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "owner_id", "AttributeType": "S"},
                {"AttributeName": "reviewed_at", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )

        yield dynamodb


@pytest.fixture
def api_gateway_event():
    """Create a base API Gateway HTTP API event."""

    def _create_event(
        method: str = "GET",
        path: str = "/",
        body: dict = None,
        headers: dict = None,
        path_parameters: dict = None,
        query_string_parameters: dict = None,
        user_id: str = "test-user-id",
    ):
        event = {
            "version": "2.0",
            "routeKey": f"{method} {path}",
            "rawPath": path,
            "rawQueryString": "",
            "headers": headers or {"content-type": "application/json"},
            "requestContext": {
                "accountId": "123456789012",
                "apiId": "api-id",
                "authorizer": {
                    "jwt": {
                        "claims": {
                            "sub": user_id,
                            "iss": "https://auth.example.com/realms/rebabel",
                        },
                        "scopes": ["openid", "profile"],
                    }
                },
                "domainName": "api.example.com",
                "domainPrefix": "api",
                "http": {
                    "method": method,
                    "path": path,
                    "protocol": "HTTP/1.1",
                    "sourceIp": "127.0.0.1",
                    "userAgent": "pytest",
                },
                "requestId": "request-id",
                "routeKey": f"{method} {path}",
                "stage": "$default",
                "time": "01/Jan/2024:00:00:00 +0000",
                "timeEpoch": 1704067200000,
            },
            "pathParameters": path_parameters or {},
            "stageVariables": None,
            "isBase64Encoded": False,
        }
        if body is not None:
            event["body"] = json.dumps(body)
        if query_string_parameters:
            event["queryStringParameters"] = query_string_parameters
            event["rawQueryString"] = "&".join(f"{k}={v}" for k, v in query_string_parameters.items())
        return event

    return _create_event


@pytest.fixture
def lambda_context():
    """Create a mock Lambda context."""

    class MockContext:
        function_name = "rebabel-srs-test"
        memory_limit_in_mb = 256
        invoked_function_arn = "arn:aws:lambda:ap-northeast-1:123456789012:function:rebabel-srs-test"
        aws_request_id = "test-request-id"

    return MockContext()
