"""Tests for the boto3-backed provider."""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError

from driftscan.providers.aws import AWSProvider
from driftscan.scanner.diff import DiffEngine
from driftscan.state.models import Environment, ResourceDeclaration
from driftscan.utils.errors import PermissionDeniedError, UnreachableError, UnsupportedResourceError


def client_error(code, operation="DescribeVpcs"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def clients():
    return {}


@pytest.fixture
def provider(clients):
    session = MagicMock()
    session.client.side_effect = lambda service, config=None: clients.setdefault(service, MagicMock())
    return AWSProvider(session=session)


def vpc_declaration(vpc_id="vpc-123"):
    return ResourceDeclaration(
        type="aws_vpc", name="main", attributes={"id": vpc_id, "cidr_block": "10.0.0.0/16"}
    )


def test_fetch_vpc(provider, clients):
    provider.get_client("ec2").describe_vpcs.return_value = {"Vpcs": [{
        "VpcId": "vpc-123",
        "CidrBlock": "10.1.0.0/16",
        "InstanceTenancy": "default",
        "Tags": [{"Key": "Name", "Value": "main"}],
    }]}

    observed = provider.fetch(vpc_declaration())

    clients["ec2"].describe_vpcs.assert_called_once_with(VpcIds=["vpc-123"])
    assert observed.id == "aws_vpc.main"
    assert observed.partial is True
    assert observed.attributes == {
        "id": "vpc-123",
        "cidr_block": "10.1.0.0/16",
        "instance_tenancy": "default",
        "tags": {"Name": "main"},
    }


def test_missing_vpc_returns_none(provider):
    provider.get_client("ec2").describe_vpcs.side_effect = client_error("InvalidVpcID.NotFound")

    assert provider.fetch(vpc_declaration()) is None


def test_untagged_vpc_matches_null_terraform_tags(provider):
    provider.get_client("ec2").describe_vpcs.return_value = {"Vpcs": [{
        "VpcId": "vpc-123",
        "CidrBlock": "10.0.0.0/16",
        "InstanceTenancy": "default",
    }]}
    declaration = ResourceDeclaration(
        type="aws_vpc",
        name="main",
        attributes={"id": "vpc-123", "cidr_block": "10.0.0.0/16", "tags": None},
    )
    environment = Environment(name="prod", declarations=[declaration])

    observed = provider.fetch(declaration)

    assert observed.attributes["tags"] is None
    assert DiffEngine().compute(environment, {declaration.id: observed}) == []


def test_declaration_without_physical_id_is_absent(provider, clients):
    declaration = ResourceDeclaration(type="aws_vpc", name="new", attributes={"cidr_block": "x"})

    assert provider.fetch(declaration) is None
    assert "ec2" not in clients


def test_access_denied_is_permission_denied(provider):
    provider.get_client("ec2").describe_vpcs.side_effect = client_error("UnauthorizedOperation")

    with pytest.raises(PermissionDeniedError) as exc_info:
        provider.fetch(vpc_declaration())
    assert exc_info.value.context.resource_id == "aws_vpc.main"


def test_missing_credentials_are_permission_denied(provider):
    provider.get_client("ec2").describe_vpcs.side_effect = NoCredentialsError()

    with pytest.raises(PermissionDeniedError):
        provider.fetch(vpc_declaration())


def test_throttling_is_unreachable(provider):
    provider.get_client("ec2").describe_vpcs.side_effect = client_error("ThrottlingException")

    with pytest.raises(UnreachableError) as exc_info:
        provider.fetch(vpc_declaration())
    assert exc_info.value.retryable is True


def test_connection_failure_is_unreachable(provider):
    provider.get_client("ec2").describe_vpcs.side_effect = EndpointConnectionError(
        endpoint_url="https://ec2.eu-west-1.amazonaws.com"
    )

    with pytest.raises(UnreachableError):
        provider.fetch(vpc_declaration())


def test_unsupported_type(provider):
    declaration = ResourceDeclaration(type="aws_lambda_function", name="fn")

    with pytest.raises(UnsupportedResourceError):
        provider.fetch(declaration)


def test_fetch_s3_bucket_without_tags(provider):
    s3 = provider.get_client("s3")
    s3.get_bucket_tagging.side_effect = client_error("NoSuchTagSet", "GetBucketTagging")
    declaration = ResourceDeclaration(type="aws_s3_bucket", name="logs", attributes={"bucket": "logs-1"})

    observed = provider.fetch(declaration)

    s3.head_bucket.assert_called_once_with(Bucket="logs-1")
    assert observed.attributes == {"bucket": "logs-1", "tags": None}


def test_fetch_dynamodb_table(provider):
    provider.get_client("dynamodb").describe_table.return_value = {"Table": {
        "TableName": "sessions",
        "KeySchema": [
            {"AttributeName": "pk", "KeyType": "HASH"},
            {"AttributeName": "sk", "KeyType": "RANGE"},
        ],
        "BillingModeSummary": {"BillingMode": "PAY_PER_REQUEST"},
    }}
    declaration = ResourceDeclaration(
        type="aws_dynamodb_table", name="sessions", attributes={"name": "sessions"}
    )

    observed = provider.fetch(declaration)

    assert observed.attributes == {
        "name": "sessions",
        "billing_mode": "PAY_PER_REQUEST",
        "hash_key": "pk",
        "range_key": "sk",
        "stream_enabled": False,
    }


def test_fetch_sqs_queue_converts_types(provider):
    sqs = provider.get_client("sqs")
    sqs.get_queue_url.return_value = {"QueueUrl": "https://sqs/123/jobs"}
    sqs.get_queue_attributes.return_value = {"Attributes": {
        "VisibilityTimeout": "60",
        "MessageRetentionPeriod": "86400",
        "DelaySeconds": "0",
    }}
    declaration = ResourceDeclaration(type="aws_sqs_queue", name="jobs", attributes={"name": "jobs"})

    attributes = provider.fetch(declaration).attributes

    assert attributes["visibility_timeout_seconds"] == 60
    assert attributes["message_retention_seconds"] == 86400
    assert attributes["fifo_queue"] is False


def test_missing_queue_returns_none(provider):
    provider.get_client("sqs").get_queue_url.side_effect = client_error(
        "AWS.SimpleQueueService.NonExistentQueue", "GetQueueUrl"
    )
    declaration = ResourceDeclaration(type="aws_sqs_queue", name="jobs", attributes={"name": "jobs"})

    assert provider.fetch(declaration) is None


def test_parse_arn():
    assert AWSProvider._parse_arn("arn:aws:ec2:eu-west-1:123:vpc/vpc-1") == ("aws_vpc", "vpc-1")
    assert AWSProvider._parse_arn("arn:aws:ec2:eu-west-1:123:security-group/sg-1") == (
        "aws_security_group", "sg-1"
    )
    assert AWSProvider._parse_arn("arn:aws:s3:::logs") == ("aws_s3_bucket", "logs")
    assert AWSProvider._parse_arn("arn:aws:dynamodb:eu-west-1:123:table/sessions") == (
        "aws_dynamodb_table", "sessions"
    )
    assert AWSProvider._parse_arn("arn:aws:lambda:eu-west-1:123:function:fn") is None
    assert AWSProvider._parse_arn("not-an-arn") is None


def test_discover_returns_only_unmanaged(provider):
    paginator = MagicMock()
    paginator.paginate.return_value = [{"ResourceTagMappingList": [
        {"ResourceARN": "arn:aws:ec2:eu-west-1:123:vpc/vpc-123", "Tags": []},
        {"ResourceARN": "arn:aws:s3:::stray-bucket", "Tags": [{"Key": "team", "Value": "data"}]},
        {"ResourceARN": "arn:aws:lambda:eu-west-1:123:function:fn", "Tags": []},
    ]}]
    provider.get_client("resourcegroupstaggingapi").get_paginator.return_value = paginator
    environment = Environment(name="prod", declarations=[vpc_declaration()])

    discovered = provider.discover(environment)

    assert [resource.id for resource in discovered] == ["aws_s3_bucket.stray-bucket"]
    assert discovered[0].attributes["tags"] == {"team": "data"}
    paginator.paginate.assert_called_once_with(
        TagFilters=[{"Key": "driftscan:environment", "Values": ["prod"]}],
        ResourcesPerPage=100,
    )
