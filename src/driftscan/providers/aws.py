"""AWS provider backed by boto3."""

import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from driftscan.providers.base import Provider
from driftscan.state.models import Environment, ObservedResource, ResourceDeclaration
from driftscan.utils.errors import ErrorContext, UnsupportedResourceError, error_handler
from driftscan.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ENVIRONMENT_TAG = "driftscan:environment"

# Error codes meaning the resource does not exist
NOT_FOUND_ERROR_CODES = {
    'InvalidVpcID.NotFound',
    'InvalidSubnetID.NotFound',
    'InvalidGroup.NotFound',
    'InvalidGroupId.NotFound',
    'NoSuchBucket',
    'NotFound',
    '404',
    'ResourceNotFoundException',
    'AWS.SimpleQueueService.NonExistentQueue',
    'QueueDoesNotExist',
}


def _tags(tag_list: Optional[List[Dict[str, str]]]) -> Optional[Dict[str, str]]:
    """Tag list as a mapping; None when untagged, as Terraform records it."""
    if not tag_list:
        return None
    return {tag['Key']: tag['Value'] for tag in tag_list}


class AWSProvider(Provider):
    """Observes a subset of AWS resource types, keyed by Terraform type names.

    Only the attributes listed per type are reported, so observed resources
    are marked partial.
    """

    name = "aws"

    def __init__(
        self,
        session: Optional[boto3.Session] = None,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        environment_tag: str = DEFAULT_ENVIRONMENT_TAG,
        max_pool_connections: int = 50
    ):
        """Initialize AWS provider.

        Args:
            session: Boto3 session to use (created from profile/region when None)
            profile: AWS profile name
            region: AWS region
            environment_tag: Tag key marking resources that belong to an environment
            max_pool_connections: Maximum number of connections in the connection pool
        """
        if session is None:
            kwargs = {}
            if profile:
                kwargs['profile_name'] = profile
            if region and region != 'global':
                kwargs['region_name'] = region
            session = boto3.Session(**kwargs)
            logger.info(f"Created AWS session - Region: {session.region_name}, "
                        f"Profile: {profile or 'default'}")

        self.session = session
        self.environment_tag = environment_tag
        self._clients: Dict[str, Any] = {}
        self._clients_lock = threading.Lock()

        # Backoff is handled by the fetcher's retry strategy
        self._boto_config = Config(
            max_pool_connections=max_pool_connections,
            retries={'mode': 'standard', 'max_attempts': 1},
            connect_timeout=10,
            read_timeout=30
        )

        self._handlers: Dict[str, Callable[[ResourceDeclaration], Optional[Dict[str, Any]]]] = {
            'aws_vpc': self._fetch_vpc,
            'aws_subnet': self._fetch_subnet,
            'aws_security_group': self._fetch_security_group,
            'aws_s3_bucket': self._fetch_s3_bucket,
            'aws_dynamodb_table': self._fetch_dynamodb_table,
            'aws_sqs_queue': self._fetch_sqs_queue,
        }

    @property
    def supported_types(self) -> List[str]:
        """Resource types this provider can observe."""
        return sorted(self._handlers)

    def get_client(self, service_name: str):
        """Get a cached boto3 client for a service."""
        with self._clients_lock:
            if service_name not in self._clients:
                self._clients[service_name] = self.session.client(
                    service_name, config=self._boto_config
                )
                logger.debug(f"Created {service_name} client")
            return self._clients[service_name]

    def fetch(self, declaration: ResourceDeclaration) -> Optional[ObservedResource]:
        handler = self._handlers.get(declaration.type)
        if handler is None:
            raise UnsupportedResourceError(
                f"Unsupported resource type for AWS provider: {declaration.type}",
                context=ErrorContext(
                    resource_id=declaration.id,
                    resource_type=declaration.type,
                    provider=self.name
                )
            )

        try:
            attributes = handler(declaration)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in NOT_FOUND_ERROR_CODES:
                return None
            raise self._translate(e, declaration)
        except BotoCoreError as e:
            raise self._translate(e, declaration)

        if attributes is None:
            return None
        return ObservedResource.from_declaration(declaration, attributes, partial=True)

    def discover(self, environment: Environment) -> List[ObservedResource]:
        """List resources tagged with the environment name.

        Resources whose ARN or identifier matches a declared resource are left
        out, so only unmanaged resources are returned.
        """
        known = set()
        for declaration in environment.declarations:
            for key in ('arn', 'id', 'bucket', 'name', 'url'):
                value = declaration.attributes.get(key)
                if isinstance(value, str) and value:
                    known.add(value)

        client = self.get_client('resourcegroupstaggingapi')
        discovered = []
        try:
            paginator = client.get_paginator('get_resources')
            pages = paginator.paginate(
                TagFilters=[{'Key': self.environment_tag, 'Values': [environment.name]}],
                ResourcesPerPage=100
            )
            for page in pages:
                for mapping in page.get('ResourceTagMappingList', []):
                    arn = mapping['ResourceARN']
                    parsed = self._parse_arn(arn)
                    if parsed is None:
                        logger.debug(f"Skipping discovered resource of unknown type: {arn}")
                        continue
                    resource_type, physical_id = parsed
                    if arn in known or physical_id in known:
                        continue
                    discovered.append(ObservedResource(
                        type=resource_type,
                        name=physical_id,
                        attributes={'arn': arn, 'tags': _tags(mapping.get('Tags'))},
                        partial=True,
                    ))
        except (ClientError, BotoCoreError) as e:
            raise error_handler.handle_exception(
                e, ErrorContext(environment=environment.name, provider=self.name, operation='discover')
            )

        logger.info(f"Discovered {len(discovered)} unmanaged resources in {environment.name}")
        return discovered

    def _translate(self, error: Exception, declaration: ResourceDeclaration):
        return error_handler.handle_exception(
            error,
            ErrorContext(
                resource_id=declaration.id,
                resource_type=declaration.type,
                provider=self.name,
                operation='fetch'
            )
        )

    @staticmethod
    def _parse_arn(arn: str) -> Optional[Tuple[str, str]]:
        """Map an ARN onto (Terraform type, physical id)."""
        # ARN format: arn:partition:service:region:account:resource
        parts = arn.split(':', 5)
        if len(parts) < 6:
            return None
        service, resource = parts[2], parts[5]

        if service == 'ec2':
            kind, _, physical_id = resource.partition('/')
            mapping = {'vpc': 'aws_vpc', 'subnet': 'aws_subnet', 'security-group': 'aws_security_group'}
            return (mapping[kind], physical_id) if kind in mapping and physical_id else None
        if service == 's3':
            return ('aws_s3_bucket', resource) if resource and '/' not in resource else None
        if service == 'dynamodb' and resource.startswith('table/'):
            return ('aws_dynamodb_table', resource.split('/')[1])
        if service == 'sqs':
            return ('aws_sqs_queue', resource)
        return None

    def _fetch_vpc(self, declaration: ResourceDeclaration) -> Optional[Dict[str, Any]]:
        vpc_id = declaration.attributes.get('id')
        if not vpc_id:
            return None
        response = self.get_client('ec2').describe_vpcs(VpcIds=[vpc_id])
        vpcs = response.get('Vpcs', [])
        if not vpcs:
            return None
        vpc = vpcs[0]
        return {
            'id': vpc['VpcId'],
            'cidr_block': vpc.get('CidrBlock'),
            'instance_tenancy': vpc.get('InstanceTenancy'),
            'tags': _tags(vpc.get('Tags')),
        }

    def _fetch_subnet(self, declaration: ResourceDeclaration) -> Optional[Dict[str, Any]]:
        subnet_id = declaration.attributes.get('id')
        if not subnet_id:
            return None
        response = self.get_client('ec2').describe_subnets(SubnetIds=[subnet_id])
        subnets = response.get('Subnets', [])
        if not subnets:
            return None
        subnet = subnets[0]
        return {
            'id': subnet['SubnetId'],
            'vpc_id': subnet.get('VpcId'),
            'cidr_block': subnet.get('CidrBlock'),
            'availability_zone': subnet.get('AvailabilityZone'),
            'map_public_ip_on_launch': subnet.get('MapPublicIpOnLaunch'),
            'tags': _tags(subnet.get('Tags')),
        }

    def _fetch_security_group(self, declaration: ResourceDeclaration) -> Optional[Dict[str, Any]]:
        group_id = declaration.attributes.get('id')
        if not group_id:
            return None
        response = self.get_client('ec2').describe_security_groups(GroupIds=[group_id])
        groups = response.get('SecurityGroups', [])
        if not groups:
            return None
        group = groups[0]
        return {
            'id': group['GroupId'],
            'name': group.get('GroupName'),
            'description': group.get('Description'),
            'vpc_id': group.get('VpcId'),
            'tags': _tags(group.get('Tags')),
        }

    def _fetch_s3_bucket(self, declaration: ResourceDeclaration) -> Optional[Dict[str, Any]]:
        bucket = declaration.attributes.get('bucket') or declaration.attributes.get('id')
        if not bucket:
            return None
        s3 = self.get_client('s3')
        s3.head_bucket(Bucket=bucket)
        try:
            tag_set = s3.get_bucket_tagging(Bucket=bucket).get('TagSet', [])
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') != 'NoSuchTagSet':
                raise
            tag_set = []
        return {'bucket': bucket, 'tags': _tags(tag_set)}

    def _fetch_dynamodb_table(self, declaration: ResourceDeclaration) -> Optional[Dict[str, Any]]:
        table_name = declaration.attributes.get('name') or declaration.attributes.get('id')
        if not table_name:
            return None
        table = self.get_client('dynamodb').describe_table(TableName=table_name).get('Table', {})
        keys = {key['KeyType']: key['AttributeName'] for key in table.get('KeySchema', [])}
        return {
            'name': table.get('TableName', table_name),
            'billing_mode': table.get('BillingModeSummary', {}).get('BillingMode', 'PROVISIONED'),
            'hash_key': keys.get('HASH'),
            'range_key': keys.get('RANGE'),
            'stream_enabled': table.get('StreamSpecification', {}).get('StreamEnabled', False),
        }

    def _fetch_sqs_queue(self, declaration: ResourceDeclaration) -> Optional[Dict[str, Any]]:
        queue_name = declaration.attributes.get('name')
        if not queue_name:
            return None
        sqs = self.get_client('sqs')
        queue_url = sqs.get_queue_url(QueueName=queue_name)['QueueUrl']
        attributes = sqs.get_queue_attributes(
            QueueUrl=queue_url, AttributeNames=['All']
        ).get('Attributes', {})
        return {
            'name': queue_name,
            'url': queue_url,
            'visibility_timeout_seconds': int(attributes.get('VisibilityTimeout', 30)),
            'message_retention_seconds': int(attributes.get('MessageRetentionPeriod', 345600)),
            'delay_seconds': int(attributes.get('DelaySeconds', 0)),
            'fifo_queue': attributes.get('FifoQueue', 'false') == 'true',
        }
