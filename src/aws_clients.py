import os
import boto3

REGION = os.getenv("AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-east-1"))
ENDPOINT = os.getenv("AWS_ENDPOINT")  # e.g., http://localhost:4566 for LocalStack

def _kw(region=None, endpoint=None):
    k = {"region_name": region or REGION}
    endpoint = endpoint or ENDPOINT
    if endpoint:
        k["endpoint_url"] = endpoint
    return k

def logs_client(region=None, endpoint=None):
    return boto3.client("logs", **_kw(region, endpoint))

def cloudwatch_client(region=None, endpoint=None):
    return boto3.client("cloudwatch", **_kw(region, endpoint))
