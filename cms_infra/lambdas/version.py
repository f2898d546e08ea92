"""``GET /version`` of a tenant API: the released commit and package version."""

import json
import logging
import os

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def _response(status_code: int, body: str, content_type: str = "text/plain") -> dict:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": content_type},
        "body": body,
    }


def handler(event, context):
    ssm = boto3.client("ssm", region_name=os.environ["REGION"])

    try:
        commit = ssm.get_parameter(Name=os.environ["IMAGE_TAG_PARAMETER_NAME"])
    except ClientError as exc:
        logger.error("Reading release tag failed: %s", exc)
        return _response(500, f"error in retrieving git hash: {exc}")

    try:
        version = ssm.get_parameter(Name=os.environ["VERSION_PARAMETER_NAME"])
    except ClientError as exc:
        logger.error("Reading package version failed: %s", exc)
        return _response(500, f"error in retrieving version: {exc}")

    body = {
        "commit": commit["Parameter"]["Value"],
        "version": version["Parameter"]["Value"],
    }
    return _response(200, json.dumps(body), "application/json")
