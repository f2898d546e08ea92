"""Deploy stage of the tenant pipelines.

Points the tenant function at the image named by its release parameters,
publishes a new version and reports the outcome to CodePipeline.

Environment: FUNCTION_ARN, IMAGE_PARAMETER_NAME, IMAGE_TAG_PARAMETER_NAME, REGION.
"""

import logging
import os

import boto3

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def image_uri(function_arn: str, repository_name: str, tag: str) -> str:
    """ECR image URI in the account and region of ``function_arn``."""
    # arn:aws:lambda:<region>:<account>:function:<name>
    parts = function_arn.split(":")
    if len(parts) < 7 or parts[2] != "lambda" or parts[5] != "function":
        raise ValueError(f"not a Lambda function ARN: {function_arn}")
    region, account = parts[3], parts[4]
    return f"{account}.dkr.ecr.{region}.amazonaws.com/{repository_name}:{tag}"


def read_parameter(ssm, name: str) -> str:
    return ssm.get_parameter(Name=name)["Parameter"]["Value"]


def release_image(ssm, lambda_client, function_arn, image_parameter, tag_parameter) -> dict:
    repository_name = read_parameter(ssm, image_parameter)
    tag = read_parameter(ssm, tag_parameter)
    uri = image_uri(function_arn, repository_name, tag)

    logger.info("Updating %s to %s", function_arn, uri)
    lambda_client.update_function_code(FunctionName=function_arn, ImageUri=uri)
    lambda_client.get_waiter("function_updated").wait(FunctionName=function_arn)

    published = lambda_client.publish_version(
        FunctionName=function_arn,
        Description=f"{repository_name}:{tag}",
    )
    logger.info("Published version %s of %s", published["Version"], function_arn)
    return {"imageUri": uri, "version": published["Version"]}


def handler(event, context):
    region = os.environ["REGION"]
    codepipeline = boto3.client("codepipeline", region_name=region)
    job_id = event["CodePipeline.job"]["id"]

    try:
        result = release_image(
            boto3.client("ssm", region_name=region),
            boto3.client("lambda", region_name=region),
            os.environ["FUNCTION_ARN"],
            os.environ["IMAGE_PARAMETER_NAME"],
            os.environ["IMAGE_TAG_PARAMETER_NAME"],
        )
    except Exception as exc:
        # The pipeline waits on this job until a result is reported
        logger.exception("Release of job %s failed", job_id)
        codepipeline.put_job_failure_result(
            jobId=job_id,
            failureDetails={"type": "JobFailed", "message": str(exc)[:5000]},
        )
        return {"status": "failed", "error": str(exc)}

    codepipeline.put_job_success_result(
        jobId=job_id,
        outputVariables={"imageUri": result["imageUri"], "version": result["version"]},
    )
    return {"status": "released", **result}
