import logging
import os
import secrets
import time
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# Environment variables
S3_BUCKET = os.environ.get("S3_BUCKET")
AWS_REGION = os.environ.get("AWS_REGION", "us-east-1")
UPLOAD_DIR = os.environ.get("UPLOAD_DIR", "uploads")


def get_s3_client():
    return boto3.client("s3", region_name=AWS_REGION)


def new_file_id() -> str:
    return f"file-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def _local_path(file_name: str, folder: str) -> Path:
    # File ids come from URLs, keep them inside the upload folder
    return Path(UPLOAD_DIR) / folder / Path(file_name).name


def save_file(file_name: str, data: bytes, folder: str = "statements") -> bool:
    """
    Saves an uploaded file to either local disk or S3.
    """
    if S3_BUCKET:
        s3 = get_s3_client()
        key = f"{folder}/{file_name}"
        try:
            s3.put_object(Bucket=S3_BUCKET, Key=key, Body=data)
            return True
        except (BotoCoreError, ClientError) as e:
            logger.error("[Upload] S3 Upload Error: %s", e)
            return False
    else:
        # Local fallback
        local_path = _local_path(file_name, folder)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        local_path.write_bytes(data)
        return True


def load_file(file_name: str, folder: str = "statements") -> bytes | None:
    """
    Loads a stored file from either local disk or S3.
    """
    if S3_BUCKET:
        s3 = get_s3_client()
        key = f"{folder}/{file_name}"
        try:
            obj = s3.get_object(Bucket=S3_BUCKET, Key=key)
            return obj["Body"].read()
        except s3.exceptions.NoSuchKey:
            return None
        except (BotoCoreError, ClientError) as e:
            logger.error("[Upload] S3 Download Error: %s", e)
            return None
    else:
        # Local fallback
        local_path = _local_path(file_name, folder)
        if local_path.exists():
            return local_path.read_bytes()
        return None


def list_files(folder: str = "statements") -> list[str]:
    """Names of the stored files in a folder, newest id last."""
    if S3_BUCKET:
        try:
            response = get_s3_client().list_objects_v2(Bucket=S3_BUCKET, Prefix=f"{folder}/")
        except (BotoCoreError, ClientError) as e:
            logger.error("[Upload] S3 List Error: %s", e)
            return []
        return sorted(obj["Key"].rsplit("/", 1)[-1] for obj in response.get("Contents", []))

    local_dir = Path(UPLOAD_DIR) / folder
    if not local_dir.is_dir():
        return []
    return sorted(p.name for p in local_dir.iterdir() if p.is_file())
