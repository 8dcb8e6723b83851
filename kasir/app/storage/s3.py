import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_REGION = "us-east-1"


@dataclass(frozen=True)
class S3Config:
    endpoint_url: str
    access_key_id: str
    secret_access_key: str
    bucket: str
    region: str
    use_ssl: bool
    # Base that object keys are appended to when handing URLs to the front end.
    public_base_url: str


def _env(name: str) -> str:
    return (os.environ.get(name) or "").strip()


def get_s3_config() -> Optional[S3Config]:
    """Bucket settings from S3_* env vars; None when any of endpoint/keys/bucket is missing."""
    endpoint = _env("S3_ENDPOINT_URL")
    bucket = _env("S3_BUCKET")
    access = _env("S3_ACCESS_KEY_ID")
    secret = _env("S3_SECRET_ACCESS_KEY")
    if not (endpoint and bucket and access and secret):
        return None
    return S3Config(
        endpoint_url=endpoint,
        access_key_id=access,
        secret_access_key=secret,
        bucket=bucket,
        region=_env("S3_REGION") or DEFAULT_REGION,
        use_ssl=_env("S3_USE_SSL").lower() not in {"0", "false", "no"},
        public_base_url=_env("S3_PUBLIC_BASE_URL").rstrip("/") or f"{endpoint.rstrip('/')}/{bucket}",
    )


def _client(cfg: S3Config):
    import boto3
    from botocore.config import Config

    # Path-style v4 signing works against MinIO and Supabase storage alike.
    return boto3.client(
        "s3",
        endpoint_url=cfg.endpoint_url,
        aws_access_key_id=cfg.access_key_id,
        aws_secret_access_key=cfg.secret_access_key,
        region_name=cfg.region,
        use_ssl=cfg.use_ssl,
        config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


def public_url(cfg: S3Config, key: str) -> str:
    return f"{cfg.public_base_url}/{key.lstrip('/')}"


class ObjectStorage:
    """Product image bucket. The boto3 client is created on first upload."""

    def __init__(self, cfg: Optional[S3Config] = None, client=None):
        self.cfg = cfg or get_s3_config()
        self._c = client

    @property
    def client(self):
        if not self.cfg:
            raise RuntimeError("S3 not configured")
        if self._c is None:
            self._c = _client(self.cfg)
        return self._c

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        self.client.put_object(
            Bucket=self.cfg.bucket,
            Key=path,
            Body=data or b"",
            ContentType=content_type or "application/octet-stream",
        )
        return public_url(self.cfg, path)
