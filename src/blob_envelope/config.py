"""
Client configuration.

ClientConfig enumerates every recognised setting with its default and is
validated once, when it is built. ClientConfig.from_env() reads the same
settings from the environment after loading a ``.env`` file:

    BLOB_ENVELOPE_KEY          base64 master key (16, 24 or 32 bytes decoded)
    BLOB_ENVELOPE_MATDESC      materials description JSON (default "{}")
    BLOB_ENVELOPE_CHUNK_SIZE   streaming chunk size in bytes
    S3_REGION                  AWS region
    S3_ENDPOINT_URL            custom endpoint for MinIO / LocalStack
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Union

from dotenv import load_dotenv

from .crypto import BLOCK_MODE_CBC, decode_base64
from .errors import ConfigError, CryptoError
from .materials import Materials
from .pipeline import DEFAULT_CHUNK_SIZE, DEFAULT_COMPRESSION_LEVEL
from .s3_storage import DEFAULT_PART_SIZE, MIN_PART_SIZE

ENV_KEY = "BLOB_ENVELOPE_KEY"
ENV_MATDESC = "BLOB_ENVELOPE_MATDESC"
ENV_CHUNK_SIZE = "BLOB_ENVELOPE_CHUNK_SIZE"
ENV_REGION = "S3_REGION"
ENV_ENDPOINT_URL = "S3_ENDPOINT_URL"


@dataclass(frozen=True)
class ClientConfig:
    """Settings for EncryptionClient."""

    encryption_key: bytes = field(repr=False)
    materials_description: str = "{}"
    block_mode: str = BLOCK_MODE_CBC
    compression_level: int = DEFAULT_COMPRESSION_LEVEL
    chunk_size: int = DEFAULT_CHUNK_SIZE
    region_name: Optional[str] = None
    endpoint_url: Optional[str] = None
    part_size: int = DEFAULT_PART_SIZE

    def __post_init__(self) -> None:
        if not self.encryption_key:
            raise ConfigError("you must pass an encryption key")
        # key length and description checks
        Materials(self.encryption_key, self.materials_description)
        if str(self.block_mode).upper() != BLOCK_MODE_CBC:
            raise ConfigError(f"Unsupported block mode: {self.block_mode}")
        if not -1 <= self.compression_level <= 9:
            raise ConfigError(
                f"compression_level must be between -1 and 9, got {self.compression_level}"
            )
        if self.chunk_size <= 0:
            raise ConfigError("chunk_size must be positive")
        if self.part_size < MIN_PART_SIZE:
            raise ConfigError(f"part_size must be at least {MIN_PART_SIZE} bytes")

    @classmethod
    def from_env(
        cls,
        env_file: Optional[Union[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> ClientConfig:
        """
        Build a config from environment variables.

        Args:
            env_file: ``.env`` file to load first (default: search from cwd);
                variables already set in the environment win
            environ: Mapping to read instead of os.environ

        Raises:
            ConfigError: If the key is missing or a value is invalid
        """
        if environ is None:
            load_dotenv(env_file)
            environ = os.environ

        encoded_key = environ.get(ENV_KEY)
        if not encoded_key:
            raise ConfigError(f"{ENV_KEY} must be set in environment or .env file")
        try:
            key = decode_base64(encoded_key)
        except CryptoError:
            raise ConfigError(f"{ENV_KEY} must be base64 encoded")

        chunk_size = environ.get(ENV_CHUNK_SIZE)
        try:
            chunk_size = int(chunk_size) if chunk_size else DEFAULT_CHUNK_SIZE
        except ValueError:
            raise ConfigError(f"{ENV_CHUNK_SIZE} must be an integer")

        return cls(
            encryption_key=key,
            materials_description=environ.get(ENV_MATDESC) or "{}",
            chunk_size=chunk_size,
            region_name=environ.get(ENV_REGION) or None,
            endpoint_url=environ.get(ENV_ENDPOINT_URL) or None,
        )
