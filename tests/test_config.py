import base64
import os

import pytest

from blob_envelope import ClientConfig, ConfigError, InvalidDescriptionError, InvalidKeyLengthError
from blob_envelope.config import ENV_CHUNK_SIZE, ENV_ENDPOINT_URL, ENV_KEY, ENV_MATDESC, ENV_REGION


@pytest.fixture
def encoded_key(master_key):
    return base64.b64encode(master_key).decode()


def test_defaults(master_key):
    config = ClientConfig(encryption_key=master_key)

    assert config.materials_description == "{}"
    assert config.block_mode == "CBC"
    assert config.chunk_size == 64 * 1024
    assert config.region_name is None


def test_repr_hides_key(master_key):
    assert master_key.hex() not in repr(ClientConfig(encryption_key=master_key))
    assert "encryption_key" not in repr(ClientConfig(encryption_key=master_key))


@pytest.mark.parametrize(
    "kwargs, error",
    [
        ({"encryption_key": b""}, ConfigError),
        ({"encryption_key": b"x" * 20}, InvalidKeyLengthError),
        ({"materials_description": "{oops"}, InvalidDescriptionError),
        ({"block_mode": "ECB"}, ConfigError),
        ({"compression_level": 11}, ConfigError),
        ({"chunk_size": 0}, ConfigError),
        ({"part_size": 1024}, ConfigError),
    ],
)
def test_validation(master_key, kwargs, error):
    settings = {"encryption_key": master_key, **kwargs}
    with pytest.raises(error):
        ClientConfig(**settings)


def test_from_env_mapping(master_key, encoded_key):
    config = ClientConfig.from_env(
        environ={
            ENV_KEY: encoded_key,
            ENV_MATDESC: '{"team": "data"}',
            ENV_CHUNK_SIZE: "4096",
            ENV_REGION: "eu-west-1",
            ENV_ENDPOINT_URL: "http://localhost:4566",
        }
    )

    assert config.encryption_key == master_key
    assert config.materials_description == '{"team": "data"}'
    assert config.chunk_size == 4096
    assert config.region_name == "eu-west-1"
    assert config.endpoint_url == "http://localhost:4566"


def test_from_env_defaults(encoded_key):
    config = ClientConfig.from_env(environ={ENV_KEY: encoded_key})

    assert config.materials_description == "{}"
    assert config.chunk_size == 64 * 1024
    assert config.endpoint_url is None


def test_from_env_missing_key():
    with pytest.raises(ConfigError, match=ENV_KEY):
        ClientConfig.from_env(environ={})


def test_from_env_bad_base64():
    with pytest.raises(ConfigError, match="base64"):
        ClientConfig.from_env(environ={ENV_KEY: "***"})


def test_from_env_bad_chunk_size(encoded_key):
    with pytest.raises(ConfigError, match=ENV_CHUNK_SIZE):
        ClientConfig.from_env(environ={ENV_KEY: encoded_key, ENV_CHUNK_SIZE: "lots"})


def test_from_env_file(tmp_path, monkeypatch):
    key = os.urandom(24)
    env_file = tmp_path / ".env"
    env_file.write_text(f"{ENV_KEY}={base64.b64encode(key).decode()}\n{ENV_REGION}=us-west-2\n")
    monkeypatch.delenv(ENV_KEY, raising=False)
    monkeypatch.delenv(ENV_REGION, raising=False)

    try:
        config = ClientConfig.from_env(env_file)
    finally:
        # load_dotenv exported the values
        os.environ.pop(ENV_KEY, None)
        os.environ.pop(ENV_REGION, None)

    assert config.encryption_key == key
    assert config.region_name == "us-west-2"
