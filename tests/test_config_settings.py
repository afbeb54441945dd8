from bundlecast.config import Settings


def test_relay_url_trailing_slash_is_stripped(monkeypatch):
    """Relay and blocks index URLs are normalised once at load time."""

    monkeypatch.setenv("RELAY_URL", "https://relay.example/")
    monkeypatch.setenv("BLOCKS_API_URL", "https://blocks.example//")

    settings = Settings()

    assert settings.relay_url == "https://relay.example"
    assert settings.blocks_api_url == "https://blocks.example"


def test_legacy_env_aliases(monkeypatch):
    """FLASHBOTS_RPC_URL / ETHEREUM_RPC_URL from older setups still load."""

    monkeypatch.delenv("RELAY_URL", raising=False)
    monkeypatch.delenv("ETH_RPC_URL", raising=False)
    monkeypatch.setenv("FLASHBOTS_RPC_URL", "https://relay.alt")
    monkeypatch.setenv("ETHEREUM_RPC_URL", "http://node:8545")

    settings = Settings()

    assert settings.relay_url == "https://relay.alt"
    assert settings.eth_rpc_url == "http://node:8545"


def test_defaults(monkeypatch):
    for name in ("BUNDLE_WAIT_TIMEOUT_SECONDS", "NONCE_BLOCK_TAG", "RELAY_SIGNING_KEY"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.bundle_wait_timeout_seconds == 300
    assert settings.nonce_block_tag == "latest"
    assert settings.has_relay_signing_key is False
