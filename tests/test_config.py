from multisend.config import DEFAULT_NETWORK, MAX_BATCH_SIZE, Settings


def test_defaults(monkeypatch):
    monkeypatch.delenv("MULTISEND_NETWORK", raising=False)
    monkeypatch.delenv("MULTISEND_MAX_BATCH_SIZE", raising=False)

    s = Settings(_env_file=None)

    assert s.network == DEFAULT_NETWORK
    assert s.max_batch_size == MAX_BATCH_SIZE


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("MULTISEND_NETWORK", "local")
    monkeypatch.setenv("MULTISEND_MAX_BATCH_SIZE", "10")

    s = Settings(_env_file=None)

    assert s.network == "local"
    assert s.max_batch_size == 10
