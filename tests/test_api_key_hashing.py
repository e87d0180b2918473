from utils.api_key_utils import compute_api_key_hash, generate_api_key, user_id_for_api_key


def test_compute_api_key_hash_is_stable_and_hex():
    raw = "dev-key-1"
    h1 = compute_api_key_hash(raw)
    h2 = compute_api_key_hash(raw)

    assert h1 == h2
    assert len(h1) == 64
    assert all(ch in "0123456789abcdef" for ch in h1)


def test_generate_api_key_uses_prefix():
    key = generate_api_key(prefix="Deep Search")
    assert key.startswith("deep-search_")
    assert len(key) > len("deep-search_") + 20


def test_generate_api_key_default_prefix():
    assert generate_api_key().startswith("deepsearch_")


def test_user_id_is_stable_and_does_not_leak_the_key():
    user_id = user_id_for_api_key("dev-key-1")

    assert user_id == user_id_for_api_key("dev-key-1")
    assert user_id != user_id_for_api_key("dev-key-2")
    assert user_id.startswith("user_")
    assert "dev-key-1" not in user_id
