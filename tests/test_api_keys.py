import pytest

from uxaudit.services.api_keys import create_api_key, origin_allowed, validate_key


@pytest.mark.parametrize("allowed,origin,expected", [
    ([], None, True),
    ([], "https://anything.test", True),
    (["*"], "https://anything.test", True),
    (["https://shop.test"], "https://shop.test", True),
    (["https://shop.test/"], "https://shop.test", True),
    (["https://shop.test"], "https://SHOP.test:443", True),
    (["https://shop.test"], "https://shop.test.evil.example", False),
    (["https://shop.test"], "https://evilshop.test", False),
    (["https://shop.test"], "http://shop.test", False),
    (["https://shop.test"], "https://shop.test:8443", False),
    (["https://shop.test"], None, False),
    (["https://shop.test"], "null", False),
])
def test_origin_allowed(allowed, origin, expected):
    assert origin_allowed(allowed, origin) is expected


@pytest.mark.asyncio
async def test_lookalike_origin_rejected_and_not_metered():
    api_key = await create_api_key("Shop", ["https://shop.test"])

    assert await validate_key(f"Bearer {api_key.key}", "https://shop.test.evil.example") is None
    accepted = await validate_key(f"Bearer {api_key.key}", "https://shop.test")

    assert accepted.id == api_key.id
    assert accepted.usage_count == 1
