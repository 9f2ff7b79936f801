"""
テスト共通のフィクスチャ
"""

import pytest

from call_relay.config import Config
from call_relay.models import ResolvedEntities

from tests.helpers import FakeDownstreamClient, FakeResolver


@pytest.fixture
def fake_client():
    return FakeDownstreamClient()


@pytest.fixture
def fake_resolver():
    return FakeResolver(
        matters={
            "4155550100": ResolvedEntities(case_id=7, claimant_id=70, matter_type="Auto Accident"),
        },
        staff={"2125550199": 5},
    )


@pytest.fixture
def test_config():
    """テスト用の設定を作成"""
    return Config(
        zoom_secret_token="test_secret",
        downstream_base_url="https://firm.example.com/api/v2",
        downstream_auth_token="test_token",
        downstream_timeout=5,
        self_base_url="https://relay.example.com",
        case_lookup_party="callee",
        timezone="UTC",
        staff_cache_ttl_seconds=300,
        call_record_max_age_hours=0,
        log_level="DEBUG",
    )
