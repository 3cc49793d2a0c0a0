"""
Unit tests for src/voiceover/credentials.py.

Covers key loading from the environment, selection order and fallback to
the soonest-recovering key, cyclic rotation, identity matching from
truncated keys, permanent blocking, availability queries and the
diagnostic status surface.
"""

from __future__ import annotations

import logging

import pytest

from src.voiceover.credentials import (
    CredentialPool,
    load_credentials_from_env,
    mask_credential,
    parse_credential_string,
)
from src.voiceover.errors import NoCredentialAvailable


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

class TestParseCredentialString:

    def test_splits_trims_and_drops_empty_entries(self):
        assert parse_credential_string(" k1, k2,, ,k3 ") == ["k1", "k2", "k3"]

    def test_none_and_empty_yield_no_keys(self):
        assert parse_credential_string(None) == []
        assert parse_credential_string("") == []
        assert parse_credential_string(" , ,") == []

    def test_custom_separator(self):
        assert parse_credential_string("a;b", separator=";") == ["a", "b"]

    def test_order_is_preserved(self):
        assert parse_credential_string("z,a,m") == ["z", "a", "m"]


class TestLoadCredentialsFromEnv:

    def test_api_key_takes_precedence(self):
        env = {"API_KEY": "first,second", "GEMINI_API_KEY": "other"}
        assert load_credentials_from_env(env) == ["first", "second"]

    def test_falls_back_to_gemini_key_when_api_key_blank(self):
        env = {"API_KEY": " , ", "GEMINI_API_KEY": "g1, g2"}
        assert load_credentials_from_env(env) == ["g1", "g2"]

    def test_no_keys_yields_single_placeholder_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="voiceover"):
            keys = load_credentials_from_env({})
        assert keys == [""]
        assert "No API keys found" in caplog.text

    def test_from_env_builds_pool(self, clock):
        pool = CredentialPool.from_env({"GEMINI_API_KEY": "a,b,c"}, clock=clock)
        assert pool.total == 3
        assert pool.secret_at(2) == "c"

    def test_placeholder_pool_is_usable_for_selection(self, clock):
        pool = CredentialPool.from_env({}, clock=clock)
        assert pool.total == 1
        assert pool.select_available() == 0


class TestMaskCredential:

    def test_shows_only_last_four_characters(self, keys):
        masked = mask_credential(keys[0])
        assert masked == f"...{keys[0][-4:]}"
        assert keys[0][:10] not in masked

    def test_short_secret_fully_masked(self):
        assert mask_credential("abc") == "***"


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

class TestSelectAvailable:

    def test_first_key_in_configured_order(self, make_pool):
        pool = make_pool()
        assert pool.select_available() == 0
        assert pool.current_index == 0

    def test_rate_limited_key_is_never_selected_during_cooldown(self, make_pool, clock):
        pool = make_pool()
        pool.mark_rate_limited(0, 60)

        for _ in range(5):
            assert pool.select_available() in (1, 2)
            clock.advance(10)

    def test_key_returns_after_cooldown_expires(self, make_pool, clock):
        pool = make_pool()
        pool.mark_rate_limited(0, 60)
        assert pool.select_available() == 1

        clock.advance(60)
        assert pool.select_available() == 0

    def test_all_cooling_returns_soonest_to_recover(self, make_pool):
        pool = make_pool()
        pool.mark_rate_limited(0, 90)
        pool.mark_rate_limited(1, 15)
        pool.mark_rate_limited(2, 40)
        assert pool.select_available() == 1
        assert pool.current_index == 1

    def test_soonest_tie_breaks_in_pool_order(self, make_pool):
        pool = make_pool()
        for index in (2, 1, 0):
            pool.mark_rate_limited(index, 30)
        assert pool.select_available() == 0

    def test_blocked_keys_are_skipped(self, make_pool):
        pool = make_pool()
        pool.mark_invalid(0)
        assert pool.select_available() == 1

    def test_blocked_key_not_chosen_as_soonest(self, make_pool):
        pool = make_pool()
        pool.mark_invalid(0)
        pool.mark_rate_limited(1, 50)
        pool.mark_rate_limited(2, 20)
        assert pool.select_available() == 2

    def test_all_blocked_raises(self, make_pool):
        pool = make_pool()
        for index in range(3):
            pool.mark_invalid(index)
        with pytest.raises(NoCredentialAvailable):
            pool.select_available()

    def test_empty_pool_raises(self, make_pool):
        pool = make_pool([])
        with pytest.raises(NoCredentialAvailable):
            pool.select_available()


# ---------------------------------------------------------------------------
# Rotation
# ---------------------------------------------------------------------------

class TestRotate:
    """Pool [A(blocked), B(available), C(available)]."""

    @pytest.fixture
    def pool(self, make_pool):
        pool = make_pool()
        pool.mark_invalid(0)
        return pool

    def test_rotate_from_first_returns_second(self, pool):
        assert pool.rotate(0) == 1

    def test_rotate_from_second_returns_third(self, pool):
        assert pool.rotate(1) == 2

    def test_rotate_from_last_wraps_past_blocked(self, pool):
        assert pool.rotate(2) == 1

    def test_rotate_updates_current_index(self, pool):
        pool.rotate(1)
        assert pool.current_index == 2

    def test_rotate_skips_cooling_keys(self, make_pool):
        pool = make_pool()
        pool.mark_rate_limited(1, 30)
        assert pool.rotate(0) == 2

    def test_no_usable_key_returns_from_index_unchanged(self, make_pool):
        pool = make_pool()
        for index in range(3):
            pool.mark_rate_limited(index, 30)
        assert pool.rotate(1) == 1

    def test_rotation_is_deterministic(self, make_pool):
        first = [make_pool().rotate(i) for i in range(3)]
        second = [make_pool().rotate(i) for i in range(3)]
        assert first == second == [1, 2, 0]


# ---------------------------------------------------------------------------
# Marking
# ---------------------------------------------------------------------------

class TestMarkRateLimited:

    def test_sets_cooldown_and_increments_error_count(self, make_pool, clock):
        pool = make_pool()
        assert pool.mark_rate_limited(1, 45) is True

        record = pool.record_at(1)
        assert record.available_at == clock.now + 45
        assert record.error_count == 1
        assert record.blocked is False

    def test_error_count_accumulates(self, make_pool):
        pool = make_pool()
        pool.mark_rate_limited(0, 1)
        pool.mark_rate_limited(0, 1)
        assert pool.record_at(0).error_count == 2

    def test_locates_key_by_full_secret(self, make_pool, keys):
        pool = make_pool()
        pool.mark_rate_limited(keys[2], 10)
        assert pool.record_at(2).error_count == 1
        assert pool.record_at(0).error_count == 0

    def test_locates_key_by_truncated_identity(self, make_pool, keys):
        pool = make_pool()
        truncated = keys[1][:20]
        assert pool.mark_rate_limited(truncated, 10) is True
        assert pool.record_at(1).error_count == 1

    def test_truncated_identity_with_garbled_tail_still_matches(self, make_pool, keys):
        pool = make_pool()
        assert pool.mark_rate_limited(keys[1][:20] + "...", 10) is True
        assert pool.record_at(1).error_count == 1

    def test_short_fragment_matches_when_unique(self, make_pool, keys):
        pool = make_pool()
        assert pool.mark_rate_limited(keys[2][:10], 10) is True
        assert pool.record_at(2).error_count == 1

    def test_ambiguous_prefix_marks_nothing(self, clock, caplog):
        shared = "AIzaSySHARED-prefix-"
        pool = CredentialPool([shared + "one", shared + "two"], clock=clock)
        with caplog.at_level(logging.WARNING, logger="voiceover"):
            assert pool.mark_rate_limited(shared, 10) is False
        assert pool.record_at(0).error_count == 0
        assert pool.record_at(1).error_count == 0

    def test_full_secret_disambiguates_shared_prefix(self, clock):
        shared = "AIzaSySHARED-prefix-"
        pool = CredentialPool([shared + "one", shared + "two"], clock=clock)
        assert pool.mark_rate_limited(shared + "two", 10) is True
        assert pool.record_at(1).error_count == 1

    def test_unknown_identity_warns_and_does_not_raise(self, make_pool, caplog):
        pool = make_pool()
        with caplog.at_level(logging.WARNING, logger="voiceover"):
            assert pool.mark_rate_limited("not-a-key-at-all-xxxxxxxx", 10) is False
            assert pool.mark_rate_limited(99, 10) is False
        assert "Key not found" in caplog.text
        assert all(pool.record_at(i).error_count == 0 for i in range(3))


class TestMarkInvalid:

    def test_blocks_by_index(self, make_pool):
        pool = make_pool()
        assert pool.mark_invalid(1) is True
        assert pool.record_at(1).blocked is True

    def test_blocks_by_secret(self, make_pool, keys):
        pool = make_pool()
        pool.mark_invalid(keys[0])
        assert pool.record_at(0).blocked is True

    def test_none_blocks_current_key(self, make_pool):
        pool = make_pool()
        pool.mark_rate_limited(0, 30)
        assert pool.select_available() == 1
        pool.mark_invalid()
        assert pool.record_at(1).blocked is True
        assert pool.record_at(0).blocked is False

    def test_block_survives_cooldown_expiry(self, make_pool, clock):
        pool = make_pool()
        pool.mark_invalid(0)
        clock.advance(10_000)
        assert pool.select_available() == 1

    def test_reset_error_counts_keeps_blocks(self, make_pool):
        pool = make_pool()
        pool.mark_invalid(0)
        pool.mark_rate_limited(1, 5)
        pool.reset_error_counts()

        assert pool.record_at(0).blocked is True
        assert pool.record_at(0).error_count == 0
        assert pool.record_at(1).error_count == 0

    def test_record_at_returns_copy(self, make_pool):
        pool = make_pool()
        record = pool.record_at(0)
        record.blocked = True
        assert pool.record_at(0).blocked is False


# ---------------------------------------------------------------------------
# Availability queries
# ---------------------------------------------------------------------------

class TestAvailability:

    def test_counts_exclude_cooling_and_blocked(self, make_pool):
        pool = make_pool()
        pool.mark_invalid(0)
        pool.mark_rate_limited(1, 10)
        assert pool.has_available() is True
        assert pool.available_count() == 1

    def test_none_available(self, make_pool):
        pool = make_pool()
        for index in range(3):
            pool.mark_rate_limited(index, 10)
        assert pool.has_available() is False
        assert pool.available_count() == 0

    def test_seconds_until_next_is_zero_when_available(self, make_pool):
        pool = make_pool()
        pool.mark_rate_limited(0, 10)
        assert pool.seconds_until_next_available() == 0

    def test_seconds_until_next_rounds_up_minimum_wait(self, make_pool):
        pool = make_pool()
        pool.mark_rate_limited(0, 40)
        pool.mark_rate_limited(1, 2.5)
        pool.mark_rate_limited(2, 12)
        assert pool.seconds_until_next_available() == 3

    def test_seconds_until_next_ignores_blocked(self, make_pool):
        pool = make_pool()
        pool.mark_invalid(0)
        pool.mark_rate_limited(0, 1)
        pool.mark_rate_limited(1, 20)
        pool.mark_rate_limited(2, 30)
        assert pool.seconds_until_next_available() == 20

    def test_seconds_until_next_counts_down(self, make_pool, clock):
        pool = make_pool(["only"])
        pool.mark_rate_limited(0, 30)
        clock.advance(12)
        assert pool.seconds_until_next_available() == 18


# ---------------------------------------------------------------------------
# Status surface
# ---------------------------------------------------------------------------

class TestStatus:

    def test_status_rows_in_pool_order(self, make_pool):
        pool = make_pool()
        pool.mark_rate_limited(1, 7)
        pool.mark_invalid(2)

        status = pool.status()
        assert [row["position"] for row in status] == [1, 2, 3]
        assert status[0] == {
            "position": 1,
            "available": True,
            "available_in_seconds": 0,
            "error_count": 0,
            "blocked": False,
        }
        assert status[1]["available"] is False
        assert status[1]["available_in_seconds"] == 7
        assert status[2]["blocked"] is True
        assert status[2]["available"] is False

    def test_status_frame_indexed_by_position(self, make_pool):
        frame = make_pool().status_frame()
        assert list(frame.index) == [1, 2, 3]
        assert list(frame.columns) == [
            "available", "available_in_seconds", "error_count", "blocked",
        ]

    def test_status_never_exposes_secrets(self, make_pool, keys):
        text = str(make_pool().status())
        assert not any(key in text for key in keys)

    def test_log_status_counts(self, make_pool, caplog):
        pool = make_pool()
        pool.mark_rate_limited(0, 10)
        pool.mark_invalid(1)
        with caplog.at_level(logging.INFO, logger="voiceover"):
            summary = pool.log_status()
        assert summary == {
            "total": 3,
            "available": 1,
            "rate_limited": 1,
            "blocked": 1,
            "current": 1,
        }
        assert "API keys status" in caplog.text
